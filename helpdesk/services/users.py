from __future__ import annotations

import logging

from helpdesk.security.role_cache import RoleCache
from helpdesk.security.roles import Actor, Role
from helpdesk.tickets.directory import DirectoryRepository
from helpdesk.tickets.errors import AccessDeniedError, TicketValidationError, UserNotFoundError
from helpdesk.tickets.models import UserRecord

logger = logging.getLogger(__name__)


class UserService:
    """Resolve token subjects to actors and manage user roles."""

    def __init__(self, directory: DirectoryRepository, role_cache: RoleCache) -> None:
        self._directory = directory
        self._role_cache = role_cache

    async def resolve_actor(self, external_id: str) -> Actor | None:
        async def load() -> Actor | None:
            user = await self._directory.get_user_by_external_id(external_id)
            if user is None:
                return None
            return Actor(
                user_id=user.id,
                external_id=user.external_id,
                role=user.role,
                display_name=user.display_name,
                email=user.email,
            )

        return await self._role_cache.get_or_load(external_id, load)

    async def change_role(self, actor: Actor | None, user_id: int, role: str) -> UserRecord:
        if actor is None:
            raise AccessDeniedError("Unauthorized", unauthenticated=True)
        if not actor.is_super_admin:
            raise AccessDeniedError("Only super admins can change user roles")
        new_role = Role.parse(role)
        if new_role is None:
            raise TicketValidationError(f"Invalid role: {role}")

        updated = await self._directory.update_user_role(user_id, new_role)
        if updated is None:
            raise UserNotFoundError()
        self._role_cache.invalidate(updated.external_id)
        logger.info("User %s role set to %s by user %s", user_id, new_role.value, actor.user_id)
        return updated
