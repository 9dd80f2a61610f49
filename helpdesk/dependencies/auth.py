from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request

from helpdesk.security.roles import Actor, Role
from helpdesk.services.users import UserService


async def get_user_service(request: Request) -> UserService:
    service = getattr(request.app.state, "user_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not available")
    return service


async def get_current_actor(
    request: Request, users: Annotated[UserService, Depends(get_user_service)]
) -> Actor:
    """Resolve the verified token subject to the user acting on this request.

    :class:`helpdesk.middleware.IdentityMiddleware` has already validated the
    token; a request without one is rejected here. The role is always read
    from the user record, never from the token, so a role change takes effect
    once the role cache entry expires or is invalidated.
    """

    claims = getattr(request.state, "claims", None)
    if not claims:
        raise HTTPException(status_code=401, detail="Unauthorized")

    actor = await users.resolve_actor(str(claims["sub"]))
    if actor is None:
        raise HTTPException(status_code=404, detail="User not found")
    return actor


def role_required(role: Role) -> Callable[[Actor], Actor]:
    """Dependency factory ensuring the current actor holds at least ``role``."""

    async def dependency(actor: Annotated[Actor, Depends(get_current_actor)]) -> Actor:
        if not actor.role.at_least(role):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return actor

    return dependency


CurrentActor = Annotated[Actor, Depends(get_current_actor)]
SuperAdmin = Annotated[Actor, Depends(role_required(Role.SUPER_ADMIN))]
