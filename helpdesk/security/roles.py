from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Permission levels, ordered from least to most privileged."""

    STUDENT = "student"
    COMMITTEE = "committee"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    @property
    def is_admin_level(self) -> bool:
        return self.level >= _ROLE_LEVELS[Role.ADMIN]

    def at_least(self, other: Role) -> bool:
        return self.level >= other.level

    @classmethod
    def parse(cls, value: str | None) -> Role | None:
        """Return the role for ``value`` or ``None`` when it is not a known role."""

        if value is None:
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_ROLE_LEVELS: dict[Role, int] = {
    Role.STUDENT: 0,
    Role.COMMITTEE: 1,
    Role.ADMIN: 2,
    Role.SUPER_ADMIN: 3,
}


@dataclass(slots=True, frozen=True)
class Actor:
    """The authenticated user a request acts on behalf of."""

    user_id: int
    external_id: str
    role: Role
    display_name: str
    email: str | None = None

    @property
    def is_admin_level(self) -> bool:
        return self.role.is_admin_level

    @property
    def is_super_admin(self) -> bool:
        return self.role is Role.SUPER_ADMIN
