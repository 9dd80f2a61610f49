from .role_cache import RoleCache
from .roles import Actor, Role
from .tokens import InvalidTokenError, TokenVerifier

__all__ = ["Actor", "InvalidTokenError", "Role", "RoleCache", "TokenVerifier"]
