from .errors import UnhandledErrorMiddleware
from .identity import IdentityMiddleware

__all__ = ["IdentityMiddleware", "UnhandledErrorMiddleware"]
