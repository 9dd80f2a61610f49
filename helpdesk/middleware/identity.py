"""Bearer token authentication middleware for FastAPI."""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from helpdesk.security.tokens import InvalidTokenError, TokenVerifier


class IdentityMiddleware(BaseHTTPMiddleware):
    """Validate the bearer token and store its claims on the request state.

    Requests without an ``Authorization`` header pass through with
    ``request.state.claims`` set to ``None``; the route dependencies decide
    whether identity is required.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request.state.claims = None
        authorization = request.headers.get("Authorization")

        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            credentials = credentials.strip()
            if scheme.lower() != "bearer" or not credentials:
                return JSONResponse(status_code=401, content={"detail": "Invalid authentication credentials"})

            verifier: TokenVerifier = request.app.state.token_verifier
            try:
                request.state.claims = verifier.verify(credentials)
            except InvalidTokenError as exc:
                return JSONResponse(status_code=401, content={"detail": str(exc)})

        return await call_next(request)
