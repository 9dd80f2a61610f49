"""Bearer token verification."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

import jwt

from helpdesk.core.config import Settings


class InvalidTokenError(ValueError):
    """Raised when a bearer token cannot be trusted."""


class TokenVerifier:
    """Validate HS256 identity tokens whose ``sub`` is the external user id."""

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = "HS256",
        audience: str | None = None,
        expiry: timedelta = timedelta(hours=1),
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self._audience = audience
        self._expiry = expiry

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenVerifier:
        return cls(
            settings.jwt_secret,
            algorithm=settings.jwt_algorithm,
            audience=settings.jwt_audience,
            expiry=timedelta(minutes=settings.jwt_expiry_minutes),
        )

    def verify(self, token: str) -> dict[str, Any]:
        options = {"require": ["sub", "exp"]}
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._audience,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError("Invalid authentication credentials") from exc
        if not str(claims.get("sub") or "").strip():
            raise InvalidTokenError("Invalid authentication credentials")
        return claims

    def issue(self, subject: str, *, extra: Mapping[str, Any] | None = None) -> str:
        """Mint a token for ``subject``; used by local tooling and tests."""

        now = datetime.now(timezone.utc)
        payload: dict[str, Any] = {
            "sub": subject,
            "iat": now,
            "exp": now + self._expiry,
        }
        if self._audience:
            payload["aud"] = self._audience
        if extra:
            payload.update(extra)
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)
