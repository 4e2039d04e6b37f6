"""Stateless bearer tokens carrying subject, role and expiry."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt

from models.records import Claims
from services.errors import ConfigurationError, Unauthenticated

_ALGORITHM = "HS256"
DEFAULT_ROLE = "user"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issue and verify HS256 tokens signed with a server-held secret."""

    def __init__(
        self,
        secret: str,
        ttl: timedelta = timedelta(hours=1),
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if not secret:
            raise ConfigurationError("JWT secret must be set.")
        self._secret = secret
        self.ttl = ttl
        self._clock = clock or _utcnow

    def issue(self, subject: str, role: str = DEFAULT_ROLE) -> str:
        expires_at = self._clock() + self.ttl
        claims = {"sub": subject, "role": role, "exp": int(expires_at.timestamp())}
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)

    def verify(self, token: str) -> Claims:
        """Decode ``token``; every failure is reported as ``Unauthenticated``."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.PyJWTError as exc:
            raise Unauthenticated() from exc

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise Unauthenticated()
        return Claims(
            subject=subject,
            role=str(payload.get("role", DEFAULT_ROLE)),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
