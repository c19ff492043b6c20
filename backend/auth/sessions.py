"""JWT access token helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Union
from uuid import UUID

import jwt

from app.config import AuthSettings
from .errors import CredentialProcessingError


class AccessTokenIssuer:
    """Issue and verify short-lived, self-contained access tokens.

    Verification never touches the credential store; a token is trusted until
    its ``exp`` claim passes. There is no revocation list.
    """

    def __init__(self, settings: AuthSettings) -> None:
        self.secret = settings.jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.default_ttl = settings.access_ttl

    def issue(self, user_id: Union[UUID, str], ttl: Optional[timedelta] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(user_id),
            "iat": int(now.timestamp()),
            "exp": int((now + (self.default_ttl if ttl is None else ttl)).timestamp()),
        }
        try:
            return jwt.encode(payload, self.secret, algorithm=self.algorithm)
        except (jwt.PyJWTError, TypeError, ValueError) as exc:
            raise CredentialProcessingError("access token signing failed") from exc

    def verify(self, token: str) -> Optional[str]:
        """Return the user id carried by ``token``, or ``None`` if it is invalid."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"]},
            )
        except jwt.PyJWTError:
            return None
        subject = payload.get("sub")
        return subject if isinstance(subject, str) and subject else None
