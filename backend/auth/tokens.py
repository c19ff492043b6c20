"""Refresh token issuance, rotation and revocation."""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple
from uuid import UUID

from app.config import AuthSettings
from .errors import RefreshTokenExpired, RefreshTokenNotFound
from .models import ConsumedRefreshToken, RefreshTokenEntry, UserRecord
from .repository import CredentialStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshTokenManager:
    """Issue opaque refresh tokens and keep each user's token list in shape.

    Only the SHA-256 digest of a token is persisted; the plaintext value is
    returned once, from :meth:`issue` or :meth:`rotate`. Each user keeps at
    most ``settings.max_refresh_tokens`` entries, oldest evicted first.
    """

    def __init__(
        self,
        store: CredentialStore,
        settings: AuthSettings,
        *,
        length: int = 32,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.ttl = settings.refresh_ttl
        self.cap = settings.max_refresh_tokens
        self.length = length
        self.clock = clock

    def new_token(self) -> str:
        return secrets.token_hex(self.length)

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    def _new_entry(self) -> Tuple[str, RefreshTokenEntry]:
        value = self.new_token()
        now = self.clock()
        entry = RefreshTokenEntry(
            token=self.hash_token(value),
            expires_at=now + self.ttl,
            created_at=now,
        )
        return value, entry

    async def issue(self, user: UserRecord) -> str:
        value, entry = self._new_entry()
        evicted = await self.store.push_refresh_token(user.id, entry, cap=self.cap)
        logger.info("Issued refresh token for user %s", user.id)
        if evicted:
            logger.info("Evicted %s oldest refresh token(s) for user %s", evicted, user.id)
        return value

    async def validate_and_consume(self, token: str) -> ConsumedRefreshToken:
        """Remove ``token`` from its owner and return what was removed.

        Raises :class:`RefreshTokenNotFound` if no user holds it and
        :class:`RefreshTokenExpired` if it had lapsed (the stale entry is
        dropped either way).
        """
        consumed = await self.store.consume_refresh_token(
            self.hash_token(token), now=self.clock(), cap=self.cap
        )
        return self._checked(consumed)

    async def rotate(self, token: str) -> Tuple[ConsumedRefreshToken, str]:
        """Swap ``token`` for a fresh one in a single store operation."""
        value, replacement = self._new_entry()
        consumed = self._checked(
            await self.store.consume_refresh_token(
                self.hash_token(token),
                now=replacement.created_at,
                replacement=replacement,
                cap=self.cap,
            )
        )
        logger.info("Rotated refresh token for user %s", consumed.user_id)
        return consumed, value

    async def revoke(self, token: str) -> None:
        consumed = await self.store.consume_refresh_token(
            self.hash_token(token), now=self.clock(), cap=self.cap
        )
        if consumed:
            logger.info("Revoked refresh token for user %s", consumed.user_id)

    async def revoke_all(self, user_id: UUID) -> int:
        removed = await self.store.clear_refresh_tokens(user_id)
        logger.info("Revoked %s refresh token(s) for user %s", removed, user_id)
        return removed

    async def owner_of(self, token: str) -> Optional[UserRecord]:
        return await self.store.get_user_by_refresh_token(self.hash_token(token))

    def _checked(self, consumed: Optional[ConsumedRefreshToken]) -> ConsumedRefreshToken:
        if consumed is None:
            raise RefreshTokenNotFound("refresh token not found")
        if consumed.expired:
            logger.info("Dropped expired refresh token for user %s", consumed.user_id)
            raise RefreshTokenExpired("refresh token expired")
        return consumed
