"""Password hashing helpers using Argon2id."""

from __future__ import annotations

import asyncio

from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

from app.config import AuthSettings
from .errors import CredentialProcessingError


class PasswordHasher:
    """Wrap Argon2 with peppering, rehash checks and thread offloading.

    Each call to :meth:`hash` embeds a fresh random salt, so hashing the same
    password twice yields two different strings that both verify.
    """

    def __init__(
        self,
        *,
        time_cost: int = 3,
        memory_cost: int = 64 * 1024,
        parallelism: int = 2,
        hash_len: int = 32,
        salt_len: int = 16,
        pepper: str = "",
    ) -> None:
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=salt_len,
        )
        self._pepper = pepper or ""

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "PasswordHasher":
        return cls(
            time_cost=settings.hash_time_cost,
            memory_cost=settings.hash_memory_cost,
            pepper=settings.pepper,
        )

    def hash(self, password: str) -> str:
        try:
            return self._hasher.hash(self._with_pepper(password))
        except HashingError as exc:
            raise CredentialProcessingError("password hashing failed") from exc

    def verify(self, stored_hash: str, password: str) -> bool:
        if not stored_hash or not password:
            return False
        try:
            return self._hasher.verify(stored_hash, self._with_pepper(password))
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, stored_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHashError:
            return True

    async def hash_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, stored_hash: str, password: str) -> bool:
        return await asyncio.to_thread(self.verify, stored_hash, password)

    def _with_pepper(self, password: str) -> str:
        return f"{password}{self._pepper}"
