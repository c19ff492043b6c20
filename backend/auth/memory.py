"""In-process credential store for local development and the test-suite."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import UUID, uuid4

from .errors import Conflict, NotFound
from .models import ConsumedRefreshToken, RefreshTokenEntry, Role, UserRecord, normalize_email


class InMemoryAuthRepository:
    """Dict-backed store with the same atomicity as :class:`AuthRepository`.

    A single lock serialises every mutation, so read-modify-write on a user's
    token list cannot interleave. Reads return copies.
    """

    def __init__(self) -> None:
        self._users: Dict[UUID, UserRecord] = {}
        self._lock = asyncio.Lock()

    async def create_user(
        self, *, email: str, password_hash: str, name: str, phone: str, role: Role
    ) -> UserRecord:
        normalized = normalize_email(email)
        async with self._lock:
            if any(u.email == normalized for u in self._users.values()):
                raise Conflict("create user: unique constraint violated")
            now = datetime.now(timezone.utc)
            user = UserRecord(
                id=uuid4(),
                email=normalized,
                password_hash=password_hash,
                name=name,
                phone=phone,
                role=role,
                created_at=now,
                updated_at=now,
            )
            self._users[user.id] = user
            return self._copy(user)

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        normalized = normalize_email(email)
        for user in self._users.values():
            if user.email == normalized:
                return self._copy(user)
        return None

    async def get_user_by_id(self, user_id: UUID) -> Optional[UserRecord]:
        user = self._users.get(user_id)
        return self._copy(user) if user else None

    async def get_user_by_refresh_token(self, token: str) -> Optional[UserRecord]:
        owner = self._owner_of(token)
        return self._copy(owner) if owner else None

    async def update_password(self, user_id: UUID, password_hash: str) -> None:
        async with self._lock:
            user = self._require(user_id)
            user.password_hash = password_hash
            user.updated_at = datetime.now(timezone.utc)

    async def update_role(self, user_id: UUID, role: Role) -> None:
        async with self._lock:
            user = self._require(user_id)
            user.role = role
            user.updated_at = datetime.now(timezone.utc)

    async def push_refresh_token(
        self, user_id: UUID, entry: RefreshTokenEntry, *, cap: int
    ) -> int:
        async with self._lock:
            return self._insert_capped(self._require(user_id), entry, cap)

    async def consume_refresh_token(
        self,
        token: str,
        *,
        now: datetime,
        replacement: Optional[RefreshTokenEntry] = None,
        cap: int,
    ) -> Optional[ConsumedRefreshToken]:
        async with self._lock:
            owner = self._owner_of(token)
            if owner is None:
                return None
            entry = next(t for t in owner.refresh_tokens if t.token == token)
            owner.refresh_tokens = [t for t in owner.refresh_tokens if t.token != token]
            expired = entry.is_expired(now)
            if expired or replacement is None:
                return ConsumedRefreshToken(user_id=owner.id, entry=entry, expired=expired)
            self._insert_capped(owner, replacement, cap)
            return ConsumedRefreshToken(user_id=owner.id, entry=entry, expired=False, replaced=True)

    async def clear_refresh_tokens(self, user_id: UUID) -> int:
        async with self._lock:
            user = self._require(user_id)
            removed = len(user.refresh_tokens)
            user.refresh_tokens = []
            return removed

    def _owner_of(self, token: str) -> Optional[UserRecord]:
        for user in self._users.values():
            if any(t.token == token for t in user.refresh_tokens):
                return user
        return None

    def _require(self, user_id: UUID) -> UserRecord:
        user = self._users.get(user_id)
        if user is None:
            raise NotFound(f"user {user_id} does not exist")
        return user

    @staticmethod
    def _insert_capped(user: UserRecord, entry: RefreshTokenEntry, cap: int) -> int:
        tokens = sorted([*user.refresh_tokens, entry], key=lambda t: t.created_at)
        evicted = max(0, len(tokens) - cap)
        user.refresh_tokens = tokens[evicted:]
        return evicted

    @staticmethod
    def _copy(user: UserRecord) -> UserRecord:
        return replace(user, refresh_tokens=list(user.refresh_tokens))
