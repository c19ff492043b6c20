"""Database access helpers for authentication."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg import errors as pg_errors
from psycopg_pool import PoolClosed, PoolTimeout

from app.config import logger
from backend.db import get_async_pool
from .errors import Conflict, NotFound, StoreUnavailable
from .models import ConsumedRefreshToken, RefreshTokenEntry, Role, UserRecord, normalize_email


class CredentialStore(Protocol):
    """Persistence contract used by the auth core.

    Refresh tokens are owned by their user and only change through
    :meth:`push_refresh_token`, :meth:`consume_refresh_token` and
    :meth:`clear_refresh_tokens`, each atomic per user.
    """

    async def create_user(
        self, *, email: str, password_hash: str, name: str, phone: str, role: Role
    ) -> UserRecord: ...

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]: ...

    async def get_user_by_id(self, user_id: UUID) -> Optional[UserRecord]: ...

    async def get_user_by_refresh_token(self, token: str) -> Optional[UserRecord]: ...

    async def update_password(self, user_id: UUID, password_hash: str) -> None: ...

    async def update_role(self, user_id: UUID, role: Role) -> None: ...

    async def push_refresh_token(
        self, user_id: UUID, entry: RefreshTokenEntry, *, cap: int
    ) -> int: ...

    async def consume_refresh_token(
        self,
        token: str,
        *,
        now: datetime,
        replacement: Optional[RefreshTokenEntry] = None,
        cap: int,
    ) -> Optional[ConsumedRefreshToken]: ...

    async def clear_refresh_tokens(self, user_id: UUID) -> int: ...


_USER_COLUMNS = "id, email, password_hash, name, phone, role, created_at, updated_at"

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email TEXT NOT NULL UNIQUE,
        password_hash TEXT NOT NULL,
        name TEXT NOT NULL,
        phone TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'client'
            CHECK (role IN ('client', 'store', 'courier', 'admin')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_refresh_tokens (
        token TEXT PRIMARY KEY,
        user_id UUID NOT NULL REFERENCES users (id) ON DELETE CASCADE,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        seq BIGSERIAL NOT NULL
    )
    """,
    """
    ALTER TABLE user_refresh_tokens
    ADD COLUMN IF NOT EXISTS seq BIGSERIAL NOT NULL
    """,
    """
    CREATE INDEX IF NOT EXISTS user_refresh_tokens_owner_seq_idx
    ON user_refresh_tokens (user_id, created_at, seq)
    """,
)


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except pg_errors.UniqueViolation as exc:
        raise Conflict(f"{action}: unique constraint violated") from exc
    except (psycopg.Error, PoolTimeout, PoolClosed, OSError) as exc:
        logger.error("Credential store failure during %s: %s", action, exc)
        raise StoreUnavailable(f"{action} failed") from exc


def _entry(row: Dict[str, Any]) -> RefreshTokenEntry:
    return RefreshTokenEntry(
        token=row["token"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
    )


def _user(row: Dict[str, Any], tokens: List[Dict[str, Any]]) -> UserRecord:
    return UserRecord(
        id=row["id"],
        email=row["email"],
        password_hash=row["password_hash"],
        name=row["name"],
        phone=row["phone"],
        role=Role(row["role"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        refresh_tokens=[_entry(t) for t in tokens],
    )


class AuthRepository:
    """PostgreSQL credential store backed by the shared pool."""

    async def ensure_schema(self) -> None:
        pool = await get_async_pool()
        with _store_errors("schema bootstrap"):
            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    for statement in SCHEMA_STATEMENTS:
                        await cur.execute(statement)
        logger.info("Authentication schema ensured")

    async def create_user(
        self, *, email: str, password_hash: str, name: str, phone: str, role: Role
    ) -> UserRecord:
        pool = await get_async_pool()
        with _store_errors("create user"):
            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        INSERT INTO users (email, password_hash, name, phone, role)
                        VALUES (%s, %s, %s, %s, %s)
                        RETURNING {_USER_COLUMNS}
                        """,
                        (normalize_email(email), password_hash, name, phone, role.value),
                    )
                    row = await cur.fetchone()
        return _user(row, [])

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return await self._find_user("email = %s", (normalize_email(email),))

    async def get_user_by_id(self, user_id: UUID) -> Optional[UserRecord]:
        return await self._find_user("id = %s", (user_id,))

    async def get_user_by_refresh_token(self, token: str) -> Optional[UserRecord]:
        return await self._find_user(
            "id = (SELECT user_id FROM user_refresh_tokens WHERE token = %s)",
            (token,),
        )

    async def _find_user(self, where: str, params: tuple) -> Optional[UserRecord]:
        pool = await get_async_pool()
        with _store_errors("find user"):
            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"SELECT {_USER_COLUMNS} FROM users WHERE {where} LIMIT 1",
                        params,
                    )
                    row = await cur.fetchone()
                    if not row:
                        return None
                    await cur.execute(
                        """
                        SELECT token, expires_at, created_at
                        FROM user_refresh_tokens
                        WHERE user_id = %s
                        ORDER BY created_at ASC, seq ASC
                        """,
                        (row["id"],),
                    )
                    tokens = await cur.fetchall()
        return _user(row, tokens)

    async def update_password(self, user_id: UUID, password_hash: str) -> None:
        await self._update_user("password_hash", password_hash, user_id)

    async def update_role(self, user_id: UUID, role: Role) -> None:
        await self._update_user("role", role.value, user_id)

    async def _update_user(self, column: str, value: Any, user_id: UUID) -> None:
        pool = await get_async_pool()
        with _store_errors(f"update {column}"):
            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        f"""
                        UPDATE users
                        SET {column} = %s, updated_at = NOW()
                        WHERE id = %s
                        """,
                        (value, user_id),
                    )
                    if cur.rowcount == 0:
                        raise NotFound(f"user {user_id} does not exist")

    async def push_refresh_token(
        self, user_id: UUID, entry: RefreshTokenEntry, *, cap: int
    ) -> int:
        pool = await get_async_pool()
        with _store_errors("push refresh token"):
            async with pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.execute(
                            "SELECT id FROM users WHERE id = %s FOR UPDATE",
                            (user_id,),
                        )
                        if not await cur.fetchone():
                            raise NotFound(f"user {user_id} does not exist")
                        return await self._insert_capped(cur, user_id, entry, cap)

    async def consume_refresh_token(
        self,
        token: str,
        *,
        now: datetime,
        replacement: Optional[RefreshTokenEntry] = None,
        cap: int,
    ) -> Optional[ConsumedRefreshToken]:
        pool = await get_async_pool()
        with _store_errors("consume refresh token"):
            async with pool.connection() as conn:
                async with conn.transaction():
                    async with conn.cursor() as cur:
                        await cur.execute(
                            "SELECT user_id FROM user_refresh_tokens WHERE token = %s",
                            (token,),
                        )
                        owner = await cur.fetchone()
                        if not owner:
                            return None
                        user_id = owner["user_id"]
                        # Owner row first, same order as push_refresh_token.
                        await cur.execute(
                            "SELECT id FROM users WHERE id = %s FOR UPDATE",
                            (user_id,),
                        )
                        await cur.execute(
                            """
                            DELETE FROM user_refresh_tokens
                            WHERE token = %s AND user_id = %s
                            RETURNING user_id, token, expires_at, created_at
                            """,
                            (token, user_id),
                        )
                        row = await cur.fetchone()
                        if not row:
                            # Consumed by a concurrent transaction while we waited for the lock.
                            return None
                        entry = _entry(row)
                        expired = entry.is_expired(now)
                        if expired or replacement is None:
                            return ConsumedRefreshToken(user_id=user_id, entry=entry, expired=expired)
                        await self._insert_capped(cur, user_id, replacement, cap)
                        return ConsumedRefreshToken(
                            user_id=user_id, entry=entry, expired=False, replaced=True
                        )

    async def clear_refresh_tokens(self, user_id: UUID) -> int:
        pool = await get_async_pool()
        with _store_errors("clear refresh tokens"):
            async with pool.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "DELETE FROM user_refresh_tokens WHERE user_id = %s",
                        (user_id,),
                    )
                    return cur.rowcount

    @staticmethod
    async def _insert_capped(cur, user_id: UUID, entry: RefreshTokenEntry, cap: int) -> int:
        await cur.execute(
            """
            INSERT INTO user_refresh_tokens (token, user_id, expires_at, created_at)
            VALUES (%s, %s, %s, %s)
            """,
            (entry.token, user_id, entry.expires_at, entry.created_at),
        )
        await cur.execute(
            """
            DELETE FROM user_refresh_tokens
            WHERE token IN (
                SELECT token
                FROM user_refresh_tokens
                WHERE user_id = %s
                ORDER BY created_at DESC, seq DESC
                OFFSET %s
            )
            """,
            (user_id, cap),
        )
        return cur.rowcount
