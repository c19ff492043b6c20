"""Shared async PostgreSQL connection pool with resilient reconnects."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence, Tuple

from psycopg import AsyncConnection, InterfaceError, OperationalError, errors as pg_errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolClosed, PoolTimeout

from app.config import (
    DATABASE_APPLICATION_NAME,
    DATABASE_POOL_MAX_SIZE,
    DATABASE_POOL_MIN_SIZE,
    DATABASE_POOL_TIMEOUT,
    DATABASE_URL,
    ConfigurationError,
    logger,
)

DEFAULT_RETRY_ATTEMPTS = 5
DEFAULT_RETRY_INITIAL_DELAY = 0.5
DEFAULT_RETRY_MAX_DELAY = 5.0

DEFAULT_RETRYABLE_EXCEPTIONS: Tuple[type[BaseException], ...] = (
    OperationalError,
    InterfaceError,
    pg_errors.AdminShutdown,
    pg_errors.CannotConnectNow,
    pg_errors.ConnectionException,
    pg_errors.CrashShutdown,
    PoolTimeout,
    ConnectionResetError,
    ConnectionAbortedError,
    TimeoutError,
)


class ResilientAsyncConnectionPool(AsyncConnectionPool):
    """AsyncConnectionPool whose ``connection()`` retries acquisition with backoff.

    Only acquisition is retried. Statements already sent are never replayed,
    so a failure inside a transaction surfaces to the caller unchanged.
    """

    def __init__(
        self,
        *args,
        acquire_retries: int = DEFAULT_RETRY_ATTEMPTS,
        retry_initial_delay: float = DEFAULT_RETRY_INITIAL_DELAY,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        retryable_errors: Optional[Sequence[type[BaseException]]] = None,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self._retry_attempts = max(1, acquire_retries)
        self._retry_initial_delay = max(0.05, retry_initial_delay)
        self._retry_max_delay = max(self._retry_initial_delay, retry_max_delay)
        self._retryable_errors: Tuple[type[BaseException], ...] = tuple(
            retryable_errors or DEFAULT_RETRYABLE_EXCEPTIONS
        )

    async def _getconn_with_retry(self, timeout: Optional[float]) -> AsyncConnection:
        delay = self._retry_initial_delay
        for attempt in range(1, self._retry_attempts + 1):
            try:
                conn = await self.getconn(timeout)
            except self._retryable_errors as exc:
                if attempt == self._retry_attempts:
                    logger.error(
                        "Unable to acquire PostgreSQL connection after %s attempts",
                        self._retry_attempts,
                    )
                    raise
                logger.warning(
                    "PostgreSQL connection attempt %s/%s failed: %s",
                    attempt,
                    self._retry_attempts,
                    exc,
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self._retry_max_delay)
            else:
                if attempt > 1:
                    logger.info("PostgreSQL connection re-established after %s attempts", attempt)
                return conn
        raise PoolClosed("connection retries exhausted")

    @asynccontextmanager
    async def connection(self, timeout: Optional[float] = None) -> AsyncIterator[AsyncConnection]:
        conn = await self._getconn_with_retry(timeout)
        try:
            yield conn
        finally:
            await self.putconn(conn)


_pool: Optional[ResilientAsyncConnectionPool] = None
_pool_lock: Optional[asyncio.Lock] = None


def _conninfo(url: str) -> str:
    if "application_name" in url:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}application_name={DATABASE_APPLICATION_NAME}"


async def get_async_pool() -> ResilientAsyncConnectionPool:
    """Return a singleton async connection pool."""

    global _pool, _pool_lock
    if _pool and not _pool.closed:
        return _pool

    if _pool_lock is None:
        _pool_lock = asyncio.Lock()

    async with _pool_lock:
        if _pool and not _pool.closed:
            return _pool

        if not DATABASE_URL:
            raise ConfigurationError("DATABASE_URL environment variable is required for the credential store")

        pool = ResilientAsyncConnectionPool(
            conninfo=_conninfo(DATABASE_URL),
            kwargs={
                "autocommit": True,
                "prepare_threshold": 0,
                "row_factory": dict_row,
            },
            min_size=DATABASE_POOL_MIN_SIZE,
            max_size=DATABASE_POOL_MAX_SIZE,
            max_idle=300.0,
            max_lifetime=3600.0,
            timeout=DATABASE_POOL_TIMEOUT,
            reconnect_timeout=300.0,
            open=False,
            acquire_retries=7,
            retry_initial_delay=0.5,
            retry_max_delay=8.0,
        )

        await pool.open()
        _pool = pool
        logger.info("Credential store pool initialized")
        return _pool


async def close_async_pool() -> None:
    """Close the shared pool when the app shuts down."""

    global _pool
    if _pool and not _pool.closed:
        await _pool.close()
        logger.info("Credential store pool closed")
    _pool = None
