"""Shared PostgreSQL access for the credential store."""

from .pool import ResilientAsyncConnectionPool, close_async_pool, get_async_pool

__all__ = ["ResilientAsyncConnectionPool", "get_async_pool", "close_async_pool"]
