from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.config import AuthSettings
from backend.auth import (
    AccessTokenIssuer,
    AuthService,
    InMemoryAuthRepository,
    PasswordHasher,
    RefreshTokenManager,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def settings() -> AuthSettings:
    return AuthSettings(jwt_secret="test-secret-key-with-enough-length-for-hs256")


@pytest.fixture()
def hasher() -> PasswordHasher:
    # Minimal argon2 parameters keep the suite fast.
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture()
def store() -> InMemoryAuthRepository:
    return InMemoryAuthRepository()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def refresh_manager(store, settings, clock) -> RefreshTokenManager:
    return RefreshTokenManager(store, settings, clock=clock)


@pytest.fixture()
def service(settings, store, hasher, refresh_manager) -> AuthService:
    return AuthService(
        settings,
        store,
        hasher=hasher,
        access_tokens=AccessTokenIssuer(settings),
        refresh_tokens=refresh_manager,
    )
