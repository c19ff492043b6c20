from __future__ import annotations

import asyncio

import pytest

from backend.auth.errors import (
    AuthError,
    Conflict,
    Forbidden,
    MissingRefreshToken,
    NotFound,
    RefreshTokenExpired,
    RefreshTokenNotFound,
    Unauthorized,
    ValidationError,
)
from backend.auth.models import Role


def _register(service, email="a@x.com", password="secret1", name="Ana", phone="5550001", role=None):
    return asyncio.run(service.register(email, password, name, phone, role))


def test_register_returns_tokens_and_summary(service):
    result = _register(service)

    assert set(result) == {"access_token", "refresh_token", "user"}
    assert result["user"]["email"] == "a@x.com"
    assert result["user"]["role"] == "client"
    assert set(result["user"]) == {"id", "name", "role", "email"}
    assert "password" not in repr(result) and "$argon2" not in repr(result)


def test_register_lowercases_email_and_rejects_duplicates(service):
    _register(service, email="Courier@X.com", role="courier")

    with pytest.raises(Conflict) as excinfo:
        _register(service, email="courier@x.com")

    assert excinfo.value.to_response() == (409, {"message": "Email already registered."})


def test_register_validates_input(service):
    with pytest.raises(ValidationError):
        _register(service, email="not-an-email")
    with pytest.raises(ValidationError):
        _register(service, password="")
    with pytest.raises(ValidationError):
        _register(service, phone="  ")
    with pytest.raises(ValidationError) as excinfo:
        _register(service, role="superuser")

    assert excinfo.value.to_response()[0] == 400


def test_register_hashes_password_once(service, store, hasher):
    result = _register(service)
    user = asyncio.run(store.get_user_by_email("a@x.com"))

    assert user.password_hash != "secret1"
    assert hasher.verify(user.password_hash, "secret1")
    assert result["user"]["id"] == str(user.id)


def test_login_after_register_issues_a_new_refresh_token(service):
    registered = _register(service)
    logged_in = asyncio.run(service.login("a@x.com", "secret1"))

    assert logged_in["refresh_token"] != registered["refresh_token"]
    assert logged_in["user"] == registered["user"]


def test_login_failures_are_indistinguishable(service):
    _register(service)

    with pytest.raises(Unauthorized) as wrong_password:
        asyncio.run(service.login("a@x.com", "nope"))
    with pytest.raises(Unauthorized) as unknown_email:
        asyncio.run(service.login("ghost@x.com", "secret1"))

    assert wrong_password.value.to_response() == unknown_email.value.to_response()
    assert wrong_password.value.to_response() == (401, {"message": "Invalid credentials."})


def test_login_requires_both_fields(service):
    with pytest.raises(ValidationError):
        asyncio.run(service.login("", "secret1"))


def test_login_upgrades_outdated_hash(service, store):
    from backend.auth.passwords import PasswordHasher

    legacy = PasswordHasher(time_cost=2, memory_cost=16, parallelism=1)
    user = asyncio.run(
        store.create_user(
            email="old@x.com",
            password_hash=legacy.hash("secret1"),
            name="Old",
            phone="1",
            role=Role.CLIENT,
        )
    )

    asyncio.run(service.login("old@x.com", "secret1"))
    upgraded = asyncio.run(store.get_user_by_id(user.id))

    assert upgraded.password_hash != user.password_hash
    assert not service.hasher.needs_rehash(upgraded.password_hash)
    assert service.hasher.verify(upgraded.password_hash, "secret1")


def test_refresh_rotation_scenario(service):
    first = _register(service)

    second = asyncio.run(service.refresh_session(first["refresh_token"]))
    assert second["refresh_token"] != first["refresh_token"]
    assert service.access_tokens.verify(second["access_token"]) == first["user"]["id"]

    with pytest.raises(Forbidden) as replay:
        asyncio.run(service.refresh_session(first["refresh_token"]))
    assert isinstance(replay.value, RefreshTokenNotFound)

    third = asyncio.run(service.refresh_session(second["refresh_token"]))
    assert third["refresh_token"] not in {first["refresh_token"], second["refresh_token"]}


def test_refresh_requires_token(service):
    with pytest.raises(MissingRefreshToken) as excinfo:
        asyncio.run(service.refresh_session(None))

    assert excinfo.value.to_response()[0] == 401


def test_expired_refresh_token_is_forbidden_and_dropped(service, store, clock):
    first = _register(service)
    clock.advance(days=7, seconds=1)

    with pytest.raises(RefreshTokenExpired) as expired:
        asyncio.run(service.refresh_session(first["refresh_token"]))
    with pytest.raises(RefreshTokenNotFound) as missing:
        asyncio.run(service.refresh_session(first["refresh_token"]))

    assert expired.value.to_response() == missing.value.to_response()
    user = asyncio.run(store.get_user_by_email("a@x.com"))
    assert user.refresh_tokens == []


def test_concurrent_refresh_with_same_token_succeeds_once(service):
    first = _register(service)

    async def race():
        return await asyncio.gather(
            service.refresh_session(first["refresh_token"]),
            service.refresh_session(first["refresh_token"]),
            return_exceptions=True,
        )

    outcomes = asyncio.run(race())

    successes = [o for o in outcomes if isinstance(o, dict)]
    failures = [o for o in outcomes if isinstance(o, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1 and isinstance(failures[0], RefreshTokenNotFound)


def test_logout_is_uniform_and_scoped_to_one_session(service, store):
    phone = _register(service)
    laptop = asyncio.run(service.login("a@x.com", "secret1"))

    assert asyncio.run(service.logout(phone["refresh_token"])) is None
    assert asyncio.run(service.logout("never-issued")) is None
    assert asyncio.run(service.logout(phone["refresh_token"])) is None

    with pytest.raises(RefreshTokenNotFound):
        asyncio.run(service.refresh_session(phone["refresh_token"]))
    renewed = asyncio.run(service.refresh_session(laptop["refresh_token"]))
    assert renewed["refresh_token"]


def test_logout_requires_a_token(service):
    with pytest.raises(ValidationError) as excinfo:
        asyncio.run(service.logout(""))

    assert excinfo.value.to_response() == (400, {"message": "Refresh token required for revocation."})


def test_get_profile_never_exposes_hash(service):
    registered = _register(service)
    profile = asyncio.run(service.get_profile(registered["user"]["id"]))

    assert profile["email"] == "a@x.com"
    assert profile["phone"] == "5550001"
    assert set(profile) == {"id", "email", "name", "phone", "role", "created_at", "updated_at"}
    assert "password_hash" not in profile
    assert not any(str(v).startswith("$argon2") for v in profile.values())


def test_get_profile_unknown_user(service):
    with pytest.raises(NotFound):
        asyncio.run(service.get_profile("00000000-0000-0000-0000-000000000000"))
    with pytest.raises(NotFound):
        asyncio.run(service.get_profile("not-a-uuid"))


def test_me_resolves_bearer_token(service):
    registered = _register(service)
    header = f"Bearer {registered['access_token']}"

    assert asyncio.run(service.me(header))["id"] == registered["user"]["id"]


def test_authorize_checks_role(service):
    store_owner = _register(service, email="shop@x.com", role=Role.STORE)
    header = f"Bearer {store_owner['access_token']}"

    user = asyncio.run(service.authorize(header, [Role.STORE, Role.ADMIN]))
    assert user.role is Role.STORE

    with pytest.raises(Forbidden) as excinfo:
        asyncio.run(service.authorize(header, ["courier"]))
    assert excinfo.value.to_response()[0] == 403


def test_change_password_signs_out_every_device(service, store):
    first = _register(service)
    second = asyncio.run(service.login("a@x.com", "secret1"))
    user_id = first["user"]["id"]

    with pytest.raises(Unauthorized):
        asyncio.run(service.change_password(user_id, "wrong", "secret2"))

    asyncio.run(service.change_password(user_id, "secret1", "secret2"))

    for session in (first, second):
        with pytest.raises(RefreshTokenNotFound):
            asyncio.run(service.refresh_session(session["refresh_token"]))
    with pytest.raises(Unauthorized):
        asyncio.run(service.login("a@x.com", "secret1"))
    assert asyncio.run(service.login("a@x.com", "secret2"))["refresh_token"]


def test_unexpected_failures_surface_as_generic_server_error(service, store, caplog):
    async def broken(*args, **kwargs):
        raise RuntimeError("connection string postgres://secret@db leaked")

    store.get_user_by_email = broken

    with pytest.raises(AuthError) as excinfo:
        asyncio.run(service.login("a@x.com", "secret1"))

    status, body = excinfo.value.to_response()
    assert status == 500
    assert body == {"message": "Internal server error."}
    assert "login failed unexpectedly" in caplog.text


def test_unknown_email_login_does_not_hash(service, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("no hashing expected on a failed login")

    monkeypatch.setattr(service.hasher, "hash", fail)
    monkeypatch.setattr(service.hasher, "hash_async", fail)

    with pytest.raises(Unauthorized):
        asyncio.run(service.login("ghost@x.com", "secret1"))
    assert service.hasher.verify(service._decoy_hash, "secret1") is False
