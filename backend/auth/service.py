"""High-level authentication workflows."""

from __future__ import annotations

import functools
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Union
from uuid import UUID

from email_validator import EmailNotValidError, validate_email

from app.config import AuthSettings
from .errors import (
    AuthError,
    Conflict,
    MissingRefreshToken,
    NotFound,
    RefreshTokenNotFound,
    Unauthorized,
    ValidationError,
)
from .guards import authenticate, require_role
from .models import Role, UserRecord, normalize_email
from .passwords import PasswordHasher
from .repository import AuthRepository, CredentialStore
from .sessions import AccessTokenIssuer
from .tokens import RefreshTokenManager

logger = logging.getLogger(__name__)


def _service_boundary(action: str):
    """Log server-side failures and keep their details out of the raised error."""

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except AuthError as exc:
                if exc.status_code >= 500:
                    logger.exception("%s failed: %s", action, exc.detail)
                raise
            except Exception as exc:
                logger.exception("%s failed unexpectedly", action)
                raise AuthError(f"{action} failed") from exc

        return wrapper

    return decorator


@dataclass(frozen=True)
class SessionTokens:
    access_token: str
    refresh_token: str

    def to_dict(self) -> Dict[str, str]:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}


class AuthService:
    def __init__(
        self,
        settings: AuthSettings,
        store: Optional[CredentialStore] = None,
        *,
        hasher: Optional[PasswordHasher] = None,
        access_tokens: Optional[AccessTokenIssuer] = None,
        refresh_tokens: Optional[RefreshTokenManager] = None,
    ) -> None:
        self.settings = settings
        self.repo = store or AuthRepository()
        self.hasher = hasher or PasswordHasher.from_settings(settings)
        self.access_tokens = access_tokens or AccessTokenIssuer(settings)
        self.refresh_tokens = refresh_tokens or RefreshTokenManager(self.repo, settings)
        # Unknown emails are checked against this so every failed login costs one verify.
        self._decoy_hash = self.hasher.hash(secrets.token_urlsafe(16))

    @_service_boundary("register")
    async def register(
        self,
        email: str,
        password: str,
        name: str,
        phone: str,
        role: Optional[Union[Role, str]] = None,
    ) -> Dict[str, Any]:
        normalized = self._validate_email(email)
        self._require_fields(password=password, name=name, phone=phone)
        user_role = self._validate_role(role)
        if await self.repo.get_user_by_email(normalized):
            raise Conflict("email already registered")
        # The only place a new password is hashed; stores receive the hash as-is.
        hashed = await self.hasher.hash_async(password)
        user = await self.repo.create_user(
            email=normalized,
            password_hash=hashed,
            name=name.strip(),
            phone=phone.strip(),
            role=user_role,
        )
        logger.info("Registered user %s with role %s", user.id, user.role.value)
        return await self._session_payload(user)

    @_service_boundary("login")
    async def login(self, email: str, password: str) -> Dict[str, Any]:
        if not email or not password:
            raise ValidationError("Email and password are required.")
        user = await self.repo.get_user_by_email(normalize_email(email))
        if user is None:
            # Same hashing work as a real mismatch so both failures look alike.
            await self.hasher.verify_async(self._decoy_hash, password)
            logger.warning("Rejected login attempt")
            raise Unauthorized("invalid credentials")
        if not await self.hasher.verify_async(user.password_hash, password):
            logger.warning("Rejected login attempt")
            raise Unauthorized("invalid credentials")
        if self.hasher.needs_rehash(user.password_hash):
            await self.repo.update_password(user.id, await self.hasher.hash_async(password))
            logger.info("Upgraded password hash for user %s", user.id)
        logger.info("User %s logged in", user.id)
        return await self._session_payload(user)

    @_service_boundary("refresh")
    async def refresh_session(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        if not refresh_token:
            raise MissingRefreshToken("refresh token required")
        consumed, new_refresh = await self.refresh_tokens.rotate(refresh_token)
        user = await self.repo.get_user_by_id(consumed.user_id)
        if user is None:
            raise RefreshTokenNotFound("refresh token owner no longer exists")
        tokens = SessionTokens(
            access_token=self.access_tokens.issue(user.id),
            refresh_token=new_refresh,
        )
        return {**tokens.to_dict(), "message": "Tokens renewed."}

    @_service_boundary("logout")
    async def logout(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            raise ValidationError("Refresh token required for revocation.")
        await self.refresh_tokens.revoke(refresh_token)

    @_service_boundary("profile")
    async def get_profile(self, user_id: Union[UUID, str]) -> Dict[str, Any]:
        return (await self._load_user(user_id)).public()

    @_service_boundary("me")
    async def me(self, authorization: Optional[str]) -> Dict[str, Any]:
        """Resolve the bearer token in ``authorization`` and return the caller's profile."""
        return (await self._load_user(authenticate(self.access_tokens, authorization))).public()

    @_service_boundary("authorize")
    async def authorize(
        self, authorization: Optional[str], roles: Iterable[Union[Role, str]]
    ) -> UserRecord:
        """Authenticate the caller and require one of ``roles``."""
        user = await self._load_user(authenticate(self.access_tokens, authorization))
        return require_role(user, roles)

    @_service_boundary("change password")
    async def change_password(
        self, user_id: Union[UUID, str], current_password: str, new_password: str
    ) -> None:
        if not new_password:
            raise ValidationError("New password is required.")
        user = await self._load_user(user_id)
        if not await self.hasher.verify_async(user.password_hash, current_password):
            logger.warning("Rejected password change for user %s", user.id)
            raise Unauthorized("invalid credentials")
        await self.repo.update_password(user.id, await self.hasher.hash_async(new_password))
        await self.refresh_tokens.revoke_all(user.id)
        logger.info("Password changed for user %s", user.id)

    async def _session_payload(self, user: UserRecord) -> Dict[str, Any]:
        tokens = SessionTokens(
            access_token=self.access_tokens.issue(user.id),
            refresh_token=await self.refresh_tokens.issue(user),
        )
        return {**tokens.to_dict(), "user": user.summary()}

    async def _load_user(self, user_id: Union[UUID, str]) -> UserRecord:
        try:
            key = user_id if isinstance(user_id, UUID) else UUID(str(user_id))
        except ValueError as exc:
            raise NotFound(f"malformed user id {user_id!r}") from exc
        user = await self.repo.get_user_by_id(key)
        if user is None:
            raise NotFound(f"user {key} not found")
        return user

    @staticmethod
    def _require_fields(**fields: str) -> None:
        missing = [name for name, value in fields.items() if not value or not str(value).strip()]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}.")

    @staticmethod
    def _validate_role(role: Optional[Union[Role, str]]) -> Role:
        if role is None or role == "":
            return Role.CLIENT
        try:
            return Role(role)
        except ValueError as exc:
            allowed = ", ".join(r.value for r in Role)
            raise ValidationError(f"Unknown role {role!r}; expected one of {allowed}.") from exc

    @staticmethod
    def _validate_email(email: str) -> str:
        if not email:
            raise ValidationError("Email is required.")
        try:
            return normalize_email(validate_email(email, check_deliverability=False).normalized)
        except EmailNotValidError as exc:
            raise ValidationError(str(exc)) from exc
