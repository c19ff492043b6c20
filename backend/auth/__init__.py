"""Authentication core for the Mandados delivery backend."""

from .errors import AuthError
from .memory import InMemoryAuthRepository
from .models import Role, UserRecord
from .passwords import PasswordHasher
from .repository import AuthRepository, CredentialStore
from .service import AuthService
from .sessions import AccessTokenIssuer
from .tokens import RefreshTokenManager

__all__ = [
    "AccessTokenIssuer",
    "AuthError",
    "AuthRepository",
    "AuthService",
    "CredentialStore",
    "InMemoryAuthRepository",
    "PasswordHasher",
    "RefreshTokenManager",
    "Role",
    "UserRecord",
]
