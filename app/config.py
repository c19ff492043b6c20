import os
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Logging configuration
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

# Database configuration
DATABASE_URL = os.environ.get("DATABASE_URL")
DATABASE_APPLICATION_NAME = os.environ.get("DATABASE_APPLICATION_NAME", "mandados_auth")
DATABASE_POOL_MIN_SIZE = int(os.environ.get("DATABASE_POOL_MIN_SIZE", "2"))
DATABASE_POOL_MAX_SIZE = int(os.environ.get("DATABASE_POOL_MAX_SIZE", "10"))
DATABASE_POOL_TIMEOUT = float(os.environ.get("DATABASE_POOL_TIMEOUT", "30"))


class ConfigurationError(RuntimeError):
    """Raised at startup when required settings are missing or invalid."""


@dataclass(frozen=True)
class AuthSettings:
    """Everything the auth core needs, built once and passed explicitly."""

    jwt_secret: str
    jwt_algorithm: str = "HS256"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    max_refresh_tokens: int = 5
    pepper: str = ""
    hash_time_cost: int = 3
    hash_memory_cost: int = 64 * 1024

    def __post_init__(self) -> None:
        if not self.jwt_secret:
            raise ConfigurationError("AUTH_JWT_SECRET is required")
        if self.access_ttl <= timedelta(0) or self.refresh_ttl <= timedelta(0):
            raise ConfigurationError("Token lifetimes must be positive")
        if self.max_refresh_tokens < 1:
            raise ConfigurationError("AUTH_MAX_REFRESH_TOKENS must be at least 1")


def load_auth_settings(environ: Optional[Mapping[str, str]] = None) -> AuthSettings:
    """Build settings from the environment, failing fast on a missing secret."""

    env = os.environ if environ is None else environ
    try:
        return AuthSettings(
            jwt_secret=env.get("AUTH_JWT_SECRET", ""),
            jwt_algorithm=env.get("AUTH_JWT_ALGORITHM", "HS256"),
            access_ttl=timedelta(minutes=int(env.get("AUTH_ACCESS_TTL_MINUTES", "15"))),
            refresh_ttl=timedelta(days=int(env.get("AUTH_REFRESH_TTL_DAYS", "7"))),
            max_refresh_tokens=int(env.get("AUTH_MAX_REFRESH_TOKENS", "5")),
            pepper=env.get("AUTH_PEPPER", ""),
            hash_time_cost=int(env.get("AUTH_HASH_TIME_COST", "3")),
            hash_memory_cost=int(env.get("AUTH_HASH_MEMORY_COST", str(64 * 1024))),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid auth setting: {exc}") from exc
