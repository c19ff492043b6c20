import asyncio
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from app.config import ConfigurationError, load_auth_settings, logger
from backend.auth import AuthRepository
from backend.auth.errors import StoreUnavailable
from backend.db import close_async_pool


async def bootstrap() -> None:
    """Validate settings and make sure the credential store schema exists."""
    settings = load_auth_settings()
    logger.info(
        "Auth configured: access tokens %s, refresh tokens %s, %s sessions per user",
        settings.access_ttl,
        settings.refresh_ttl,
        settings.max_refresh_tokens,
    )
    try:
        await AuthRepository().ensure_schema()
    finally:
        await close_async_pool()


if __name__ == "__main__":
    try:
        asyncio.run(bootstrap())
    except (ConfigurationError, StoreUnavailable) as exc:
        logger.error("Startup aborted: %s", exc)
        sys.exit(1)
