import asyncio
import logging
from typing import Optional

from tortoise import Tortoise

from flowvault.config import settings

_logger = logging.getLogger("db")

MODELS = [
    "flowvault.models.catalog",
]


def _tortoise_url(url: Optional[str] = None) -> str:
    """Normalize the database URL to Tortoise's scheme names."""
    url = (url or settings.DATABASE_URL).strip().strip('"').strip("'")
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgres://", 1)
    return url


def build_tortoise_config(url: Optional[str] = None) -> dict:
    return {
        "connections": {"default": _tortoise_url(url)},
        "apps": {
            "models": {
                "models": MODELS,
                "default_connection": "default",
            }
        },
        "use_tz": True,
        "timezone": "UTC",
    }


TORTOISE_ORM = build_tortoise_config()


async def init_db(url: Optional[str] = None, max_retries: int = 3, delay_seconds: float = 0.5) -> bool:
    """Initialize the catalog database in the current event loop.

    Returns False when the database stays unreachable; the ingestion endpoint
    does not need it, only reconciliation does.
    """
    config = build_tortoise_config(url)
    for attempt in range(1, max_retries + 1):
        try:
            await Tortoise.init(config=config)
            await Tortoise.generate_schemas(safe=True)
            _logger.info("Database initialized successfully")
            return True
        except Exception as exc:
            if attempt == max_retries:
                _logger.warning("Database unavailable after %s attempts. Error: %s", attempt, exc)
                return False
            _logger.info(
                "DB init failed (attempt %s/%s): %s; retrying in %.1fs",
                attempt,
                max_retries,
                exc,
                delay_seconds,
            )
            await asyncio.sleep(delay_seconds)
    return False


async def close_db() -> None:
    """Close database connections in the current event loop."""
    await Tortoise.close_connections()
