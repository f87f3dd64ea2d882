from __future__ import annotations
import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

from barbershop.app.core.constants import (
    SYNC_DEBOUNCE_INSERT_MS,
    SYNC_DEBOUNCE_MUTATION_MS,
)

logger = logging.getLogger(__name__)

# Load environment variables from .env
load_dotenv()

# Runtime settings (env driven, may be overridden in tests via SETTINGS[...] = ...)
SETTINGS: Dict[str, Any] = {
    "database_url": os.getenv(
        "DATABASE_URL",
        "postgresql+asyncpg://barber_user:barber_pass@db:5432/barbershop_db"
    ),
    # Debounce windows for the realtime sync layer (milliseconds)
    "sync_debounce_insert_ms": SYNC_DEBOUNCE_INSERT_MS,
    "sync_debounce_mutation_ms": SYNC_DEBOUNCE_MUTATION_MS,
    # Origins allowed to call the API facade
    "api_allowed_origins": [o.strip() for o in os.getenv("API_ALLOWED_ORIGINS", "").split(",") if o.strip()],
}


def get_setting(key: str, default: Any = None) -> Any:
    """Return a runtime setting by key.

    Args:
        key: Setting key.
        default: Returned when the key is missing.

    Returns:
        The setting value or default.
    """
    value = SETTINGS.get(key, default)
    logger.debug("Setting resolved: key=%s, value=%s", key, value)
    return value


def get_debounce_seconds(event_type: str) -> float:
    """Debounce window in seconds for a change event type.

    Inserts get the longer window; updates, deletes and peer broadcasts the
    shorter one.
    """
    if str(event_type).upper() == "INSERT":
        key, fallback = "sync_debounce_insert_ms", SYNC_DEBOUNCE_INSERT_MS
    else:
        key, fallback = "sync_debounce_mutation_ms", SYNC_DEBOUNCE_MUTATION_MS
    try:
        return max(0, int(SETTINGS.get(key, fallback))) / 1000
    except Exception:
        return fallback / 1000


__all__ = [
    "SETTINGS",
    "get_setting",
    "get_debounce_seconds",
]
