from __future__ import annotations

import os


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


# Recurrence safety bound (hard ceiling, never configurable above 52)
MAX_RECURRENCE_OCCURRENCES: int = max(1, min(52, _env_int("MAX_RECURRENCE_OCCURRENCES", 52)))

# Service duration fallback (minutes) when neither special nor normal duration is set
DEFAULT_SERVICE_FALLBACK_DURATION: int = _env_int("SERVICE_FALLBACK_DURATION_MIN", 30)

# Manual duration override bounds (minutes)
MIN_DURATION_OVERRIDE: int = 5
MAX_DURATION_OVERRIDE: int = 480

# Sync debounce (milliseconds); inserts use the longer window
SYNC_DEBOUNCE_INSERT_MS: int = _env_int("SYNC_DEBOUNCE_INSERT_MS", 500)
SYNC_DEBOUNCE_MUTATION_MS: int = _env_int("SYNC_DEBOUNCE_MUTATION_MS", 300)
SYNC_RECONNECT_SECONDS: int = _env_int("SYNC_RECONNECT_SECONDS", 3)

# LISTEN/NOTIFY channel names (must match the trigger migration)
APPOINTMENTS_CHANNEL: str = _env_str("SYNC_APPOINTMENTS_CHANNEL", "appointments_changes")
SCHEDULE_BLOCKS_CHANNEL: str = _env_str("SYNC_SCHEDULE_BLOCKS_CHANNEL", "schedule_blocks_changes")
BROADCAST_CHANNEL: str = _env_str("SYNC_BROADCAST_CHANNEL", "appointments_sync")
BROADCAST_EVENT: str = "appointments_change"
# API process publishes peer broadcasts after successful mutations
SYNC_BROADCAST_ENABLED: bool = _env_bool("SYNC_BROADCAST_ENABLED", False)

# Feature flags / logging
LOG_LEVEL_NAME: str = os.getenv("LOG_LEVEL", "INFO").strip().upper()
RUN_BOOTSTRAP_ENABLED: bool = _env_bool("RUN_BOOTSTRAP", False)

__all__ = [
    "MAX_RECURRENCE_OCCURRENCES",
    "DEFAULT_SERVICE_FALLBACK_DURATION",
    "MIN_DURATION_OVERRIDE",
    "MAX_DURATION_OVERRIDE",
    "SYNC_DEBOUNCE_INSERT_MS",
    "SYNC_DEBOUNCE_MUTATION_MS",
    "SYNC_RECONNECT_SECONDS",
    "APPOINTMENTS_CHANNEL",
    "SCHEDULE_BLOCKS_CHANNEL",
    "BROADCAST_CHANNEL",
    "BROADCAST_EVENT",
    "SYNC_BROADCAST_ENABLED",
    "LOG_LEVEL_NAME",
    "RUN_BOOTSTRAP_ENABLED",
]
