from __future__ import annotations

import os
from typing import Optional

PRIMARY_PREFIX = "PHASE_TRACKER_"
LEGACY_PREFIX = "MOVEMENT_TRACKER_"

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Resolve configuration environment variables.

    The Phase Tracker prefix wins; the older Movement Tracker names are still
    read so existing shell profiles keep working.
    """
    for prefix in (PRIMARY_PREFIX, LEGACY_PREFIX):
        value = os.getenv(f"{prefix}{name}")
        if value is not None:
            return value
    return default


def get_env_float(name: str, default: float) -> float:
    raw = get_env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def get_env_int(name: str, default: int) -> int:
    raw = get_env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def parse_bool(raw: str) -> Optional[bool]:
    """Map a yes/no style string to a bool, or None when it is neither."""
    lowered = raw.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    return None


def get_env_bool(name: str, default: bool) -> bool:
    raw: Optional[str] = get_env(name)
    if raw is None:
        return default
    parsed = parse_bool(raw)
    return default if parsed is None else parsed
