"""Typed accessors for environment configuration."""

from __future__ import annotations

import os
from typing import List, Optional

from core.logging import get_logger

logger = get_logger(__name__)

_BOOLEAN_WORDS = {
    "1": True,
    "true": True,
    "yes": True,
    "y": True,
    "on": True,
    "0": False,
    "false": False,
    "no": False,
    "n": False,
    "off": False,
}


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    """Stripped value of ``key``; unset or blank values yield ``default``."""
    value = (os.getenv(key) or "").strip()
    return value or default


def env_int(key: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(key)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%d is below the minimum %d; using %d.", key, value, minimum, default)
        return default
    return value


def env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    parsed = _BOOLEAN_WORDS.get(raw.strip().lower())
    if parsed is None:
        logger.warning("%s=%r is not a boolean; using %s.", key, raw, default)
        return default
    return parsed


def env_csv(key: str) -> List[str]:
    """Comma separated ``key`` as trimmed, non-empty entries."""
    return [part.strip() for part in (os.getenv(key) or "").split(",") if part.strip()]


__all__ = ["env_bool", "env_csv", "env_int", "env_str"]
