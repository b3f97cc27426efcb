"""Helpers for loading optional .env files and validating required variables."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from core.logging import get_logger

logger = get_logger(__name__)

PAYPAL_REQUIRED_ENV = ("PAYPAL_CLIENT_ID", "PAYPAL_SECRET_KEY")
SUPABASE_REQUIRED_ENV = ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY")


def load_dotenv_if_available(path: Path | None = None) -> bool:
    """Load environment variables from a .env file when the file exists."""

    env_path = path or Path(".env")
    if not env_path.exists():
        return False
    loaded = load_dotenv(dotenv_path=env_path, override=False)
    logger.debug("Loaded environment variables from %s", env_path)
    return bool(loaded)


def missing_env_vars(required: Sequence[str]) -> list[str]:
    return sorted(name for name in required if not (os.getenv(name) or "").strip())


def require_env_vars(required: Sequence[str], *, context: str | None = None) -> None:
    """Raise an error when one or more required environment variables are missing."""

    missing = missing_env_vars(required)
    if not missing:
        return

    prefix = f"[{context}] " if context else ""
    message = (
        f"{prefix}Missing required environment variables: {', '.join(missing)}. "
        "Populate your .env or configure runtime secrets."
    )
    raise RuntimeError(message)


__all__ = [
    "PAYPAL_REQUIRED_ENV",
    "SUPABASE_REQUIRED_ENV",
    "load_dotenv_if_available",
    "missing_env_vars",
    "require_env_vars",
]
