"""Process-wide logging setup for the billing API."""

from __future__ import annotations

import logging
import os
from typing import Dict, Optional

try:  # pragma: no cover - optional dependency
    from google.cloud import logging as gcp_logging
except ImportError:  # pragma: no cover - GCP logging optional
    gcp_logging = None

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_state: Dict[str, bool] = {"configured": False, "cloud": False}


def resolve_log_level(default: int = logging.INFO) -> int:
    """``LOG_LEVEL`` as a numeric level; unknown names fall back to ``default``."""
    name = (os.getenv("LOG_LEVEL") or "").strip().upper()
    if not name:
        return default
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else default


def _cloud_logging_requested() -> bool:
    return (os.getenv("ENABLE_GOOGLE_CLOUD_LOGGING") or "").strip().lower() in {"1", "true", "yes", "on"}


def _attach_cloud_handler(level: int) -> None:
    if _state["cloud"] or gcp_logging is None or not _cloud_logging_requested():
        return
    try:
        gcp_logging.Client().setup_logging(log_level=level)
    except Exception as exc:  # pragma: no cover - credentials depend on the runtime
        logging.getLogger(__name__).warning("Google Cloud Logging unavailable, using stderr only: %s", exc)
        return
    _state["cloud"] = True


def setup_logging(level: int = logging.INFO, *, fmt: Optional[str] = None) -> None:
    """Configure the root logger once; later calls only retry the cloud handler."""
    level = resolve_log_level(level)
    if not _state["configured"]:
        logging.basicConfig(level=level, format=fmt or LOG_FORMAT)
        _state["configured"] = True
    _attach_cloud_handler(level)


def get_logger(name: str) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)


__all__ = ["LOG_FORMAT", "get_logger", "resolve_log_level", "setup_logging"]
