"""Liveness and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from database import SessionLocal

router = APIRouter(prefix="/health", tags=["Health"])

logger = logging.getLogger(__name__)


def ping_database() -> Tuple[bool, Optional[str]]:
    """Run ``SELECT 1``; returns ``(ok, error)``."""
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Database ping failed: %s", exc)
        return False, str(exc)
    return True, None


def database_report() -> Dict[str, Any]:
    ok, error = ping_database()
    report: Dict[str, Any] = {"ok": ok}
    if error:
        report["error"] = error
    return report


@router.get("/status", summary="Database connectivity used by readiness probes.")
def read_service_status() -> Dict[str, Any]:
    database = database_report()
    return {"status": "ok" if database["ok"] else "degraded", "database": database}


__all__ = ["database_report", "ping_database", "router"]
