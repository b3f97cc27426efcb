"""Database-backed idempotency tracker for PayPal webhook events."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.payments import PayPalWebhookEvent
from services.subscription_time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

_MAX_ERROR_LENGTH = 2000


def _default_session_factory() -> Callable[[], Session]:
    from database import SessionLocal

    return SessionLocal


class PayPalWebhookStore:
    """Rows keyed by PayPal event id; ``processed`` flips only after a successful apply."""

    def __init__(self, *, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        if self._session_factory is None:
            self._session_factory = _default_session_factory()
        return self._session_factory()

    def has_processed(self, event_id: Optional[str]) -> bool:
        """Return True if the event was already applied successfully."""
        if not event_id:
            return False
        session = self._session()
        try:
            row = session.get(PayPalWebhookEvent, event_id)
            return bool(row is not None and row.processed)
        except SQLAlchemyError:
            logger.exception("Failed to read webhook event %s", event_id)
            raise
        finally:
            session.close()

    def _upsert(
        self,
        event_id: str,
        *,
        event_type: Optional[str],
        resource_id: Optional[str],
        payload: Optional[Mapping[str, Any]],
        processed: bool,
        error: Optional[str],
        now: Optional[datetime],
    ) -> None:
        session = self._session()
        try:
            row = session.get(PayPalWebhookEvent, event_id)
            if row is None:
                row = PayPalWebhookEvent(id=event_id)
                session.add(row)
            row.event_type = event_type
            row.resource_id = resource_id
            row.payload = dict(payload) if payload is not None else None
            row.processed = processed
            row.processing_error = error[:_MAX_ERROR_LENGTH] if error else None
            row.processed_at = ensure_utc(now or utcnow()) if processed else None
            session.commit()
        except SQLAlchemyError:
            session.rollback()
            logger.exception("Failed to record webhook event %s", event_id)
            raise
        finally:
            session.close()

    def record_processed(
        self,
        event_id: str,
        *,
        event_type: Optional[str],
        resource_id: Optional[str],
        payload: Optional[Mapping[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self._upsert(
            event_id,
            event_type=event_type,
            resource_id=resource_id,
            payload=payload,
            processed=True,
            error=None,
            now=now,
        )

    def record_failure(
        self,
        event_id: str,
        *,
        event_type: Optional[str],
        resource_id: Optional[str],
        error: str,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self._upsert(
            event_id,
            event_type=event_type,
            resource_id=resource_id,
            payload=payload,
            processed=False,
            error=error,
            now=None,
        )


webhook_store = PayPalWebhookStore()


__all__ = ["PayPalWebhookStore", "webhook_store"]
