"""Per-user subscription record persistence (one row per user)."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from core.plan_constants import SubscriptionStatus
from models.subscription import Subscription
from services.subscription_errors import SubscriptionReadError, TransitionError
from services.subscription_time import ensure_utc

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SubscriptionRecord:
    """Raw stored subscription values.

    Status and timestamps are kept as read so the evaluator can detect
    malformed rows instead of the store rejecting them.
    """

    user_id: str
    status: Any
    plan_type: Optional[str] = None
    trial_end_date: Any = None
    current_period_start: Any = None
    current_period_end: Any = None
    last_payment_reference: Optional[str] = None
    created_at: Any = None
    updated_at: Any = None

    @classmethod
    def from_model(cls, row: Subscription) -> "SubscriptionRecord":
        return cls(
            user_id=row.user_id,
            status=row.status,
            plan_type=row.plan_type,
            trial_end_date=row.trial_end_date,
            current_period_start=row.current_period_start,
            current_period_end=row.current_period_end,
            last_payment_reference=row.last_payment_reference,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _default_session_factory() -> Callable[[], Session]:
    from database import SessionLocal

    return SessionLocal


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


class SubscriptionStore:
    """SQLAlchemy-backed subscription store.

    Writes that carry a payment reference go through a conditional upsert:
    the row is only updated when its ``last_payment_reference`` differs from
    the incoming one, so a replayed reference never extends a period twice.
    """

    def __init__(self, *, session_factory: Optional[Callable[[], Session]] = None) -> None:
        self._session_factory = session_factory

    def _session(self) -> Session:
        if self._session_factory is None:
            self._session_factory = _default_session_factory()
        return self._session_factory()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, user_id: str) -> Optional[SubscriptionRecord]:
        session = self._session()
        try:
            row = session.execute(select(Subscription).where(Subscription.user_id == user_id)).scalar_one_or_none()
            return SubscriptionRecord.from_model(row) if row is not None else None
        except SQLAlchemyError as exc:
            logger.exception("Failed to read subscription for user=%s", user_id)
            raise SubscriptionReadError(user_id=user_id) from exc
        finally:
            session.close()

    def list_lapsed(self, now: datetime) -> List[SubscriptionRecord]:
        """Return active rows past their period end and trial rows past their trial end."""
        cutoff = ensure_utc(now)
        session = self._session()
        try:
            rows = (
                session.execute(
                    select(Subscription).where(
                        or_(
                            and_(
                                Subscription.status == SubscriptionStatus.ACTIVE.value,
                                Subscription.current_period_end.is_not(None),
                                Subscription.current_period_end <= cutoff,
                            ),
                            and_(
                                Subscription.status == SubscriptionStatus.TRIAL.value,
                                Subscription.trial_end_date.is_not(None),
                                Subscription.trial_end_date <= cutoff,
                            ),
                        )
                    )
                )
                .scalars()
                .all()
            )
            return [SubscriptionRecord.from_model(row) for row in rows]
        except SQLAlchemyError as exc:
            logger.exception("Failed to list lapsed subscriptions.")
            raise SubscriptionReadError() from exc
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_trial(self, user_id: str, *, trial_end_date: datetime, now: datetime) -> tuple[SubscriptionRecord, bool]:
        """Insert a trial row unless one already exists. Returns ``(record, created)``."""
        session = self._session()
        try:
            existing = session.execute(select(Subscription).where(Subscription.user_id == user_id)).scalar_one_or_none()
            if existing is not None:
                return SubscriptionRecord.from_model(existing), False
            row = Subscription(
                user_id=user_id,
                status=SubscriptionStatus.TRIAL.value,
                trial_end_date=ensure_utc(trial_end_date),
                created_at=ensure_utc(now),
                updated_at=ensure_utc(now),
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                existing = session.execute(
                    select(Subscription).where(Subscription.user_id == user_id)
                ).scalar_one()
                return SubscriptionRecord.from_model(existing), False
            session.refresh(row)
            return SubscriptionRecord.from_model(row), True
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Failed to create trial subscription for user=%s", user_id)
            raise TransitionError("Failed to start trial.", user_id=user_id) from exc
        finally:
            session.close()

    def apply_period(
        self,
        *,
        user_id: str,
        plan_type: str,
        status: str,
        period_start: datetime,
        period_end: datetime,
        payment_reference: str,
        now: datetime,
    ) -> bool:
        """Conditionally upsert a paid period keyed by ``(user_id, payment_reference)``.

        Returns ``False`` when the row already carries ``payment_reference``.
        """
        values = {
            "plan_type": plan_type,
            "status": status,
            "current_period_start": ensure_utc(period_start),
            "current_period_end": ensure_utc(period_end),
            "last_payment_reference": payment_reference,
            "updated_at": ensure_utc(now),
        }
        statement = (
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .where(
                or_(
                    Subscription.last_payment_reference.is_(None),
                    Subscription.last_payment_reference != payment_reference,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        session = self._session()
        try:
            result = session.execute(statement)
            if result.rowcount:
                session.commit()
                return True

            exists = session.execute(select(Subscription.id).where(Subscription.user_id == user_id)).first()
            if exists is not None:
                session.rollback()
                logger.info("Payment reference %s already applied for user=%s", payment_reference, user_id)
                return False

            session.add(Subscription(user_id=user_id, created_at=ensure_utc(now), **values))
            try:
                session.commit()
                return True
            except IntegrityError:
                # A concurrent writer inserted the row first.
                session.rollback()
                result = session.execute(statement)
                session.commit()
                return bool(result.rowcount)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Failed to apply payment %s for user=%s", payment_reference, user_id)
            raise TransitionError(user_id=user_id) from exc
        finally:
            session.close()

    def update_status(
        self,
        user_id: str,
        *,
        status: str,
        now: datetime,
        expected_status: Optional[str] = None,
        period_end: Optional[datetime] = None,
    ) -> bool:
        """Compare-and-set the status column. Returns ``False`` when no row matched."""
        values: Dict[str, Any] = {"status": status, "updated_at": ensure_utc(now)}
        if period_end is not None:
            values["current_period_end"] = _utc(period_end)
        statement = update(Subscription).where(Subscription.user_id == user_id)
        if expected_status is not None:
            statement = statement.where(Subscription.status == expected_status)
        statement = statement.values(**values).execution_options(synchronize_session=False)

        session = self._session()
        try:
            result = session.execute(statement)
            session.commit()
            return bool(result.rowcount)
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Failed to update subscription status for user=%s", user_id)
            raise TransitionError("Failed to update subscription status.", user_id=user_id) from exc
        finally:
            session.close()


subscription_store = SubscriptionStore()


def get_subscription_store() -> SubscriptionStore:
    return subscription_store


__all__ = ["SubscriptionRecord", "SubscriptionStore", "get_subscription_store", "subscription_store"]
