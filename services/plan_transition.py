"""Plan transition writer: payments, trial start, cancellation and lapse sweeps."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple, Union

from core.plan_constants import PLAN_BILLING_PERIODS, TRIAL_PERIOD_DAYS, PlanType, SubscriptionStatus
from services.subscription_errors import (
    MalformedRecordError,
    RecordNotFoundError,
    SubscriptionError,
    TransitionError,
)
from services.subscription_states import ensure_transition, parse_plan_type, parse_status
from services.subscription_store import SubscriptionRecord, SubscriptionStore, get_subscription_store
from services.subscription_time import add_months, coerce_datetime, ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    user_id: str
    plan_type: PlanType
    status: SubscriptionStatus
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    payment_reference: str
    applied: bool


@dataclass(slots=True)
class SweepResult:
    checked: int = 0
    expired: int = 0
    trials_expired: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "expired": self.expired,
            "trialsExpired": self.trials_expired,
            "failed": self.failed,
            "failures": list(self.failures),
        }


def compute_period(plan_type: Union[PlanType, str], now: datetime) -> Tuple[datetime, datetime]:
    """Return ``(start, end)`` of a paid period beginning at ``now``."""

    resolved = parse_plan_type(plan_type)
    if resolved is None:
        raise MalformedRecordError("plan_type is required to compute a billing period.")
    start = ensure_utc(now)
    unit, count = PLAN_BILLING_PERIODS[resolved]
    if unit == "month":
        end = add_months(start, count)
    elif unit == "year":
        end = add_months(start, 12 * count)
    else:
        end = start + timedelta(hours=count)
    return start, end


def _store(store: Optional[SubscriptionStore]) -> SubscriptionStore:
    return store or get_subscription_store()


def _read(store: SubscriptionStore, user_id: str) -> Optional[SubscriptionRecord]:
    try:
        return store.get(user_id)
    except SubscriptionError as exc:
        raise TransitionError("Failed to read subscription before writing.", user_id=user_id) from exc


def _stored_plan(record: SubscriptionRecord) -> Optional[PlanType]:
    try:
        return parse_plan_type(record.plan_type)
    except MalformedRecordError:
        return None


def apply_payment(
    user_id: str,
    plan_type: Union[PlanType, str],
    payment_reference: str,
    *,
    now: Optional[datetime] = None,
    store: Optional[SubscriptionStore] = None,
) -> TransitionResult:
    """Activate ``plan_type`` for ``user_id`` following a confirmed payment.

    A reference that was already applied is reported with ``applied=False``
    and leaves the record untouched.
    """

    if not user_id:
        raise RecordNotFoundError("A user id is required to apply a payment.")
    reference = str(payment_reference or "").strip()
    if not reference:
        raise TransitionError("A payment reference is required.", user_id=user_id)

    resolved_plan = parse_plan_type(plan_type)
    if resolved_plan is None:
        raise MalformedRecordError("plan_type is required to apply a payment.", user_id=user_id)
    instant = ensure_utc(now or utcnow())
    backend = _store(store)
    existing = _read(backend, user_id)

    if existing is not None and existing.last_payment_reference == reference:
        logger.info("Payment %s already applied for user=%s; skipping.", reference, user_id)
        try:
            stored_status = parse_status(existing.status)
        except MalformedRecordError:
            stored_status = SubscriptionStatus.ACTIVE
        return TransitionResult(
            user_id=user_id,
            plan_type=_stored_plan(existing) or resolved_plan,
            status=stored_status,
            current_period_start=coerce_datetime(existing.current_period_start),
            current_period_end=coerce_datetime(existing.current_period_end),
            payment_reference=reference,
            applied=False,
        )

    if existing is not None:
        try:
            ensure_transition(parse_status(existing.status), SubscriptionStatus.ACTIVE, user_id=user_id)
        except MalformedRecordError:
            # The payment already settled, so an unreadable status is overwritten.
            logger.warning(
                "Overwriting malformed status %r for user=%s with a paid period.",
                existing.status,
                user_id,
            )

    start, end = compute_period(resolved_plan, instant)
    applied = backend.apply_period(
        user_id=user_id,
        plan_type=resolved_plan.value,
        status=SubscriptionStatus.ACTIVE.value,
        period_start=start,
        period_end=end,
        payment_reference=reference,
        now=instant,
    )
    if not applied:
        current = _read(backend, user_id)
        start = coerce_datetime(current.current_period_start) if current else start
        end = coerce_datetime(current.current_period_end) if current else end
    else:
        logger.info(
            "Activated %s plan for user=%s until %s (reference=%s).",
            resolved_plan.value,
            user_id,
            end.isoformat(),
            reference,
        )
    return TransitionResult(
        user_id=user_id,
        plan_type=resolved_plan,
        status=SubscriptionStatus.ACTIVE,
        current_period_start=start,
        current_period_end=end,
        payment_reference=reference,
        applied=applied,
    )


def start_trial(
    user_id: str,
    *,
    now: Optional[datetime] = None,
    store: Optional[SubscriptionStore] = None,
) -> Tuple[SubscriptionRecord, bool]:
    """Create the signup trial row; an existing record is returned unchanged."""

    if not user_id:
        raise RecordNotFoundError("A user id is required to start a trial.")
    instant = ensure_utc(now or utcnow())
    record, created = _store(store).create_trial(
        user_id,
        trial_end_date=instant + timedelta(days=TRIAL_PERIOD_DAYS),
        now=instant,
    )
    if created:
        logger.info("Started %d-day trial for user=%s", TRIAL_PERIOD_DAYS, user_id)
    return record, created


def _set_status(
    user_id: str,
    target: SubscriptionStatus,
    *,
    now: Optional[datetime],
    store: Optional[SubscriptionStore],
) -> SubscriptionRecord:
    instant = ensure_utc(now or utcnow())
    backend = _store(store)
    existing = _read(backend, user_id)
    if existing is None:
        raise RecordNotFoundError(user_id=user_id)

    try:
        current = parse_status(existing.status)
    except MalformedRecordError:
        current = None
        logger.warning("Replacing malformed status %r for user=%s with %s.", existing.status, user_id, target.value)
    if current is not None:
        ensure_transition(current, target, user_id=user_id)

    expected = current.value if current is not None else existing.status
    if not backend.update_status(user_id, status=target.value, now=instant, expected_status=expected):
        raise TransitionError("Subscription changed while updating; please retry.", user_id=user_id)
    updated = _read(backend, user_id)
    if updated is None:  # pragma: no cover - rows are never deleted
        raise RecordNotFoundError(user_id=user_id)
    return updated


def cancel_subscription(
    user_id: str,
    *,
    now: Optional[datetime] = None,
    store: Optional[SubscriptionStore] = None,
) -> SubscriptionRecord:
    record = _set_status(user_id, SubscriptionStatus.CANCELED, now=now, store=store)
    logger.info("Canceled subscription for user=%s", user_id)
    return record


def expire_subscription(
    user_id: str,
    *,
    now: Optional[datetime] = None,
    store: Optional[SubscriptionStore] = None,
) -> SubscriptionRecord:
    """Mark a paid subscription expired (provider reported expiry or suspension)."""
    record = _set_status(user_id, SubscriptionStatus.EXPIRED, now=now, store=store)
    logger.info("Expired subscription for user=%s", user_id)
    return record


def expire_lapsed_subscriptions(
    *,
    now: Optional[datetime] = None,
    store: Optional[SubscriptionStore] = None,
) -> SweepResult:
    """Persist expiry for active and trial rows whose period has ended.

    Per-row failures are logged and counted; the sweep continues.
    """

    instant = ensure_utc(now or utcnow())
    backend = _store(store)
    result = SweepResult()
    for record in backend.list_lapsed(instant):
        result.checked += 1
        target = (
            SubscriptionStatus.TRIAL_EXPIRED
            if record.status == SubscriptionStatus.TRIAL.value
            else SubscriptionStatus.EXPIRED
        )
        try:
            changed = backend.update_status(
                record.user_id,
                status=target.value,
                now=instant,
                expected_status=str(record.status),
            )
        except TransitionError:
            logger.error("Failed to expire subscription for user=%s", record.user_id)
            result.failed += 1
            result.failures.append(record.user_id)
            continue
        if not changed:
            continue
        if target is SubscriptionStatus.TRIAL_EXPIRED:
            result.trials_expired += 1
        else:
            result.expired += 1
    logger.info(
        "Lapsed subscription sweep complete: checked=%d expired=%d trials_expired=%d failed=%d",
        result.checked,
        result.expired,
        result.trials_expired,
        result.failed,
    )
    return result


__all__ = [
    "SweepResult",
    "TransitionResult",
    "apply_payment",
    "cancel_subscription",
    "compute_period",
    "expire_lapsed_subscriptions",
    "expire_subscription",
    "start_trial",
]
