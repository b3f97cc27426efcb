"""Pure evaluator that derives trial/subscription state from a stored record.

``evaluate`` performs no I/O and never reads the wall clock: callers pass
``now`` explicitly. Records with an unknown status or unparseable dates fail
closed (access denied) and are flagged ``malformed``.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from core.plan_constants import PlanType, SubscriptionStatus
from services.subscription_errors import MalformedRecordError
from services.subscription_states import parse_plan_type, parse_status
from services.subscription_store import SubscriptionRecord
from services.subscription_time import coerce_datetime, ensure_utc

logger = logging.getLogger(__name__)

_DAY = timedelta(days=1)
TRIAL_WARNING_DAYS = 3
PAID_WARNING_DAYS = 7


class DerivedStatus(str, Enum):
    NOT_AUTHENTICATED = "not_authenticated"
    NO_SUBSCRIPTION = "no_subscription"
    UNKNOWN = "unknown"
    TRIAL = "trial"
    TRIAL_EXPIRED = "trial_expired"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELED = "canceled"


_STATUS_LABELS: Dict[DerivedStatus, str] = {
    DerivedStatus.NOT_AUTHENTICATED: "Not Signed In",
    DerivedStatus.NO_SUBSCRIPTION: "No Subscription",
    DerivedStatus.UNKNOWN: "Status Unavailable",
    DerivedStatus.TRIAL: "Trial Period",
    DerivedStatus.TRIAL_EXPIRED: "Trial Expired",
    DerivedStatus.EXPIRED: "Subscription Expired",
    DerivedStatus.CANCELED: "Subscription Canceled",
}

_PLAN_LABELS: Dict[PlanType, str] = {
    PlanType.MONTHLY: "Monthly Subscription",
    PlanType.YEARLY: "Yearly Subscription",
}


@dataclass(frozen=True)
class TimeLeft:
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    @classmethod
    def between(cls, now: datetime, expires_at: Optional[datetime]) -> "TimeLeft":
        if expires_at is None:
            return cls()
        total = max(0, int((expires_at - now).total_seconds()))
        days, remainder = divmod(total, 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes, seconds = divmod(remainder, 60)
        return cls(days=days, hours=hours, minutes=minutes, seconds=seconds)

    @property
    def is_zero(self) -> bool:
        return not (self.days or self.hours or self.minutes or self.seconds)


@dataclass(frozen=True)
class DerivedState:
    status: DerivedStatus
    plan_type: Optional[PlanType] = None
    days_remaining: int = 0
    is_trial_expired: bool = False
    is_subscription_expired: bool = False
    access_granted: bool = False
    requires_upgrade: bool = False
    can_start_trial: bool = False
    expires_at: Optional[datetime] = None
    time_left: TimeLeft = TimeLeft()
    label: str = ""
    countdown: Optional[str] = None
    expiring_soon: bool = False
    malformed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        payload["plan_type"] = self.plan_type.value if self.plan_type else None
        payload["expires_at"] = self.expires_at.isoformat() if self.expires_at else None
        return payload


def days_remaining(now: datetime, end: Optional[datetime]) -> int:
    """Whole days left until ``end`` rounded up, never negative."""
    if end is None:
        return 0
    delta = end - now
    if delta <= timedelta(0):
        return 0
    return math.ceil(delta / _DAY)


def format_countdown(time_left: TimeLeft) -> str:
    if time_left.is_zero:
        return "Expired"
    if time_left.days > 0:
        unit = "day" if time_left.days == 1 else "days"
        return f"{time_left.days} {unit} left"
    return f"{time_left.hours}h {time_left.minutes}m left"


def status_label(status: DerivedStatus, plan_type: Optional[PlanType]) -> str:
    if status is DerivedStatus.ACTIVE:
        return _PLAN_LABELS.get(plan_type, "Active Subscription") if plan_type else "Active Subscription"
    return _STATUS_LABELS[status]


def not_authenticated_state() -> DerivedState:
    status = DerivedStatus.NOT_AUTHENTICATED
    return DerivedState(status=status, label=status_label(status, None))


def unknown_state() -> DerivedState:
    """State reported when the subscription store could not be read."""
    status = DerivedStatus.UNKNOWN
    return DerivedState(status=status, label=status_label(status, None))


def _blocked(
    status: DerivedStatus,
    *,
    plan_type: Optional[PlanType] = None,
    expires_at: Optional[datetime] = None,
    malformed: bool = False,
) -> DerivedState:
    return DerivedState(
        status=status,
        plan_type=plan_type,
        days_remaining=0,
        is_trial_expired=status is DerivedStatus.TRIAL_EXPIRED,
        is_subscription_expired=status in (DerivedStatus.EXPIRED, DerivedStatus.CANCELED),
        access_granted=False,
        requires_upgrade=True,
        expires_at=expires_at,
        label=status_label(status, plan_type),
        countdown="Expired" if expires_at is not None else None,
        malformed=malformed,
    )


def _running(
    status: DerivedStatus,
    now: datetime,
    end: datetime,
    *,
    plan_type: Optional[PlanType],
    warning_days: int,
) -> DerivedState:
    remaining = days_remaining(now, end)
    time_left = TimeLeft.between(now, end)
    return DerivedState(
        status=status,
        plan_type=plan_type,
        days_remaining=remaining,
        access_granted=True,
        expires_at=end,
        time_left=time_left,
        label=status_label(status, plan_type),
        countdown=format_countdown(time_left),
        expiring_soon=remaining <= warning_days,
    )


def _malformed(record: SubscriptionRecord, reason: str, fallback: DerivedStatus) -> DerivedState:
    logger.warning(
        "Subscription record for user=%s is malformed (%s); denying access.",
        record.user_id,
        reason,
        extra={"user_id": record.user_id, "stored_status": record.status},
    )
    return _blocked(fallback, malformed=True)


def evaluate(
    record: Optional[SubscriptionRecord],
    now: datetime,
    *,
    authenticated: bool = True,
) -> DerivedState:
    """Derive the subscription state of ``record`` at instant ``now``."""

    if not authenticated:
        return not_authenticated_state()
    if record is None:
        status = DerivedStatus.NO_SUBSCRIPTION
        return DerivedState(status=status, can_start_trial=True, label=status_label(status, None))

    now = ensure_utc(now)
    try:
        stored = parse_status(record.status)
    except MalformedRecordError:
        return _malformed(record, f"unknown status {record.status!r}", DerivedStatus.EXPIRED)

    try:
        plan_type = parse_plan_type(record.plan_type)
    except MalformedRecordError:
        logger.warning("Ignoring unknown plan_type=%r for user=%s", record.plan_type, record.user_id)
        plan_type = None

    if stored is SubscriptionStatus.TRIAL:
        try:
            trial_end = coerce_datetime(record.trial_end_date)
        except ValueError:
            trial_end = None
        if trial_end is None:
            return _malformed(record, "trial without a valid trial_end_date", DerivedStatus.TRIAL_EXPIRED)
        if now >= trial_end:
            return _blocked(DerivedStatus.TRIAL_EXPIRED, expires_at=trial_end)
        return _running(DerivedStatus.TRIAL, now, trial_end, plan_type=None, warning_days=TRIAL_WARNING_DAYS)

    if stored is SubscriptionStatus.ACTIVE:
        try:
            period_end = coerce_datetime(record.current_period_end)
        except ValueError:
            period_end = None
        if period_end is None:
            return _malformed(record, "active without a valid current_period_end", DerivedStatus.EXPIRED)
        if now >= period_end:
            return _blocked(DerivedStatus.EXPIRED, plan_type=plan_type, expires_at=period_end)
        return _running(DerivedStatus.ACTIVE, now, period_end, plan_type=plan_type, warning_days=PAID_WARNING_DAYS)

    if stored is SubscriptionStatus.TRIAL_EXPIRED:
        return _blocked(DerivedStatus.TRIAL_EXPIRED)
    if stored is SubscriptionStatus.EXPIRED:
        return _blocked(DerivedStatus.EXPIRED, plan_type=plan_type)
    return _blocked(DerivedStatus.CANCELED, plan_type=plan_type)


__all__ = [
    "DerivedState",
    "DerivedStatus",
    "PAID_WARNING_DAYS",
    "TRIAL_WARNING_DAYS",
    "TimeLeft",
    "days_remaining",
    "evaluate",
    "format_countdown",
    "not_authenticated_state",
    "status_label",
    "unknown_state",
]
