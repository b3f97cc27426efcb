"""Closed subscription status state machine."""

from __future__ import annotations

from typing import Dict, FrozenSet, Optional, Union

from core.plan_constants import PlanType, SubscriptionStatus
from services.subscription_errors import IllegalTransitionError, MalformedRecordError

ALLOWED_TRANSITIONS: Dict[SubscriptionStatus, FrozenSet[SubscriptionStatus]] = {
    SubscriptionStatus.TRIAL: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIAL_EXPIRED, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.TRIAL_EXPIRED: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}),
    # active -> active is a renewal or plan switch.
    SubscriptionStatus.ACTIVE: frozenset(
        {SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELED}
    ),
    SubscriptionStatus.EXPIRED: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED}),
    SubscriptionStatus.CANCELED: frozenset({SubscriptionStatus.ACTIVE}),
}


def parse_status(value: Union[str, SubscriptionStatus, None]) -> SubscriptionStatus:
    """Coerce a stored status string into the closed enum."""

    if isinstance(value, SubscriptionStatus):
        return value
    normalized = str(value or "").strip().lower()
    try:
        return SubscriptionStatus(normalized)
    except ValueError as exc:
        raise MalformedRecordError(f"Unknown subscription status: {value!r}") from exc


def parse_plan_type(value: Union[str, PlanType, None]) -> Optional[PlanType]:
    if value is None or isinstance(value, PlanType):
        return value
    normalized = str(value).strip().lower()
    if not normalized:
        return None
    try:
        return PlanType(normalized)
    except ValueError as exc:
        raise MalformedRecordError(f"Unknown plan type: {value!r}") from exc


def can_transition(current: SubscriptionStatus, target: SubscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(
    current: SubscriptionStatus,
    target: SubscriptionStatus,
    *,
    user_id: Optional[str] = None,
) -> SubscriptionStatus:
    if not can_transition(current, target):
        raise IllegalTransitionError(current.value, target.value, user_id=user_id)
    return target


__all__ = ["ALLOWED_TRANSITIONS", "can_transition", "ensure_transition", "parse_plan_type", "parse_status"]
