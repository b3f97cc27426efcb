"""Shared plan and subscription status constants used across services and routers."""

from __future__ import annotations

from enum import Enum
from typing import Dict, Sequence, Tuple

from core.env import env_int


class PlanType(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    TEST = "test"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    TRIAL_EXPIRED = "trial_expired"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELED = "canceled"

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.value


SUPPORTED_PLAN_TYPES: Sequence[PlanType] = tuple(PlanType)

TRIAL_PERIOD_DAYS = env_int("TRIAL_PERIOD_DAYS", 14, minimum=1)

# (unit, count) added to the payment instant to obtain the period end.
PLAN_BILLING_PERIODS: Dict[PlanType, Tuple[str, int]] = {
    PlanType.MONTHLY: ("month", 1),
    PlanType.YEARLY: ("year", 1),
    PlanType.TEST: ("hour", 1),
}

__all__ = [
    "PLAN_BILLING_PERIODS",
    "PlanType",
    "SubscriptionStatus",
    "SUPPORTED_PLAN_TYPES",
    "TRIAL_PERIOD_DAYS",
]
