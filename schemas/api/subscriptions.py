"""Subscription status API schemas."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from services.trial_lifecycle import DerivedState
from services.subscription_store import SubscriptionRecord
from services.subscription_time import coerce_datetime

DerivedStatusLiteral = Literal[
    "not_authenticated",
    "no_subscription",
    "unknown",
    "trial",
    "trial_expired",
    "active",
    "expired",
    "canceled",
]
PlanTypeLiteral = Literal["monthly", "yearly", "test"]


class TimeLeftSchema(BaseModel):
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0


class SubscriptionStatusResponse(BaseModel):
    status: DerivedStatusLiteral = Field(..., description="Derived lifecycle status at request time.")
    planType: Optional[PlanTypeLiteral] = Field(default=None, description="Paid plan type, if any.")
    daysRemaining: int = Field(default=0, ge=0, description="Whole days left, rounded up.")
    isTrialExpired: bool = False
    isSubscriptionExpired: bool = False
    accessGranted: bool = Field(default=False, description="Whether gated features are available.")
    requiresUpgrade: bool = Field(default=False, description="UI should force the plan selection modal.")
    canStartTrial: bool = Field(default=False, description="Caller has no record and may start a trial.")
    expiresAt: Optional[str] = Field(default=None, description="ISO timestamp of the trial or period end.")
    timeLeft: TimeLeftSchema = Field(default_factory=TimeLeftSchema)
    label: str = Field(default="", description="Human readable status label.")
    countdown: Optional[str] = Field(default=None, description="Compact countdown such as '3 days left'.")
    expiringSoon: bool = False
    malformed: bool = Field(default=False, description="Stored record failed validation and access was denied.")

    @classmethod
    def from_state(cls, state: DerivedState) -> "SubscriptionStatusResponse":
        return cls(
            status=state.status.value,
            planType=state.plan_type.value if state.plan_type else None,
            daysRemaining=state.days_remaining,
            isTrialExpired=state.is_trial_expired,
            isSubscriptionExpired=state.is_subscription_expired,
            accessGranted=state.access_granted,
            requiresUpgrade=state.requires_upgrade,
            canStartTrial=state.can_start_trial,
            expiresAt=state.expires_at.isoformat() if state.expires_at else None,
            timeLeft=TimeLeftSchema(
                days=state.time_left.days,
                hours=state.time_left.hours,
                minutes=state.time_left.minutes,
                seconds=state.time_left.seconds,
            ),
            label=state.label,
            countdown=state.countdown,
            expiringSoon=state.expiring_soon,
            malformed=state.malformed,
        )


def _iso(value: object) -> Optional[str]:
    try:
        parsed = coerce_datetime(value)
    except ValueError:
        return str(value)
    return parsed.isoformat() if parsed else None


class SubscriptionRecordSchema(BaseModel):
    userId: str
    status: str
    planType: Optional[str] = None
    trialEndDate: Optional[str] = None
    currentPeriodStart: Optional[str] = None
    currentPeriodEnd: Optional[str] = None
    lastPaymentReference: Optional[str] = None

    @classmethod
    def from_record(cls, record: SubscriptionRecord) -> "SubscriptionRecordSchema":
        return cls(
            userId=record.user_id,
            status=str(record.status),
            planType=record.plan_type,
            trialEndDate=_iso(record.trial_end_date),
            currentPeriodStart=_iso(record.current_period_start),
            currentPeriodEnd=_iso(record.current_period_end),
            lastPaymentReference=record.last_payment_reference,
        )


class SubscriptionMutationResponse(BaseModel):
    created: bool = Field(default=False, description="True when a new record was inserted.")
    subscription: SubscriptionRecordSchema
    state: SubscriptionStatusResponse


class LapsedSweepResponse(BaseModel):
    checked: int
    expired: int
    trialsExpired: int
    failed: int
    failures: list[str] = Field(default_factory=list)


class SimulatePaymentRequest(BaseModel):
    planType: PlanTypeLiteral = Field(default="test", description="Plan to activate for the user.")
    paymentReference: Optional[str] = Field(
        default=None,
        description="Reference to apply; a unique simulation id is generated when omitted.",
    )


class SimulatePaymentResponse(BaseModel):
    applied: bool
    paymentReference: str
    subscription: SubscriptionRecordSchema


class RepairResponse(BaseModel):
    userId: str
    result: dict = Field(default_factory=dict, description="Raw response from the repair function.")
