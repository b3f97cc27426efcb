"""Error taxonomy shared by the subscription store, writer and payment adapter."""

from __future__ import annotations

from typing import Dict, Optional

ACTIVATION_FAILED_MESSAGE = "Payment recorded but activation failed, please contact support."


class SubscriptionError(RuntimeError):
    """Base error for subscription lifecycle failures."""

    default_code = "subscription.error"
    default_message = "Subscription request failed."

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None, user_id: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.code = code or self.default_code
        self.message = message or self.default_message
        self.user_id = user_id

    def to_detail(self) -> Dict[str, str]:
        return {"code": self.code, "message": self.message}


class NotAuthenticatedError(SubscriptionError):
    """No authenticated session is available."""

    default_code = "auth.required"
    default_message = "Sign in to manage your subscription."


class RecordNotFoundError(SubscriptionError):
    """The user never entered a trial."""

    default_code = "subscription.not_found"
    default_message = "No subscription exists for this account."


class SubscriptionReadError(SubscriptionError):
    """The subscription store could not be read."""

    default_code = "subscription.read_failed"
    default_message = "Subscription status is temporarily unavailable."


class TransitionError(SubscriptionError):
    """A subscription write failed at the backing store."""

    default_code = "subscription.activation_failed"
    default_message = ACTIVATION_FAILED_MESSAGE


class MalformedRecordError(SubscriptionError):
    """A stored record carries an unknown status or unparseable dates."""

    default_code = "subscription.malformed"
    default_message = "Subscription record is malformed."


class IllegalTransitionError(SubscriptionError):
    """The requested status change is not allowed from the current status."""

    default_code = "subscription.illegal_transition"
    default_message = "Subscription cannot move to the requested status."

    def __init__(self, current: str, target: str, *, user_id: Optional[str] = None) -> None:
        super().__init__(f"Cannot transition subscription from '{current}' to '{target}'.", user_id=user_id)
        self.current = current
        self.target = target


class PlanCatalogError(SubscriptionError):
    """The plan catalog is missing entries the checkout flow depends on."""

    default_code = "plan.catalog_invalid"
    default_message = "Plan catalog is misconfigured."


class PaymentMismatchError(SubscriptionError):
    """The captured payment does not match the price of the requested plan."""

    default_code = "payments.amount_mismatch"
    default_message = "The paid amount does not match the selected plan."


__all__ = [
    "ACTIVATION_FAILED_MESSAGE",
    "IllegalTransitionError",
    "MalformedRecordError",
    "NotAuthenticatedError",
    "PaymentMismatchError",
    "PlanCatalogError",
    "RecordNotFoundError",
    "SubscriptionError",
    "SubscriptionReadError",
    "TransitionError",
]
