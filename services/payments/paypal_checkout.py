"""PayPal hosted-button checkout callbacks mapped onto plan transitions."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Optional, Tuple, Union

from core.plan_constants import PlanType
from services.plan_catalog_service import get_plan, plan_for_button_id
from services.plan_transition import TransitionResult, apply_payment
from services.subscription_errors import (
    ACTIVATION_FAILED_MESSAGE,
    IllegalTransitionError,
    NotAuthenticatedError,
    PaymentMismatchError,
    PlanCatalogError,
    TransitionError,
)
from services.subscription_store import SubscriptionStore
from services.subscription_time import utcnow

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


class CheckoutResult(str, Enum):
    ACTIVATED = "activated"
    ALREADY_APPLIED = "already_applied"
    CANCELED = "canceled"
    FAILED = "failed"
    ACTIVATION_FAILED = "activation_failed"


_MESSAGES: Dict[CheckoutResult, str] = {
    CheckoutResult.ACTIVATED: "Payment successful! Your subscription is now active.",
    CheckoutResult.ALREADY_APPLIED: "This payment was already applied to your subscription.",
    CheckoutResult.CANCELED: "Payment was canceled. You can choose a plan at any time.",
    CheckoutResult.FAILED: "Payment failed. Please try again or use another payment method.",
    CheckoutResult.ACTIVATION_FAILED: ACTIVATION_FAILED_MESSAGE,
}


@dataclass(frozen=True)
class CheckoutOutcome:
    result: CheckoutResult
    message: str
    plan_type: Optional[PlanType] = None
    order_id: Optional[str] = None
    current_period_end: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.result in (CheckoutResult.ACTIVATED, CheckoutResult.ALREADY_APPLIED)


@dataclass
class _UserLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class PayPalCheckoutAdapter:
    """Translate PayPal button callbacks into subscription writes.

    Approvals for the same user are serialized in-process; duplicate order ids
    resolve through the writer's idempotency.
    """

    def __init__(
        self,
        *,
        store: Optional[SubscriptionStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._clock = clock
        self._locks: Dict[str, _UserLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.setdefault(user_id, _UserLock())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            # Drop the entry once nobody holds or waits on it.
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._locks.pop(user_id, None)

    @staticmethod
    def resolve_plan(
        plan_type: Union[PlanType, str, None] = None,
        button_id: Optional[str] = None,
    ) -> PlanType:
        plan: Optional[Dict[str, Any]] = None
        if plan_type:
            plan = get_plan(plan_type)
        elif button_id:
            plan = plan_for_button_id(button_id)
        if plan is None or not plan.get("enabled"):
            raise PlanCatalogError(
                f"Unknown or unavailable plan (planType={plan_type!r}, buttonId={button_id!r}).",
                code="payments.unknown_plan",
            )
        return PlanType(plan["planType"])

    @staticmethod
    def ensure_amount(plan_type: PlanType, paid: Optional[Tuple[Decimal, str]]) -> None:
        """Raise ``PaymentMismatchError`` unless ``paid`` equals the catalog price."""

        price = (get_plan(plan_type) or {}).get("price") or {}
        try:
            expected = Decimal(str(price.get("amount"))).quantize(_CENT)
        except InvalidOperation as exc:
            raise PlanCatalogError(
                f"Plan {plan_type.value} has no price.", code="payments.pricing_unavailable"
            ) from exc
        currency = str(price.get("currency") or "").upper()
        if paid is None:
            raise PaymentMismatchError("The PayPal order carries no amount.")
        amount, paid_currency = paid
        if amount.quantize(_CENT) != expected or paid_currency.upper() != currency:
            raise PaymentMismatchError(
                f"Paid {amount} {paid_currency} but {plan_type.value} costs {expected} {currency}."
            )

    def on_approve(
        self,
        user_id: Optional[str],
        order_id: str,
        *,
        plan_type: Union[PlanType, str, None] = None,
        button_id: Optional[str] = None,
        paid: Optional[Tuple[Decimal, str]],
        now: Optional[datetime] = None,
    ) -> CheckoutOutcome:
        """Apply the captured order ``order_id`` as the payment reference.

        ``paid`` is the order's ``(amount, currency)`` and must match the
        resolved plan's price before anything is written.
        """

        if not user_id:
            raise NotAuthenticatedError()
        resolved = self.resolve_plan(plan_type, button_id)
        self.ensure_amount(resolved, paid)
        instant = now or self._clock()

        with self._user_lock(user_id):
            try:
                result: TransitionResult = apply_payment(
                    user_id,
                    resolved,
                    order_id,
                    now=instant,
                    store=self._store,
                )
            except (TransitionError, IllegalTransitionError):
                logger.exception("Activation failed after PayPal approval orderId=%s user=%s", order_id, user_id)
                return CheckoutOutcome(
                    result=CheckoutResult.ACTIVATION_FAILED,
                    message=_MESSAGES[CheckoutResult.ACTIVATION_FAILED],
                    plan_type=resolved,
                    order_id=order_id,
                )

        outcome = CheckoutResult.ACTIVATED if result.applied else CheckoutResult.ALREADY_APPLIED
        return CheckoutOutcome(
            result=outcome,
            message=_MESSAGES[outcome],
            plan_type=result.plan_type,
            order_id=order_id,
            current_period_end=result.current_period_end,
        )

    def on_cancel(self, *, user_id: Optional[str] = None) -> CheckoutOutcome:
        logger.info("PayPal checkout canceled by user=%s", user_id)
        return CheckoutOutcome(result=CheckoutResult.CANCELED, message=_MESSAGES[CheckoutResult.CANCELED])

    def on_error(self, error: Any, *, user_id: Optional[str] = None) -> CheckoutOutcome:
        logger.warning("PayPal checkout error for user=%s: %s", user_id, error)
        return CheckoutOutcome(result=CheckoutResult.FAILED, message=_MESSAGES[CheckoutResult.FAILED])


checkout_adapter = PayPalCheckoutAdapter()


def get_checkout_adapter() -> PayPalCheckoutAdapter:
    return checkout_adapter


__all__ = [
    "CheckoutOutcome",
    "CheckoutResult",
    "PayPalCheckoutAdapter",
    "checkout_adapter",
    "get_checkout_adapter",
]
