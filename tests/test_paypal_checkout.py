from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from core.plan_constants import PlanType
from services.payments.paypal_checkout import CheckoutResult, PayPalCheckoutAdapter
from services.plan_catalog_service import MONTHLY_BUTTON_ID, YEARLY_BUTTON_ID
from services.plan_transition import start_trial
from services.subscription_errors import (
    ACTIVATION_FAILED_MESSAGE,
    NotAuthenticatedError,
    PaymentMismatchError,
    PlanCatalogError,
    TransitionError,
)
from services.subscription_store import SubscriptionStore
from services.subscription_time import add_months, coerce_datetime

NOW = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)
MONTHLY_PAID = (Decimal("9.99"), "USD")
YEARLY_PAID = (Decimal("99.99"), "USD")


@pytest.fixture()
def adapter(store: SubscriptionStore) -> PayPalCheckoutAdapter:
    return PayPalCheckoutAdapter(store=store, clock=lambda: NOW)


def test_resolve_plan_by_button_id() -> None:
    assert PayPalCheckoutAdapter.resolve_plan(button_id=MONTHLY_BUTTON_ID) is PlanType.MONTHLY
    assert PayPalCheckoutAdapter.resolve_plan(button_id=YEARLY_BUTTON_ID) is PlanType.YEARLY
    assert PayPalCheckoutAdapter.resolve_plan("yearly") is PlanType.YEARLY


@pytest.mark.parametrize(
    ("plan_type", "button_id"),
    [("weekly", None), (None, "UNKNOWN"), ("test", None), (None, None)],
)
def test_resolve_plan_rejects_unknown_or_disabled(plan_type, button_id) -> None:
    with pytest.raises(PlanCatalogError) as excinfo:
        PayPalCheckoutAdapter.resolve_plan(plan_type, button_id)
    assert excinfo.value.code == "payments.unknown_plan"


def test_on_approve_activates_monthly_plan(adapter: PayPalCheckoutAdapter, store: SubscriptionStore) -> None:
    start_trial("user-1", now=NOW - timedelta(days=2), store=store)

    outcome = adapter.on_approve("user-1", "ORDER-1", button_id=MONTHLY_BUTTON_ID, paid=MONTHLY_PAID)

    assert outcome.result is CheckoutResult.ACTIVATED
    assert outcome.succeeded is True
    assert outcome.message == "Payment successful! Your subscription is now active."
    assert outcome.plan_type is PlanType.MONTHLY
    assert outcome.current_period_end == add_months(NOW, 1)
    record = store.get("user-1")
    assert record.status == "active"
    assert record.last_payment_reference == "ORDER-1"


def test_on_approve_duplicate_order_is_idempotent(adapter: PayPalCheckoutAdapter, store: SubscriptionStore) -> None:
    adapter.on_approve("user-1", "ORDER-1", plan_type="yearly", paid=YEARLY_PAID)
    outcome = adapter.on_approve(
        "user-1", "ORDER-1", plan_type="yearly", paid=YEARLY_PAID, now=NOW + timedelta(days=1)
    )

    assert outcome.result is CheckoutResult.ALREADY_APPLIED
    assert outcome.succeeded is True
    assert coerce_datetime(store.get("user-1").current_period_end) == add_months(NOW, 12)


def test_on_approve_requires_user(adapter: PayPalCheckoutAdapter) -> None:
    with pytest.raises(NotAuthenticatedError):
        adapter.on_approve(None, "ORDER-1", plan_type="monthly", paid=MONTHLY_PAID)


def test_on_approve_reports_activation_failure(
    adapter: PayPalCheckoutAdapter,
    store: SubscriptionStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _fail(**_kwargs):
        raise TransitionError(user_id="user-1")

    monkeypatch.setattr(store, "apply_period", _fail)
    outcome = adapter.on_approve("user-1", "ORDER-1", plan_type="monthly", paid=MONTHLY_PAID)

    assert outcome.result is CheckoutResult.ACTIVATION_FAILED
    assert outcome.succeeded is False
    assert outcome.message == ACTIVATION_FAILED_MESSAGE
    assert store.get("user-1") is None


def test_on_cancel_and_on_error_leave_record_untouched(
    adapter: PayPalCheckoutAdapter,
    store: SubscriptionStore,
) -> None:
    start_trial("user-1", now=NOW, store=store)

    canceled = adapter.on_cancel(user_id="user-1")
    failed = adapter.on_error({"message": "INSTRUMENT_DECLINED"}, user_id="user-1")

    assert canceled.result is CheckoutResult.CANCELED
    assert failed.result is CheckoutResult.FAILED
    assert "try again" in failed.message
    assert store.get("user-1").status == "trial"


@pytest.mark.parametrize(
    ("plan_type", "paid"),
    [
        ("yearly", MONTHLY_PAID),
        ("monthly", (Decimal("0.01"), "USD")),
        ("monthly", (Decimal("9.99"), "EUR")),
        ("monthly", None),
    ],
)
def test_on_approve_rejects_payment_not_matching_price(
    adapter: PayPalCheckoutAdapter,
    store: SubscriptionStore,
    plan_type: str,
    paid,
) -> None:
    start_trial("user-1", now=NOW, store=store)

    with pytest.raises(PaymentMismatchError) as excinfo:
        adapter.on_approve("user-1", "ORDER-1", plan_type=plan_type, paid=paid)

    assert excinfo.value.code == "payments.amount_mismatch"
    record = store.get("user-1")
    assert record.status == "trial"
    assert record.last_payment_reference is None


def test_on_approve_accepts_price_with_trailing_zeros(adapter: PayPalCheckoutAdapter) -> None:
    outcome = adapter.on_approve("user-1", "ORDER-1", plan_type="yearly", paid=(Decimal("99.990"), "usd"))
    assert outcome.result is CheckoutResult.ACTIVATED


def test_user_locks_are_released_after_approval(
    adapter: PayPalCheckoutAdapter,
    store: SubscriptionStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    for index in range(5):
        adapter.on_approve(f"user-{index}", f"ORDER-{index}", plan_type="monthly", paid=MONTHLY_PAID)

    def _fail(**_kwargs):
        raise TransitionError(user_id="user-9")

    monkeypatch.setattr(store, "apply_period", _fail)
    adapter.on_approve("user-9", "ORDER-9", plan_type="monthly", paid=MONTHLY_PAID)

    assert adapter._locks == {}
