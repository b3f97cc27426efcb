from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from models.payments import PayPalWebhookEvent
from services.payments.paypal_webhook_service import (
    PayPalWebhookProcessor,
    WebhookAction,
    WebhookPayloadError,
    WebhookUnresolvedError,
)
from services.payments.paypal_webhook_store import PayPalWebhookStore
from services.plan_transition import apply_payment, start_trial
from services.subscription_errors import TransitionError
from services.subscription_store import SubscriptionStore

NOW = datetime(2024, 7, 1, 0, 0, tzinfo=timezone.utc)


def _event(event_id: str, event_type: str, **resource: Any) -> Dict[str, Any]:
    return {"id": event_id, "event_type": event_type, "resource": resource}


@pytest.fixture()
def processor(store: SubscriptionStore, webhook_events: PayPalWebhookStore) -> PayPalWebhookProcessor:
    return PayPalWebhookProcessor(store=store, events=webhook_events)


def test_activation_event_applies_payment(
    processor: PayPalWebhookProcessor,
    store: SubscriptionStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("PAYPAL_YEARLY_PLAN_ID", "P-YEAR")
    start_trial("user-1", now=NOW, store=store)

    result = processor.process(
        _event("WH-1", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB1", plan_id="P-YEAR", custom_id="user-1"),
        now=NOW,
    )

    assert result.action is WebhookAction.PAYMENT
    assert result.result == "applied"
    assert result.user_id == "user-1"
    record = store.get("user-1")
    assert record.status == "active"
    assert record.plan_type == "yearly"
    assert record.last_payment_reference == "I-SUB1"


def test_duplicate_event_id_is_skipped(
    processor: PayPalWebhookProcessor,
    webhook_events: PayPalWebhookStore,
    session_factory,
) -> None:
    event = _event("WH-2", "BILLING.SUBSCRIPTION.CREATED", id="I-SUB2", custom_id="user-2")
    apply_payment("user-2", "monthly", "ORDER-0", now=NOW, store=processor.store)

    first = processor.process(event, now=NOW)
    second = processor.process(event, now=NOW)

    assert first.result == "applied"
    assert second.result == "duplicate"
    assert webhook_events.has_processed("WH-2") is True
    with session_factory() as session:
        row = session.get(PayPalWebhookEvent, "WH-2")
        assert row.processed is True
        assert row.resource_id == "I-SUB2"
        assert row.payload["event_type"] == "BILLING.SUBSCRIPTION.CREATED"


def test_same_resource_under_new_event_id_is_already_applied(
    processor: PayPalWebhookProcessor,
    store: SubscriptionStore,
) -> None:
    apply_payment("user-3", "monthly", "I-SUB3", now=NOW, store=store)
    result = processor.process(
        _event("WH-3", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB3", custom_id="user-3"),
        now=NOW + timedelta(days=3),
    )
    assert result.result == "already_applied"


def test_sale_completed_renews_with_current_plan(
    processor: PayPalWebhookProcessor,
    store: SubscriptionStore,
) -> None:
    apply_payment("user-4", "yearly", "I-SUB4", now=NOW, store=store)
    result = processor.process(
        _event("WH-4", "PAYMENT.SALE.COMPLETED", id="SALE-1", custom="user-4"),
        now=NOW + timedelta(days=365),
    )
    assert result.action is WebhookAction.RENEWAL
    assert result.result == "applied"
    record = store.get("user-4")
    assert record.plan_type == "yearly"
    assert record.last_payment_reference == "SALE-1"


def test_renewal_without_known_plan_applies_monthly(
    processor: PayPalWebhookProcessor,
    store: SubscriptionStore,
) -> None:
    result = processor.process(_event("WH-5", "PAYMENT.SALE.COMPLETED", id="SALE-2", custom="newcomer"), now=NOW)

    assert result.result == "applied"
    record = store.get("newcomer")
    assert record.status == "active"
    assert record.plan_type == "monthly"
    assert record.last_payment_reference == "SALE-2"


def test_activation_with_unmapped_plan_id_is_not_lost(
    processor: PayPalWebhookProcessor,
    store: SubscriptionStore,
    webhook_events: PayPalWebhookStore,
) -> None:
    start_trial("user-5", now=NOW - timedelta(days=3), store=store)
    event = _event("WH-5B", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB5", plan_id="P-UNCONFIGURED", custom_id="user-5")

    first = processor.process(event, now=NOW)
    redelivered = processor.process(event, now=NOW)

    assert first.result == "applied"
    assert redelivered.result == "duplicate"
    record = store.get("user-5")
    assert record.status == "active"
    assert record.plan_type == "monthly"
    assert webhook_events.has_processed("WH-5B") is True


def test_cancel_and_expire_events(processor: PayPalWebhookProcessor, store: SubscriptionStore) -> None:
    apply_payment("user-6", "monthly", "I-SUB6", now=NOW, store=store)
    apply_payment("user-7", "monthly", "I-SUB7", now=NOW, store=store)

    canceled = processor.process(_event("WH-6", "BILLING.SUBSCRIPTION.CANCELLED", id="I-SUB6", custom_id="user-6"))
    expired = processor.process(_event("WH-7", "BILLING.SUBSCRIPTION.SUSPENDED", id="I-SUB7", custom_id="user-7"))

    assert canceled.result == "applied"
    assert expired.result == "applied"
    assert store.get("user-6").status == "canceled"
    assert store.get("user-7").status == "expired"


def test_cancel_for_unknown_user_is_ignored(processor: PayPalWebhookProcessor) -> None:
    result = processor.process(_event("WH-8", "BILLING.SUBSCRIPTION.CANCELLED", id="I-X", custom_id="ghost"))
    assert result.result == "ignored"
    assert result.detail == "subscription.not_found"


def test_unsupported_event_is_ignored_and_recorded(
    processor: PayPalWebhookProcessor,
    webhook_events: PayPalWebhookStore,
) -> None:
    event = _event("WH-9", "CHECKOUT.ORDER.APPROVED", id="O-1", custom_id="user-1")
    result = processor.process(event, now=NOW)
    assert result.result == "ignored"
    assert result.detail == "unsupported_event"
    assert webhook_events.has_processed("WH-9") is True


@pytest.mark.parametrize(
    ("event", "code"),
    [
        (_event("WH-10", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-1"), "payments.webhook_missing_user"),
        (_event("WH-12", "PAYMENT.SALE.COMPLETED", custom="user-1"), "payments.webhook_missing_reference"),
        (_event("WH-13", "BILLING.SUBSCRIPTION.CANCELLED", id="I-2"), "payments.webhook_missing_user"),
    ],
)
def test_unresolvable_events_stay_unprocessed(
    processor: PayPalWebhookProcessor,
    webhook_events: PayPalWebhookStore,
    session_factory,
    event: Dict[str, Any],
    code: str,
) -> None:
    with pytest.raises(WebhookUnresolvedError) as excinfo:
        processor.process(event, now=NOW)

    assert excinfo.value.code == code
    assert webhook_events.has_processed(event["id"]) is False
    with session_factory() as session:
        row = session.get(PayPalWebhookEvent, event["id"])
        assert row.processed is False
        assert row.processing_error


def test_missing_event_id_is_rejected(processor: PayPalWebhookProcessor) -> None:
    with pytest.raises(WebhookPayloadError):
        processor.process({"event_type": "BILLING.SUBSCRIPTION.ACTIVATED", "resource": {}})


def test_failed_apply_stays_eligible_for_retry(
    processor: PayPalWebhookProcessor,
    store: SubscriptionStore,
    webhook_events: PayPalWebhookStore,
    session_factory,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    apply_payment("user-11", "monthly", "ORDER-0", now=NOW, store=store)
    event = _event("WH-11", "BILLING.SUBSCRIPTION.ACTIVATED", id="I-SUB11", custom_id="user-11")
    original_apply = store.apply_period

    def _fail(**_kwargs):
        raise TransitionError(user_id="user-11")

    monkeypatch.setattr(store, "apply_period", _fail)
    with pytest.raises(TransitionError):
        processor.process(event, now=NOW)

    assert webhook_events.has_processed("WH-11") is False
    with session_factory() as session:
        row = session.get(PayPalWebhookEvent, "WH-11")
        assert row is not None
        assert row.processed is False
        assert row.processing_error

    monkeypatch.setattr(store, "apply_period", original_apply)
    retried = processor.process(event, now=NOW)
    assert retried.result == "applied"
    assert webhook_events.has_processed("WH-11") is True
    with session_factory() as session:
        assert session.get(PayPalWebhookEvent, "WH-11").processing_error is None
