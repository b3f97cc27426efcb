"""Apply PayPal subscription webhook events to subscription records."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from core.plan_constants import PlanType
from services.plan_catalog_service import plan_for_provider_plan_id
from services.plan_transition import apply_payment, cancel_subscription, expire_subscription
from services.payments.paypal_webhook_store import PayPalWebhookStore, webhook_store
from services.subscription_errors import (
    IllegalTransitionError,
    MalformedRecordError,
    RecordNotFoundError,
    SubscriptionError,
)
from services.subscription_states import parse_plan_type
from services.subscription_store import SubscriptionStore, get_subscription_store
from services.subscription_time import ensure_utc, utcnow

logger = logging.getLogger(__name__)


class WebhookAction(str, Enum):
    PAYMENT = "payment"
    RENEWAL = "renewal"
    CANCEL = "cancel"
    EXPIRE = "expire"
    IGNORE = "ignore"


EVENT_ACTIONS: Dict[str, WebhookAction] = {
    "BILLING.SUBSCRIPTION.CREATED": WebhookAction.PAYMENT,
    "BILLING.SUBSCRIPTION.ACTIVATED": WebhookAction.PAYMENT,
    "PAYMENT.SALE.COMPLETED": WebhookAction.RENEWAL,
    "BILLING.SUBSCRIPTION.CANCELLED": WebhookAction.CANCEL,
    "BILLING.SUBSCRIPTION.EXPIRED": WebhookAction.EXPIRE,
    "BILLING.SUBSCRIPTION.SUSPENDED": WebhookAction.EXPIRE,
}


class WebhookPayloadError(ValueError):
    """Raised when a webhook body lacks the fields needed to dedupe it."""


class WebhookUnresolvedError(SubscriptionError):
    """A settled-payment or status event cannot be tied to a user or payment.

    Left unprocessed so the failure is recorded and PayPal redelivers it.
    """

    default_code = "payments.webhook_unresolved"
    default_message = "PayPal webhook could not be matched to a subscription."


@dataclass(frozen=True)
class WebhookResult:
    event_id: str
    event_type: Optional[str]
    action: WebhookAction
    result: str
    user_id: Optional[str] = None
    detail: Optional[str] = None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _resolve_user_id(resource: Mapping[str, Any]) -> Optional[str]:
    return _text(resource.get("custom_id")) or _text(resource.get("custom"))


class PayPalWebhookProcessor:
    """Route verified webhook events to the transition writer.

    An event id is recorded as processed only after its transition succeeds,
    so a failed delivery stays eligible for PayPal's retry.
    """

    def __init__(
        self,
        *,
        store: Optional[SubscriptionStore] = None,
        events: Optional[PayPalWebhookStore] = None,
    ) -> None:
        self._store = store
        self._events = events or webhook_store

    @property
    def store(self) -> SubscriptionStore:
        return self._store or get_subscription_store()

    def process(self, event: Mapping[str, Any], *, now: Optional[datetime] = None) -> WebhookResult:
        event_id = _text(event.get("id"))
        if not event_id:
            raise WebhookPayloadError("Webhook event id is missing.")
        event_type = _text(event.get("event_type"))
        resource = event.get("resource") if isinstance(event.get("resource"), Mapping) else {}
        resource_id = _text(resource.get("id"))
        action = EVENT_ACTIONS.get(event_type or "", WebhookAction.IGNORE)
        log_context = {"event_id": event_id, "event_type": event_type, "resource_id": resource_id}
        instant = ensure_utc(now or utcnow())

        if self._events.has_processed(event_id):
            logger.info("Duplicate PayPal webhook ignored.", extra={"webhook": log_context})
            return WebhookResult(event_id, event_type, action, "duplicate")

        try:
            result = self._dispatch(event_id, event_type, action, resource, instant)
        except SubscriptionError as exc:
            logger.exception("Failed to apply PayPal webhook.", extra={"webhook": log_context})
            self._events.record_failure(
                event_id,
                event_type=event_type,
                resource_id=resource_id,
                error=str(exc),
                payload=dict(event),
            )
            raise

        self._events.record_processed(
            event_id,
            event_type=event_type,
            resource_id=resource_id,
            payload=dict(event),
            now=instant,
        )
        logger.info(
            "Processed PayPal webhook.",
            extra={"webhook": {**log_context, "result": result.result, "user_id": result.user_id}},
        )
        return result

    def _dispatch(
        self,
        event_id: str,
        event_type: Optional[str],
        action: WebhookAction,
        resource: Mapping[str, Any],
        now: datetime,
    ) -> WebhookResult:
        if action is WebhookAction.IGNORE:
            return WebhookResult(event_id, event_type, action, "ignored", detail="unsupported_event")

        user_id = _resolve_user_id(resource)
        if not user_id:
            raise WebhookUnresolvedError(
                f"PayPal webhook {event_id} has no custom_id; cannot resolve user.",
                code="payments.webhook_missing_user",
            )

        if action in (WebhookAction.PAYMENT, WebhookAction.RENEWAL):
            reference = _text(resource.get("id"))
            if not reference:
                raise WebhookUnresolvedError(
                    f"PayPal webhook {event_id} carries no resource id to key the payment on.",
                    code="payments.webhook_missing_reference",
                    user_id=user_id,
                )
            plan_type = self._resolve_plan(event_id, resource, user_id)
            transition = apply_payment(user_id, plan_type, reference, now=now, store=self.store)
            outcome = "applied" if transition.applied else "already_applied"
            return WebhookResult(event_id, event_type, action, outcome, user_id)

        try:
            if action is WebhookAction.CANCEL:
                cancel_subscription(user_id, now=now, store=self.store)
            else:
                expire_subscription(user_id, now=now, store=self.store)
        except (RecordNotFoundError, IllegalTransitionError) as exc:
            logger.info("PayPal webhook %s not applicable: %s", event_id, exc)
            return WebhookResult(event_id, event_type, action, "ignored", user_id, exc.code)
        return WebhookResult(event_id, event_type, action, "applied", user_id)

    def _resolve_plan(self, event_id: str, resource: Mapping[str, Any], user_id: str) -> PlanType:
        """Mapped provider plan, else the user's current plan, else monthly."""

        plan = plan_for_provider_plan_id(_text(resource.get("plan_id")))
        if plan is not None:
            return PlanType(plan["planType"])
        # Sale events carry no plan id; renewals keep the user's current plan.
        record = self.store.get(user_id)
        current: Optional[PlanType] = None
        if record is not None:
            try:
                current = parse_plan_type(record.plan_type)
            except MalformedRecordError:
                current = None
        if current is not None:
            return current
        logger.warning(
            "No plan mapped for PayPal webhook %s user=%s plan_id=%s; applying monthly.",
            event_id,
            user_id,
            resource.get("plan_id"),
        )
        return PlanType.MONTHLY


webhook_processor = PayPalWebhookProcessor()


def get_webhook_processor() -> PayPalWebhookProcessor:
    return webhook_processor


__all__ = [
    "EVENT_ACTIONS",
    "PayPalWebhookProcessor",
    "WebhookAction",
    "WebhookPayloadError",
    "WebhookResult",
    "WebhookUnresolvedError",
    "get_webhook_processor",
    "webhook_processor",
]
