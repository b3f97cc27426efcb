"""Payment-related API endpoints for PayPal hosted-button checkout and webhooks."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from schemas.api.payments import (
    CheckoutOutcomeResponse,
    PayPalButtonSchema,
    PayPalConfigResponse,
    PayPalConfirmRequest,
    PayPalErrorRequest,
    PayPalWebhookResponse,
)
from services.payments import (
    PayPalError,
    get_paypal_client,
    get_paypal_public_config,
    order_amount,
    order_is_captured,
)
from services.payments.paypal_checkout import (
    CheckoutOutcome,
    CheckoutResult,
    PayPalCheckoutAdapter,
    get_checkout_adapter,
)
from services.payments.paypal_webhook_service import (
    PayPalWebhookProcessor,
    WebhookPayloadError,
    get_webhook_processor,
)
from services.plan_catalog_service import list_plans
from services.subscription_errors import (
    NotAuthenticatedError,
    PaymentMismatchError,
    PlanCatalogError,
    SubscriptionError,
)
from web.deps import get_current_user, get_optional_user
from web.middleware.auth_context import AuthenticatedUser

router = APIRouter(prefix="/payments", tags=["Payments"])

logger = logging.getLogger(__name__)


def _outcome_response(outcome: CheckoutOutcome) -> CheckoutOutcomeResponse:
    return CheckoutOutcomeResponse(
        result=outcome.result.value,
        message=outcome.message,
        planType=outcome.plan_type.value if outcome.plan_type else None,
        orderId=outcome.order_id,
        currentPeriodEnd=outcome.current_period_end.isoformat() if outcome.current_period_end else None,
    )


def _config_unavailable(exc: RuntimeError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "payments.config_missing", "message": str(exc)},
    )


@router.get("/paypal/config", response_model=PayPalConfigResponse, summary="Return PayPal widget configuration.")
def read_paypal_config() -> PayPalConfigResponse:
    try:
        config = get_paypal_public_config()
    except RuntimeError as exc:
        logger.warning("PayPal config unavailable: %s", exc)
        raise _config_unavailable(exc) from exc
    buttons = [
        PayPalButtonSchema(
            planType=plan["planType"],
            buttonId=plan["buttonId"],
            displayName=plan["displayName"],
            amount=plan["price"]["amount"],
            currency=plan["price"]["currency"],
        )
        for plan in list_plans()
        if plan.get("buttonId")
    ]
    return PayPalConfigResponse(clientId=config["clientId"], currency=config.get("currency"), buttons=buttons)


@router.post(
    "/paypal/confirm",
    response_model=CheckoutOutcomeResponse,
    summary="Apply a captured PayPal order to the caller's subscription.",
)
async def confirm_paypal_payment(
    payload: PayPalConfirmRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    adapter: PayPalCheckoutAdapter = Depends(get_checkout_adapter),
) -> CheckoutOutcomeResponse:
    try:
        client = get_paypal_client()
    except RuntimeError as exc:
        logger.error("PayPal secret configuration missing: %s", exc)
        raise _config_unavailable(exc) from exc

    try:
        order = await client.get_order(payload.orderId)
    except PayPalError as exc:
        logger.warning("PayPal order lookup failed: %s", exc.payload or exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "payments.paypal_error", "message": str(exc)},
        ) from exc

    if not order_is_captured(order):
        logger.warning("PayPal order %s not captured (status=%s)", payload.orderId, order.get("status"))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.order_not_captured", "message": "The PayPal order has not been captured."},
        )

    try:
        outcome = await run_in_threadpool(
            adapter.on_approve,
            user.id,
            payload.orderId,
            plan_type=payload.planType,
            button_id=payload.buttonId,
            paid=order_amount(order),
        )
    except PaymentMismatchError as exc:
        logger.warning("PayPal order %s rejected for user=%s: %s", payload.orderId, user.id, exc)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_detail()) from exc
    except PlanCatalogError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_detail()) from exc
    except NotAuthenticatedError as exc:  # pragma: no cover - guarded by get_current_user
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=exc.to_detail()) from exc

    if outcome.result is CheckoutResult.ACTIVATION_FAILED:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "subscription.activation_failed", "message": outcome.message, "orderId": payload.orderId},
        )
    return _outcome_response(outcome)


@router.post("/paypal/cancel", response_model=CheckoutOutcomeResponse, summary="Record a canceled PayPal checkout.")
def cancel_paypal_checkout(
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    adapter: PayPalCheckoutAdapter = Depends(get_checkout_adapter),
) -> CheckoutOutcomeResponse:
    return _outcome_response(adapter.on_cancel(user_id=user.id if user else None))


@router.post("/paypal/error", response_model=CheckoutOutcomeResponse, summary="Record a failed PayPal checkout.")
def report_paypal_error(
    payload: PayPalErrorRequest,
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    adapter: PayPalCheckoutAdapter = Depends(get_checkout_adapter),
) -> CheckoutOutcomeResponse:
    return _outcome_response(adapter.on_error(payload.message, user_id=user.id if user else None))


@router.post(
    "/paypal/webhook",
    response_model=PayPalWebhookResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Receive PayPal subscription webhooks.",
)
async def handle_paypal_webhook(
    request: Request,
    processor: PayPalWebhookProcessor = Depends(get_webhook_processor),
) -> PayPalWebhookResponse:
    raw_body = await request.body()
    try:
        event: Dict[str, Any] = json.loads(raw_body.decode("utf-8"))
        if not isinstance(event, dict):
            raise ValueError("webhook body must be an object")
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("PayPal webhook payload decode failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.webhook_payload_invalid", "message": "Webhook body could not be parsed."},
        ) from exc

    log_context = {
        "event_id": event.get("id"),
        "event_type": event.get("event_type"),
        "transmission_id": request.headers.get("paypal-transmission-id"),
    }
    logger.info("Received PayPal webhook.", extra={"webhook": log_context})

    try:
        client = get_paypal_client()
        verified = await client.verify_webhook_signature(request.headers, event)
    except RuntimeError as exc:
        if isinstance(exc, PayPalError):
            logger.warning("PayPal webhook verification request failed: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail={"code": "payments.webhook_verification_failed", "message": str(exc)},
            ) from exc
        logger.error("PayPal webhook signature verification unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "payments.webhook_signature_unavailable", "message": str(exc)},
        ) from exc

    if not verified:
        logger.warning("PayPal webhook signature invalid.", extra={"webhook": log_context})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "payments.webhook_signature_invalid", "message": "Webhook signature verification failed."},
        )

    try:
        result = await run_in_threadpool(processor.process, event)
    except WebhookPayloadError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "payments.webhook_payload_invalid", "message": str(exc)},
        ) from exc
    except SubscriptionError as exc:
        # Non-2xx makes PayPal redeliver; the event stays unprocessed until then.
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "payments.webhook_plan_update_failed", "message": str(exc)},
        ) from exc

    return PayPalWebhookResponse(status="accepted", result=result.result)


__all__ = ["router"]
