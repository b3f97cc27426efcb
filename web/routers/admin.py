"""Administrative subscription procedures (lapse sweep, payment simulation, repair)."""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, status

from schemas.api.subscriptions import (
    LapsedSweepResponse,
    RepairResponse,
    SimulatePaymentRequest,
    SimulatePaymentResponse,
    SubscriptionRecordSchema,
)
from services.edge_functions_client import EdgeFunctionError, get_edge_functions_client
from services.plan_transition import apply_payment, expire_lapsed_subscriptions
from services.subscription_errors import IllegalTransitionError, SubscriptionError, TransitionError
from services.subscription_store import SubscriptionStore, get_subscription_store
from web.deps_admin import AdminSession, require_admin_session

router = APIRouter(prefix="/admin/subscriptions", tags=["Admin Subscriptions"])

logger = logging.getLogger(__name__)


@router.post(
    "/expire-lapsed",
    response_model=LapsedSweepResponse,
    summary="Persist expiry for trials and paid periods that have ended.",
)
def expire_lapsed(
    session: AdminSession = Depends(require_admin_session),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> LapsedSweepResponse:
    try:
        result = expire_lapsed_subscriptions(store=store)
    except SubscriptionError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.to_detail()) from exc
    logger.info("Lapsed sweep triggered by %s", session.actor)
    return LapsedSweepResponse(**result.to_dict())


@router.post(
    "/{user_id}/simulate-payment",
    response_model=SimulatePaymentResponse,
    summary="Apply a simulated payment (test environments).",
)
def simulate_payment(
    user_id: str,
    payload: SimulatePaymentRequest,
    session: AdminSession = Depends(require_admin_session),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> SimulatePaymentResponse:
    reference = payload.paymentReference or f"SIM-{uuid.uuid4().hex[:16].upper()}"
    try:
        result = apply_payment(user_id, payload.planType, reference, store=store)
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_detail()) from exc
    except TransitionError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_detail()) from exc
    record = store.get(user_id)
    logger.info("Simulated %s payment %s for user=%s by %s", payload.planType, reference, user_id, session.actor)
    return SimulatePaymentResponse(
        applied=result.applied,
        paymentReference=reference,
        subscription=SubscriptionRecordSchema.from_record(record),
    )


@router.post(
    "/{user_id}/repair",
    response_model=RepairResponse,
    summary="Invoke the repair-subscriptions edge function for a user.",
)
async def repair_subscription(
    user_id: str,
    session: AdminSession = Depends(require_admin_session),
) -> RepairResponse:
    try:
        client = get_edge_functions_client()
    except RuntimeError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "admin.edge_functions_unconfigured", "message": str(exc)},
        ) from exc
    try:
        result = await client.repair_subscription(user_id)
    except EdgeFunctionError as exc:
        logger.error("Subscription repair failed for user=%s: %s", user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "admin.repair_failed", "message": str(exc)},
        ) from exc
    logger.info("Subscription repair for user=%s requested by %s", user_id, session.actor)
    return RepairResponse(userId=user_id, result=result)


__all__ = ["router"]
