"""Subscription lifecycle endpoints (status, access check, trial start, cancel)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from schemas.api.subscriptions import (
    SubscriptionMutationResponse,
    SubscriptionRecordSchema,
    SubscriptionStatusResponse,
)
from services.plan_transition import cancel_subscription, start_trial
from services.subscription_errors import IllegalTransitionError, RecordNotFoundError, TransitionError
from services.subscription_store import SubscriptionStore, get_subscription_store
from services.subscription_time import utcnow
from services.trial_lifecycle import DerivedState, evaluate
from web.deps import get_current_user, get_subscription_state, require_active_subscription
from web.middleware.auth_context import AuthenticatedUser

router = APIRouter(prefix="/subscription", tags=["Subscription"])

logger = logging.getLogger(__name__)


def _mutation_response(record, *, created: bool = False) -> SubscriptionMutationResponse:
    return SubscriptionMutationResponse(
        created=created,
        subscription=SubscriptionRecordSchema.from_record(record),
        state=SubscriptionStatusResponse.from_state(evaluate(record, utcnow())),
    )


@router.get("/status", response_model=SubscriptionStatusResponse, summary="Return the caller's derived subscription state.")
def read_subscription_status(state: DerivedState = Depends(get_subscription_state)) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse.from_state(state)


@router.get(
    "/access",
    response_model=SubscriptionStatusResponse,
    summary="Succeed only when the caller's trial or paid period grants access.",
)
def check_subscription_access(state: DerivedState = Depends(require_active_subscription)) -> SubscriptionStatusResponse:
    return SubscriptionStatusResponse.from_state(state)


@router.post("/trial", response_model=SubscriptionMutationResponse, summary="Start the free trial at signup.")
def start_subscription_trial(
    user: AuthenticatedUser = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> SubscriptionMutationResponse:
    try:
        record, created = start_trial(user.id, store=store)
    except TransitionError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_detail()) from exc
    return _mutation_response(record, created=created)


@router.post("/cancel", response_model=SubscriptionMutationResponse, summary="Cancel the caller's subscription.")
def cancel_current_subscription(
    user: AuthenticatedUser = Depends(get_current_user),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> SubscriptionMutationResponse:
    try:
        record = cancel_subscription(user.id, store=store)
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=exc.to_detail()) from exc
    except IllegalTransitionError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.to_detail()) from exc
    except TransitionError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_detail()) from exc
    return _mutation_response(record)


__all__ = ["router"]
