"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from services.subscription_guard import SubscriptionGuardError, ensure_access
from services.subscription_service import read_subscription_state
from services.subscription_store import SubscriptionStore, get_subscription_store
from services.trial_lifecycle import DerivedState
from web.middleware.auth_context import AuthenticatedUser

_GUARD_STATUS_CODES = {
    "not_authenticated": status.HTTP_401_UNAUTHORIZED,
    "unknown": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_optional_user(request: Request) -> Optional[AuthenticatedUser]:
    return getattr(request.state, "user", None)


def get_current_user(request: Request) -> AuthenticatedUser:
    user = getattr(request.state, "user", None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "auth.required", "message": "Sign in to continue."},
        )
    return user


def get_subscription_state(
    request: Request,
    user: Optional[AuthenticatedUser] = Depends(get_optional_user),
    store: SubscriptionStore = Depends(get_subscription_store),
) -> DerivedState:
    """Derived subscription state for the caller, cached on ``request.state``."""
    state = getattr(request.state, "subscription_state", None)
    if state is None:
        state = read_subscription_state(user.id if user else None, store=store)
        request.state.subscription_state = state
    return state


def require_active_subscription(state: DerivedState = Depends(get_subscription_state)) -> DerivedState:
    """Dependency that rejects callers without trial or paid access."""
    try:
        return ensure_access(state)
    except SubscriptionGuardError as exc:
        status_code = _GUARD_STATUS_CODES.get(exc.status or "", status.HTTP_402_PAYMENT_REQUIRED)
        raise HTTPException(status_code=status_code, detail=exc.to_detail()) from exc


__all__ = ["get_current_user", "get_optional_user", "get_subscription_state", "require_active_subscription"]
