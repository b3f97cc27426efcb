"""Access enforcement helpers built on the derived subscription state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from services.trial_lifecycle import DerivedState, DerivedStatus

_DENIAL_MESSAGES: Dict[DerivedStatus, str] = {
    DerivedStatus.NOT_AUTHENTICATED: "Sign in to continue.",
    DerivedStatus.NO_SUBSCRIPTION: "Start your free trial to continue.",
    DerivedStatus.UNKNOWN: "Subscription status is temporarily unavailable. Please retry.",
    DerivedStatus.TRIAL_EXPIRED: "Your free trial has ended. Choose a plan to continue.",
    DerivedStatus.EXPIRED: "Your subscription has expired. Renew to continue.",
    DerivedStatus.CANCELED: "Your subscription was canceled. Choose a plan to continue.",
}


@dataclass(slots=True)
class SubscriptionGuardError(RuntimeError):
    """Raised when the derived state does not grant access."""

    code: str
    message: str
    status: Optional[str] = None
    requires_upgrade: bool = False

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    def to_detail(self) -> Dict[str, object]:
        detail: Dict[str, object] = {
            "code": self.code,
            "message": self.message,
        }
        if self.status:
            detail["status"] = self.status
        detail["requiresUpgrade"] = self.requires_upgrade
        return detail


def ensure_access(state: DerivedState) -> DerivedState:
    """Return ``state`` when it grants access, otherwise raise ``SubscriptionGuardError``."""

    if state.access_granted:
        return state
    raise SubscriptionGuardError(
        code=f"subscription.{state.status.value}",
        message=_DENIAL_MESSAGES.get(state.status, "Subscription required."),
        status=state.status.value,
        requires_upgrade=state.requires_upgrade,
    )


__all__ = ["SubscriptionGuardError", "ensure_access"]
