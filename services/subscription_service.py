"""Read path: load the caller's record and evaluate it at the current instant."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from services.subscription_errors import SubscriptionReadError
from services.subscription_store import SubscriptionStore, get_subscription_store
from services.subscription_time import utcnow
from services.trial_lifecycle import DerivedState, evaluate, not_authenticated_state, unknown_state

logger = logging.getLogger(__name__)


def read_subscription_state(
    user_id: Optional[str],
    *,
    store: Optional[SubscriptionStore] = None,
    now: Optional[datetime] = None,
) -> DerivedState:
    """Never raises: read failures surface as the ``unknown`` state."""

    if not user_id:
        return not_authenticated_state()
    backend = store or get_subscription_store()
    try:
        record = backend.get(user_id)
    except SubscriptionReadError:
        logger.warning("Subscription read failed for user=%s; reporting unknown state.", user_id)
        return unknown_state()
    return evaluate(record, now or utcnow())


__all__ = ["read_subscription_state"]
