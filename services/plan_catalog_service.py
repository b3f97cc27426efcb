"""Plan catalog: price, billing period and PayPal identifiers per plan type."""

from __future__ import annotations

from copy import deepcopy
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from core.env import env_bool, env_str
from core.logging import get_logger
from core.plan_constants import PLAN_BILLING_PERIODS, SUPPORTED_PLAN_TYPES, PlanType
from services.json_store import JsonStore
from services.subscription_errors import PlanCatalogError

DEFAULT_PLAN_CATALOG_PATH = Path("uploads") / "admin" / "plan_catalog.json"
DEFAULT_CURRENCY = "USD"

MONTHLY_BUTTON_ID = "SZHF9WLR5RQWU"
YEARLY_BUTTON_ID = "YDK5G6VR2EA8L"

logger = get_logger(__name__)
_PLAN_CATALOG_STORE = JsonStore(
    path_env="PLAN_CATALOG_FILE",
    default_path=DEFAULT_PLAN_CATALOG_PATH,
)


class PlanCatalogConflictError(RuntimeError):
    """Raised when concurrent updates modify the plan catalog."""

    def __init__(self, message: str = "The plan catalog was changed by someone else. Reload and try again.") -> None:
        super().__init__(message)


def _default_plans() -> List[Dict[str, Any]]:
    currency = env_str("PAYPAL_CURRENCY", DEFAULT_CURRENCY) or DEFAULT_CURRENCY
    plans: List[Dict[str, Any]] = [
        {
            "planType": PlanType.MONTHLY.value,
            "displayName": "Monthly",
            "description": "Full access to calendar, tasks and bookings, billed every month.",
            "price": {"amount": 9.99, "currency": currency, "interval": "month"},
            "buttonId": MONTHLY_BUTTON_ID,
            "providerPlanId": env_str("PAYPAL_MONTHLY_PLAN_ID"),
            "enabled": True,
        },
        {
            "planType": PlanType.YEARLY.value,
            "displayName": "Yearly",
            "description": "Full access billed once a year. Two months free compared to monthly.",
            "price": {"amount": 99.99, "currency": currency, "interval": "year"},
            "buttonId": YEARLY_BUTTON_ID,
            "providerPlanId": env_str("PAYPAL_YEARLY_PLAN_ID"),
            "enabled": True,
        },
        {
            "planType": PlanType.TEST.value,
            "displayName": "Test",
            "description": "One-hour plan for verifying the checkout flow end to end.",
            "price": {"amount": 0.01, "currency": currency, "interval": "hour"},
            "buttonId": env_str("PAYPAL_TEST_BUTTON_ID"),
            "providerPlanId": None,
            "enabled": env_bool("PAYMENTS_ENABLE_TEST_PLAN", False),
        },
    ]
    return [_normalize_plan(plan) for plan in plans]


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _normalize_price(raw: Mapping[str, Any], *, fallback_interval: str) -> Dict[str, Any]:
    try:
        amount = round(float(raw.get("amount", 0)), 2)
    except (TypeError, ValueError):
        amount = 0.0
    if amount < 0:
        raise ValueError("Plan price must not be negative.")
    currency = str(raw.get("currency") or DEFAULT_CURRENCY).strip().upper() or DEFAULT_CURRENCY
    interval = str(raw.get("interval") or fallback_interval).strip() or fallback_interval
    return {"amount": amount, "currency": currency, "interval": interval}


def _normalize_plan(raw: Mapping[str, Any]) -> Dict[str, Any]:
    value = str(raw.get("planType") or raw.get("plan_type") or "").strip().lower()
    try:
        plan_type = PlanType(value)
    except ValueError as exc:
        raise ValueError(f"Unsupported plan type: {value!r}") from exc

    unit, count = PLAN_BILLING_PERIODS[plan_type]
    price_raw = raw.get("price")
    price = _normalize_price(price_raw if isinstance(price_raw, Mapping) else {}, fallback_interval=unit)

    return {
        "planType": plan_type.value,
        "displayName": _optional_text(raw.get("displayName")) or plan_type.value.title(),
        "description": _optional_text(raw.get("description")),
        "price": price,
        "billingPeriod": {"unit": unit, "count": count},
        "buttonId": _optional_text(raw.get("buttonId") or raw.get("button_id")),
        "providerPlanId": _optional_text(raw.get("providerPlanId") or raw.get("provider_plan_id")),
        "enabled": bool(raw.get("enabled", True)),
    }


def _normalize_plans(entries: Iterable[Any], *, strict: bool) -> List[Dict[str, Any]]:
    normalized: List[Dict[str, Any]] = []
    seen: set[str] = set()
    for entry in entries:
        try:
            parsed = _normalize_plan(entry if isinstance(entry, Mapping) else {})
        except ValueError:
            if strict:
                raise
            logger.warning("Skipping invalid plan catalog entry: %r", entry)
            continue
        if parsed["planType"] in seen:
            continue
        normalized.append(parsed)
        seen.add(parsed["planType"])
    return normalized


def _default_catalog() -> Dict[str, Any]:
    return {
        "plans": _default_plans(),
        "updated_at": None,
        "updated_by": None,
        "note": None,
    }


def _catalog_error_hook(path: Path, exc: Exception) -> None:
    logger.warning("Plan catalog load failed for %s: %s", path, exc)


def _load_catalog_from_raw(raw: Any) -> Dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise ValueError("Plan catalog must be a JSON object.")

    plans_raw = raw.get("plans")
    plans = _normalize_plans(plans_raw, strict=False) if isinstance(plans_raw, list) else []
    if not plans:
        plans = _default_plans()
    return {
        "plans": plans,
        "updated_at": raw.get("updated_at"),
        "updated_by": raw.get("updated_by"),
        "note": raw.get("note"),
    }


def load_plan_catalog(*, reload: bool = False) -> Dict[str, Any]:
    return _PLAN_CATALOG_STORE.load(
        loader=_load_catalog_from_raw,
        fallback=_default_catalog,
        reload=reload,
        on_error=_catalog_error_hook,
    )


def update_plan_catalog(
    plans: Iterable[Mapping[str, Any]],
    *,
    updated_by: Optional[str],
    note: Optional[str],
    expected_updated_at: Optional[str] = None,
) -> Dict[str, Any]:
    normalized_plans = _normalize_plans(plans, strict=True)
    if not normalized_plans:
        normalized_plans = _default_plans()

    current_state = load_plan_catalog(reload=True)
    current_updated_at = current_state.get("updated_at") if isinstance(current_state, dict) else None
    if expected_updated_at is not None and current_updated_at != expected_updated_at:
        raise PlanCatalogConflictError()

    payload = {
        "plans": normalized_plans,
        "updated_at": datetime.now(timezone.utc).isoformat(),
        "updated_by": _optional_text(updated_by),
        "note": _optional_text(note),
    }
    _PLAN_CATALOG_STORE.save(payload)
    logger.info("Plan catalog updated by %s (%d plans).", payload["updated_by"] or "unknown", len(normalized_plans))
    return deepcopy(payload)


def list_plans(*, include_disabled: bool = False) -> List[Dict[str, Any]]:
    plans = load_plan_catalog().get("plans", [])
    return [plan for plan in plans if include_disabled or plan.get("enabled")]


def get_plan(plan_type: PlanType | str) -> Optional[Dict[str, Any]]:
    value = plan_type.value if isinstance(plan_type, PlanType) else str(plan_type or "").strip().lower()
    for plan in load_plan_catalog().get("plans", []):
        if plan["planType"] == value:
            return plan
    return None


def plan_for_button_id(button_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not button_id:
        return None
    for plan in load_plan_catalog().get("plans", []):
        if plan.get("buttonId") == button_id:
            return plan
    return None


def plan_for_provider_plan_id(provider_plan_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not provider_plan_id:
        return None
    for plan in load_plan_catalog().get("plans", []):
        if plan.get("providerPlanId") == provider_plan_id:
            return plan
    return None


def validate_plan_catalog(required: Sequence[PlanType | str] = (PlanType.MONTHLY, PlanType.YEARLY)) -> None:
    """Fail fast when a plan the checkout flow references is missing or has no button id."""

    problems: List[str] = []
    for entry in required:
        value = entry.value if isinstance(entry, PlanType) else str(entry)
        if value not in {plan_type.value for plan_type in SUPPORTED_PLAN_TYPES}:
            problems.append(f"{value}: unsupported plan type")
            continue
        plan = get_plan(value)
        if plan is None:
            problems.append(f"{value}: missing from catalog")
        elif not plan.get("buttonId"):
            problems.append(f"{value}: no checkout button id")
    if problems:
        raise PlanCatalogError("Plan catalog is inconsistent: " + "; ".join(problems))


def reset_catalog_cache() -> None:  # pragma: no cover - test helper
    _PLAN_CATALOG_STORE.clear_cache()


__all__ = [
    "DEFAULT_CURRENCY",
    "MONTHLY_BUTTON_ID",
    "PlanCatalogConflictError",
    "YEARLY_BUTTON_ID",
    "get_plan",
    "list_plans",
    "load_plan_catalog",
    "plan_for_button_id",
    "plan_for_provider_plan_id",
    "reset_catalog_cache",
    "update_plan_catalog",
    "validate_plan_catalog",
]
