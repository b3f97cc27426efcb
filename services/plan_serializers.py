"""Shared helpers for serialising plan catalog payloads."""

from __future__ import annotations

from typing import Any, Mapping

from schemas.api.plan import PlanCatalogEntrySchema, PlanCatalogResponse


def serialize_plan_catalog(payload: Mapping[str, Any]) -> PlanCatalogResponse:
    """Normalise plan catalog dictionaries for responses."""

    plans_payload = payload.get("plans") or []
    plans = [PlanCatalogEntrySchema(**plan) for plan in plans_payload]
    return PlanCatalogResponse(
        plans=plans,
        updatedAt=payload.get("updated_at"),
        updatedBy=payload.get("updated_by"),
        note=payload.get("note"),
    )


__all__ = ["serialize_plan_catalog"]
