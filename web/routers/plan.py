"""Plan catalog routes (prices, billing periods, PayPal button ids)."""

from __future__ import annotations

import logging
from typing import Tuple, Type

from fastapi import APIRouter, Depends, HTTPException, status

from schemas.api.plan import PlanCatalogResponse, PlanCatalogUpdateRequest
from services.plan_catalog_service import PlanCatalogConflictError, load_plan_catalog, update_plan_catalog
from services.plan_serializers import serialize_plan_catalog
from web.deps_admin import AdminSession, require_admin_session_for_plan

router = APIRouter(prefix="/plan", tags=["Plan"])

logger = logging.getLogger(__name__)

# Checked in order; the conflict error is a RuntimeError too.
_UPDATE_ERRORS: Tuple[Tuple[Type[Exception], int, str], ...] = (
    (PlanCatalogConflictError, status.HTTP_409_CONFLICT, "plan.catalog_conflict"),
    (ValueError, status.HTTP_400_BAD_REQUEST, "plan.invalid_payload"),
)


def _update_error(exc: Exception) -> HTTPException:
    for error_type, status_code, code in _UPDATE_ERRORS:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail={"code": code, "message": str(exc)})
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "plan.persist_failed", "message": str(exc)},
    )


@router.get("/catalog", response_model=PlanCatalogResponse, summary="Return the plan catalog.")
def read_plan_catalog() -> PlanCatalogResponse:
    return serialize_plan_catalog(load_plan_catalog())


@router.put("/catalog", response_model=PlanCatalogResponse, summary="Replace the plan catalog (admin).")
def replace_plan_catalog(
    payload: PlanCatalogUpdateRequest,
    session: AdminSession = Depends(require_admin_session_for_plan),
) -> PlanCatalogResponse:
    try:
        stored = update_plan_catalog(
            [entry.model_dump() for entry in payload.plans],
            updated_by=payload.updatedBy or session.actor,
            note=payload.note,
            expected_updated_at=payload.expectedUpdatedAt,
        )
    except (ValueError, RuntimeError) as exc:
        logger.warning("Plan catalog update by %s rejected: %s", session.actor, exc)
        raise _update_error(exc) from exc
    return serialize_plan_catalog(stored)


__all__ = ["router"]
