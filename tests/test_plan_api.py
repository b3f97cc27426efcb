from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from web.middleware.auth_context import auth_context_middleware
from web.routers import plan as plan_router


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch) -> TestClient:
    monkeypatch.setenv("ADMIN_API_TOKEN", "plan-admin")
    monkeypatch.setenv("ADMIN_API_ACTOR", "catalog-ops")
    monkeypatch.delenv("ADMIN_API_TOKENS", raising=False)
    app = FastAPI()
    app.middleware("http")(auth_context_middleware)
    app.include_router(plan_router.router, prefix="/api/v1")
    return TestClient(app)


def _entry(plan_type: str, button_id: str, amount: float) -> dict:
    return {
        "planType": plan_type,
        "displayName": plan_type.title(),
        "price": {"amount": amount, "currency": "usd", "interval": plan_type},
        "buttonId": button_id,
    }


def test_get_catalog_returns_defaults(client: TestClient) -> None:
    response = client.get("/api/v1/plan/catalog")
    assert response.status_code == 200
    payload = response.json()
    plan_types = [plan["planType"] for plan in payload["plans"]]
    assert plan_types == ["monthly", "yearly", "test"]
    assert payload["plans"][0]["billingPeriod"] == {"unit": "month", "count": 1}
    assert payload["updatedAt"] is None


def test_put_catalog_requires_admin(client: TestClient) -> None:
    response = client.put("/api/v1/plan/catalog", json={"plans": [_entry("monthly", "B1", 5)]})
    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "plan.unauthorized"


def test_put_catalog_updates_and_detects_conflicts(client: TestClient) -> None:
    headers = {"Authorization": "Bearer plan-admin"}
    first = client.put(
        "/api/v1/plan/catalog",
        json={"plans": [_entry("monthly", "B-M", 11.0), _entry("yearly", "B-Y", 110.0)], "note": "raise"},
        headers=headers,
    )
    assert first.status_code == 200
    payload = first.json()
    assert payload["updatedBy"] == "catalog-ops"
    assert payload["plans"][0]["price"]["currency"] == "USD"
    assert payload["plans"][1]["buttonId"] == "B-Y"

    stale = client.put(
        "/api/v1/plan/catalog",
        json={"plans": [_entry("monthly", "B-M2", 12.0)], "expectedUpdatedAt": "2000-01-01T00:00:00+00:00"},
        headers=headers,
    )
    assert stale.status_code == 409
    assert stale.json()["detail"]["code"] == "plan.catalog_conflict"

    fresh = client.put(
        "/api/v1/plan/catalog",
        json={"plans": [_entry("monthly", "B-M2", 12.0)], "expectedUpdatedAt": payload["updatedAt"]},
        headers=headers,
    )
    assert fresh.status_code == 200
    assert client.get("/api/v1/plan/catalog").json()["plans"][0]["buttonId"] == "B-M2"


def test_put_catalog_validates_plan_type(client: TestClient) -> None:
    response = client.put(
        "/api/v1/plan/catalog",
        json={"plans": [_entry("weekly", "B-W", 1.0)]},
        headers={"X-Admin-Token": "plan-admin"},
    )
    assert response.status_code == 422
