from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from services.edge_functions_client import EdgeFunctionError, EdgeFunctionsClient, get_edge_functions_client
from services.payments import (
    PayPalClient,
    PayPalError,
    get_paypal_client,
    order_amount,
    order_is_captured,
)

_REAL_ASYNC_CLIENT = httpx.AsyncClient

SIGNATURE_HEADERS = {
    "PayPal-Auth-Algo": "SHA256withRSA",
    "PayPal-Cert-Url": "https://api.paypal.com/cert",
    "PayPal-Transmission-Id": "tx-1",
    "PayPal-Transmission-Sig": "sig",
    "PayPal-Transmission-Time": "2024-07-01T00:00:00Z",
}


def _mock_transport(monkeypatch: pytest.MonkeyPatch, handler) -> list[httpx.Request]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    transport = httpx.MockTransport(_record)
    monkeypatch.setattr(httpx, "AsyncClient", lambda **kwargs: _REAL_ASYNC_CLIENT(transport=transport, **kwargs))
    return seen


def _paypal_handler(verification_status: str = "SUCCESS"):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "token-123"})
        if request.url.path.startswith("/v2/checkout/orders/"):
            return httpx.Response(200, json={"id": request.url.path.rsplit("/", 1)[-1], "status": "COMPLETED"})
        if request.url.path == "/v1/notifications/verify-webhook-signature":
            return httpx.Response(200, json={"verification_status": verification_status})
        return httpx.Response(404, json={"message": "not found"})

    return handler


def test_get_order_uses_bearer_token(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _mock_transport(monkeypatch, _paypal_handler())
    client = PayPalClient(client_id="id", secret_key="secret", base_url="https://paypal.test")

    order = asyncio.run(client.get_order("ORDER-1"))

    assert order == {"id": "ORDER-1", "status": "COMPLETED"}
    assert [request.url.path for request in seen] == ["/v1/oauth2/token", "/v2/checkout/orders/ORDER-1"]
    assert seen[1].headers["Authorization"] == "Bearer token-123"


def test_api_errors_raise_paypal_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_transport(monkeypatch, lambda request: httpx.Response(401, json={"error_description": "bad client"}))
    client = PayPalClient(client_id="id", secret_key="wrong", base_url="https://paypal.test")

    with pytest.raises(PayPalError) as excinfo:
        asyncio.run(client.get_order("ORDER-1"))
    assert excinfo.value.status_code == 401


@pytest.mark.parametrize(("status", "expected"), [("SUCCESS", True), ("FAILURE", False)])
def test_verify_webhook_signature(monkeypatch: pytest.MonkeyPatch, status: str, expected: bool) -> None:
    seen = _mock_transport(monkeypatch, _paypal_handler(status))
    client = PayPalClient(client_id="id", secret_key="secret", base_url="https://paypal.test", webhook_id="WH-ID")
    event = {"id": "WH-1"}

    assert asyncio.run(client.verify_webhook_signature(SIGNATURE_HEADERS, event)) is expected
    body = json.loads(seen[-1].content)
    assert body["webhook_id"] == "WH-ID"
    assert body["transmission_id"] == "tx-1"
    assert body["webhook_event"] == event


def test_verify_webhook_signature_without_headers_is_invalid(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _mock_transport(monkeypatch, _paypal_handler())
    client = PayPalClient(client_id="id", secret_key="secret", webhook_id="WH-ID")
    assert asyncio.run(client.verify_webhook_signature({}, {"id": "WH-1"})) is False
    assert seen == []


def test_verify_webhook_signature_requires_webhook_id() -> None:
    client = PayPalClient(client_id="id", secret_key="secret")
    with pytest.raises(RuntimeError):
        asyncio.run(client.verify_webhook_signature(SIGNATURE_HEADERS, {"id": "WH-1"}))


def test_only_completed_orders_count_as_captured() -> None:
    assert order_is_captured({"status": "COMPLETED"})
    assert order_is_captured({"status": "completed"})
    assert not order_is_captured({"status": "APPROVED"})
    assert not order_is_captured({"status": "CREATED"})
    assert not order_is_captured({})


def test_order_amount_totals_purchase_units() -> None:
    order = {
        "purchase_units": [
            {"amount": {"currency_code": "usd", "value": "90.00"}},
            {"amount": {"currency_code": "USD", "value": "9.99"}},
        ]
    }
    assert order_amount(order) == (Decimal("99.99"), "USD")


@pytest.mark.parametrize(
    "order",
    [
        {},
        {"purchase_units": []},
        {"purchase_units": [{"reference_id": "default"}]},
        {"purchase_units": [{"amount": {"currency_code": "USD", "value": "abc"}}]},
        {"purchase_units": [{"amount": {"value": "9.99"}}]},
        {
            "purchase_units": [
                {"amount": {"currency_code": "USD", "value": "9.99"}},
                {"amount": {"currency_code": "EUR", "value": "1.00"}},
            ]
        },
    ],
)
def test_order_amount_rejects_missing_or_mixed_amounts(order) -> None:
    assert order_amount(order) is None


def test_get_paypal_client_reads_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PAYPAL_SECRET_KEY", raising=False)
    monkeypatch.setenv("PAYPAL_CLIENT_ID", "id")
    with pytest.raises(RuntimeError) as excinfo:
        get_paypal_client()
    assert "PAYPAL_SECRET_KEY" in str(excinfo.value)

    monkeypatch.setenv("PAYPAL_SECRET_KEY", "secret")
    monkeypatch.setenv("PAYPAL_BASE_URL", "https://api-m.paypal.com")
    client = get_paypal_client()
    assert client.base_url == "https://api-m.paypal.com"


def test_edge_function_repair(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _mock_transport(monkeypatch, lambda request: httpx.Response(200, json={"repaired": 1}))
    client = EdgeFunctionsClient(base_url="https://project.supabase.co/", service_key="service-key")

    result = asyncio.run(client.repair_subscription("user-1"))

    assert result == {"repaired": 1}
    request = seen[0]
    assert str(request.url) == "https://project.supabase.co/functions/v1/repair-subscriptions"
    assert request.headers["Authorization"] == "Bearer service-key"
    assert request.headers["apikey"] == "service-key"
    assert json.loads(request.content) == {"userId": "user-1"}


def test_edge_function_error_status(monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_transport(monkeypatch, lambda request: httpx.Response(500, json={"error": "repair crashed"}))
    client = EdgeFunctionsClient(base_url="https://project.supabase.co", service_key="service-key")

    with pytest.raises(EdgeFunctionError) as excinfo:
        asyncio.run(client.repair_subscription("user-1"))
    assert excinfo.value.status_code == 500
    assert str(excinfo.value) == "repair crashed"


def test_edge_functions_client_requires_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "key")
    with pytest.raises(RuntimeError) as excinfo:
        get_edge_functions_client()
    assert "SUPABASE_URL" in str(excinfo.value)
