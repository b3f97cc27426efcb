"""PayPal REST API helper (OAuth token, order lookup, webhook verification)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from core.env import env_str
from core.env_utils import PAYPAL_REQUIRED_ENV, missing_env_vars

logger = logging.getLogger(__name__)

DEFAULT_PAYPAL_API_BASE_URL = "https://api-m.sandbox.paypal.com"
# APPROVED only means the buyer consented; funds move at COMPLETED.
CAPTURED_ORDER_STATUSES = frozenset({"COMPLETED"})

WEBHOOK_SIGNATURE_HEADERS = {
    "auth_algo": "paypal-auth-algo",
    "cert_url": "paypal-cert-url",
    "transmission_id": "paypal-transmission-id",
    "transmission_sig": "paypal-transmission-sig",
    "transmission_time": "paypal-transmission-time",
}


class PayPalError(RuntimeError):
    """Raised when the PayPal API returns an error response."""

    def __init__(self, status_code: int, message: str, *, payload: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload or {}


@dataclass(slots=True)
class PayPalClient:
    """HTTP client wrapper for the PayPal REST API."""

    client_id: str
    secret_key: str
    base_url: str = DEFAULT_PAYPAL_API_BASE_URL
    webhook_id: Optional[str] = None

    def _url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    @staticmethod
    def _decode_error(response: httpx.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            payload = {"body": response.text}
        return payload if isinstance(payload, dict) else {"body": payload}

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        response = await client.post(
            self._url("/v1/oauth2/token"),
            auth=(self.client_id, self.secret_key),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            payload = self._decode_error(response)
            logger.warning("PayPal OAuth token request failed %s: %s", response.status_code, payload)
            raise PayPalError(response.status_code, "PayPal authentication failed.", payload=payload)
        token = response.json().get("access_token")
        if not token:
            raise PayPalError(response.status_code, "PayPal did not return an access token.")
        return str(token)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        timeout: float = 10.0,
    ) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=timeout) as client:
            token = await self._access_token(client)
            headers = {
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json",
            }
            response = await client.request(method, self._url(path), headers=headers, json=json)
        if response.status_code >= 400:
            payload = self._decode_error(response)
            message = payload.get("message") or payload.get("error_description") or "PayPal request failed."
            logger.warning("PayPal API error %s: %s", response.status_code, payload)
            raise PayPalError(response.status_code, message, payload=payload)
        return response.json()

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        """Fetch a checkout order created by the hosted button."""
        logger.info("Fetching PayPal order orderId=%s", order_id)
        return await self._request("GET", f"/v2/checkout/orders/{order_id}")

    async def verify_webhook_signature(self, headers: Mapping[str, str], event: Dict[str, Any]) -> bool:
        """Ask PayPal to verify the transmission signature of a webhook delivery."""
        if not self.webhook_id:
            raise RuntimeError("PAYPAL_WEBHOOK_ID is not configured.")
        lowered = {key.lower(): value for key, value in headers.items()}
        body: Dict[str, Any] = {}
        for field, header in WEBHOOK_SIGNATURE_HEADERS.items():
            value = lowered.get(header)
            if not value:
                logger.warning("PayPal webhook missing header %s", header)
                return False
            body[field] = value
        body["webhook_id"] = self.webhook_id
        body["webhook_event"] = event
        result = await self._request("POST", "/v1/notifications/verify-webhook-signature", json=body)
        return str(result.get("verification_status") or "").upper() == "SUCCESS"


def order_is_captured(order: Mapping[str, Any]) -> bool:
    return str(order.get("status") or "").upper() in CAPTURED_ORDER_STATUSES


def order_amount(order: Mapping[str, Any]) -> Optional[Tuple[Decimal, str]]:
    """Total of the order's purchase units as ``(amount, currency)``.

    Returns ``None`` when no unit carries an amount or the units disagree on
    currency.
    """
    total = Decimal("0")
    currency: Optional[str] = None
    units = order.get("purchase_units")
    if not isinstance(units, list):
        return None
    for unit in units:
        amount = unit.get("amount") if isinstance(unit, Mapping) else None
        if not isinstance(amount, Mapping):
            continue
        code = str(amount.get("currency_code") or "").upper()
        try:
            value = Decimal(str(amount.get("value")))
        except InvalidOperation:
            return None
        if not code or not value.is_finite() or (currency and code != currency):
            return None
        currency = code
        total += value
    if currency is None:
        return None
    return total, currency


def get_paypal_client() -> PayPalClient:
    missing = missing_env_vars(PAYPAL_REQUIRED_ENV)
    if missing:
        raise RuntimeError(f"PayPal API credentials are not configured. Missing: {', '.join(missing)}.")
    client_id = env_str("PAYPAL_CLIENT_ID") or ""
    secret_key = env_str("PAYPAL_SECRET_KEY") or ""
    base_url = env_str("PAYPAL_BASE_URL", DEFAULT_PAYPAL_API_BASE_URL) or DEFAULT_PAYPAL_API_BASE_URL
    return PayPalClient(
        client_id=client_id,
        secret_key=secret_key,
        base_url=base_url,
        webhook_id=env_str("PAYPAL_WEBHOOK_ID"),
    )


def get_paypal_public_config() -> dict[str, Optional[str]]:
    """Expose client-safe configuration values for the PayPal hosted buttons."""
    client_id = env_str("PAYPAL_CLIENT_ID")
    if not client_id:
        raise RuntimeError("PayPal client id is not configured.")
    return {
        "clientId": client_id,
        "currency": env_str("PAYPAL_CURRENCY", "USD"),
    }


__all__ = [
    "CAPTURED_ORDER_STATUSES",
    "PayPalClient",
    "PayPalError",
    "get_paypal_client",
    "get_paypal_public_config",
    "order_amount",
    "order_is_captured",
]
