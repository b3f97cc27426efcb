"""Bearer-authenticated calls to Supabase edge functions (administrative repair)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from core.env import env_str
from core.env_utils import SUPABASE_REQUIRED_ENV, require_env_vars

logger = logging.getLogger(__name__)

REPAIR_FUNCTION = "repair-subscriptions"


class EdgeFunctionError(RuntimeError):
    """Raised when an edge function call fails or returns an error status."""

    def __init__(self, function: str, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.function = function
        self.status_code = status_code


@dataclass(slots=True)
class EdgeFunctionsClient:
    base_url: str
    service_key: str
    timeout: float = 15.0

    async def invoke(self, function: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}/functions/v1/{function}"
        headers = {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, headers=headers, json=payload or {})
        except httpx.HTTPError as exc:
            logger.error("Edge function %s request failed: %s", function, exc)
            raise EdgeFunctionError(function, f"Edge function {function} is unreachable.") from exc

        try:
            body = response.json()
        except ValueError:
            body = {"body": response.text}
        if response.status_code >= 400:
            message = (body.get("error") or body.get("message")) if isinstance(body, dict) else None
            logger.warning("Edge function %s returned %s: %s", function, response.status_code, body)
            raise EdgeFunctionError(
                function,
                message or f"Edge function {function} failed.",
                status_code=response.status_code,
            )
        return body if isinstance(body, dict) else {"result": body}

    async def repair_subscription(self, user_id: str) -> Dict[str, Any]:
        logger.info("Requesting subscription repair for user=%s", user_id)
        return await self.invoke(REPAIR_FUNCTION, {"userId": user_id})


def get_edge_functions_client() -> EdgeFunctionsClient:
    require_env_vars(SUPABASE_REQUIRED_ENV, context="edge-functions")
    return EdgeFunctionsClient(
        base_url=env_str("SUPABASE_URL") or "",
        service_key=env_str("SUPABASE_SERVICE_ROLE_KEY") or "",
    )


__all__ = ["EdgeFunctionError", "EdgeFunctionsClient", "REPAIR_FUNCTION", "get_edge_functions_client"]
