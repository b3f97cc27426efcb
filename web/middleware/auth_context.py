"""Attach authenticated user information from Supabase-issued bearer tokens."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Request, status
from fastapi.responses import JSONResponse

from core.env import env_str
from core.logging import get_logger

logger = get_logger(__name__)

_BYPASS_PREFIXES = (
    "/api/v1/admin",
    "/api/v1/payments/paypal/webhook",
    "/api/v1/health",
    "/api/v1/plan",
    "/docs",
    "/openapi",
)

_DEFAULT_AUDIENCE = "authenticated"


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    email: Optional[str]
    role: str


class AccessTokenError(RuntimeError):
    """Raised when a bearer token cannot be decoded."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


def _should_bypass(path: str) -> bool:
    path = path or ""
    return any(path.startswith(prefix) for prefix in _BYPASS_PREFIXES)


def _extract_bearer(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    value = header_value.strip()
    if not value:
        return None
    if value.lower().startswith("bearer "):
        token = value[7:].strip()
        return token or None
    return None


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode a Supabase access token (HS256, shared JWT secret)."""

    secret = env_str("SUPABASE_JWT_SECRET")
    if not secret:
        raise AccessTokenError("auth.not_configured", "SUPABASE_JWT_SECRET is not configured.")
    audience = env_str("SUPABASE_JWT_AUDIENCE", _DEFAULT_AUDIENCE) or _DEFAULT_AUDIENCE
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AccessTokenError("auth.token_expired", "Your session has expired. Please sign in again.") from exc
    except jwt.InvalidTokenError as exc:
        raise AccessTokenError("auth.token_invalid", "Invalid access token.") from exc


async def auth_context_middleware(request: Request, call_next):
    path = request.url.path if request.url else ""
    if request.method == "OPTIONS" or _should_bypass(path):
        return await call_next(request)

    token = _extract_bearer(request.headers.get("authorization"))
    if not token:
        return await call_next(request)

    try:
        payload = decode_access_token(token)
    except AccessTokenError as exc:
        if exc.code == "auth.not_configured":
            logger.error("Bearer token received but %s", exc)
            status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        else:
            status_code = status.HTTP_401_UNAUTHORIZED
        return JSONResponse(status_code=status_code, content={"detail": {"code": exc.code, "message": str(exc)}})

    request.state.user = AuthenticatedUser(
        id=str(payload["sub"]),
        email=payload.get("email"),
        role=str(payload.get("role") or "authenticated"),
    )
    request.state.user_claims = payload
    return await call_next(request)


__all__ = ["AccessTokenError", "AuthenticatedUser", "auth_context_middleware", "decode_access_token"]
