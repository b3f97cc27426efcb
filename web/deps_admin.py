"""Admin token dependencies for operational routes (sweeps, simulation, catalog edits)."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request, status

from core.env import env_csv, env_str
from core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ADMIN_ACTOR = "admin"


@dataclass(frozen=True)
class AdminSession:
    """Actor resolved from a valid admin token."""

    actor: str
    issued_at: datetime
    token_hint: Optional[str] = None


def _denied(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail={"code": code, "message": message})


def _hint(token: str) -> str:
    """Masked form of ``token`` safe for logs."""
    if len(token) <= 4:
        return "*" * len(token)
    return token[:2] + "***" + token[-2:]


def _split_entry(entry: str, fallback_actor: str) -> Tuple[str, str]:
    for separator in (":", "="):
        if separator in entry:
            actor, token = entry.split(separator, 1)
            return (actor.strip() or fallback_actor), token.strip()
    return fallback_actor, entry.strip()


def load_admin_token_map() -> Dict[str, str]:
    """token -> actor, from ``ADMIN_API_TOKENS`` (``actor:token`` pairs) plus ``ADMIN_API_TOKEN``."""
    fallback_actor = env_str("ADMIN_API_ACTOR", DEFAULT_ADMIN_ACTOR) or DEFAULT_ADMIN_ACTOR
    tokens: Dict[str, str] = {}
    for entry in env_csv("ADMIN_API_TOKENS"):
        actor, token = _split_entry(entry, fallback_actor)
        if token:
            tokens[token] = actor
    single = env_str("ADMIN_API_TOKEN")
    if single:
        tokens[single] = fallback_actor
    return tokens


def _presented_token(request: Request) -> Optional[str]:
    authorization = (request.headers.get("authorization") or "").strip()
    scheme, _, credential = authorization.partition(" ")
    if scheme.lower() == "bearer" and credential.strip():
        return credential.strip()
    header_token = (request.headers.get("x-admin-token") or "").strip()
    return header_token or None


def _actor_for(tokens: Dict[str, str], presented: str) -> Optional[str]:
    matched: Optional[str] = None
    for token, actor in tokens.items():
        if hmac.compare_digest(token.encode("utf-8"), presented.encode("utf-8")):
            matched = actor
    return matched


def require_admin_session(request: Request, *, error_code: str = "admin.unauthorized") -> AdminSession:
    """Accept ``Authorization: Bearer <token>`` or ``X-Admin-Token: <token>``."""

    tokens = load_admin_token_map()
    if not tokens:
        logger.error("No admin tokens configured (ADMIN_API_TOKEN/ADMIN_API_TOKENS); refusing admin request.")
        raise _denied(error_code, "Admin access is not configured.")

    presented = _presented_token(request)
    if presented is None:
        logger.warning("Admin request to %s without credentials.", request.url.path)
        raise _denied(error_code, "Admin credentials are required.")

    actor = _actor_for(tokens, presented)
    if actor is None:
        logger.warning("Admin request to %s with unknown token %s.", request.url.path, _hint(presented))
        raise _denied(error_code, "Admin token is invalid.")

    session = AdminSession(actor=actor, issued_at=datetime.now(timezone.utc), token_hint=_hint(presented))
    request.state.admin_session = session
    return session


def require_admin_session_for_plan(request: Request) -> AdminSession:
    return require_admin_session(request, error_code="plan.unauthorized")


__all__ = ["AdminSession", "load_admin_token_map", "require_admin_session", "require_admin_session_for_plan"]
