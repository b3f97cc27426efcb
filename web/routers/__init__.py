"""FastAPI routers mounted under ``/api/v1``."""

from . import admin, health, payments, plan, subscription

API_PREFIX = "/api/v1"

ROUTERS = (
    subscription.router,
    payments.router,
    plan.router,
    admin.router,
    health.router,
)

__all__ = ["API_PREFIX", "ROUTERS", "admin", "health", "payments", "plan", "subscription"]
