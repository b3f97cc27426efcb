from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.env import env_bool, env_csv
from core.env_utils import load_dotenv_if_available
from core.logging import get_logger, setup_logging
from core.plan_constants import PlanType
from services.plan_catalog_service import validate_plan_catalog
from web import routers
from web.middleware.auth_context import auth_context_middleware

load_dotenv_if_available()
setup_logging()
logger = get_logger(__name__)

app = FastAPI(
    title="Scheduler Billing API",
    description="Trial, subscription and PayPal checkout lifecycle for the scheduling app.",
    version="0.1.0",
)

origins = env_csv("CORS_ALLOWED_ORIGINS") or [
    "http://localhost:5173",
    "http://localhost:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def attach_auth_context(request: Request, call_next):
    """Decode the Supabase bearer token into request.state.user."""
    return await auth_context_middleware(request, call_next)


@app.get("/", summary="Health Check", tags=["Default"])
def health_check():
    """Basic liveness check."""
    return {"status": "ok", "message": "Scheduler Billing API is running."}


@app.get("/healthz", include_in_schema=False)
def cloud_run_health_check():
    """Lightweight probe that also pings the database."""
    database = routers.health.database_report()
    status_code = status.HTTP_200_OK if database["ok"] else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(
        status_code=status_code,
        content={"status": "ok" if database["ok"] else "unhealthy", "database": database},
    )


for router in routers.ROUTERS:
    app.include_router(router, prefix=routers.API_PREFIX)


@app.on_event("startup")
async def check_plan_catalog() -> None:
    """Refuse to start with a catalog that lacks the plans checkout depends on."""
    required = [PlanType.MONTHLY, PlanType.YEARLY]
    if env_bool("PAYMENTS_ENABLE_TEST_PLAN", False):
        required.append(PlanType.TEST)
    validate_plan_catalog(required)
    logger.info("Plan catalog validated for %s", ", ".join(plan.value for plan in required))
