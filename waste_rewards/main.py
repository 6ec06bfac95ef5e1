import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

# --- FASTAPI IMPORTS ---
import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# --- LOCAL MODULES ---
from waste_rewards.core.config import Settings
from waste_rewards.core.database import build_services
from waste_rewards.core.errors import AuthenticationError, WasteRewardsError
from waste_rewards.models.notification_model import Notification, NotificationType
from waste_rewards.services.advisory_service import AdvisoryClient
from waste_rewards.services.document_store import DocumentStore
from waste_rewards.services.notification_service import notification_for_error
from waste_rewards.utils.timing_middleware import TimingMiddleware

# --- ROUTES ---
from waste_rewards.routes.ai import router as ai_router
from waste_rewards.routes.auth import router as auth_router
from waste_rewards.routes.profiles import router as profiles_router
from waste_rewards.routes.reports import router as reports_router

# --- LOGGING SETUP ---
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


# --- LIFESPAN CONTEXT MANAGER ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    services = app.state.services
    logger.info(f"🚀 Starting Waste Rewards API ({services.settings.describe()})")
    await services.open()
    logger.info("✅ All services initialized - Server ready!")

    yield

    logger.info("🔄 Shutting down...")
    await services.close()
    logger.info("✅ All services closed gracefully")


# --- ERROR HANDLERS ---
async def waste_rewards_error_handler(request: Request, exc: WasteRewardsError):
    note = getattr(exc, "notification", None) or notification_for_error(exc)
    if exc.http_status >= 500:
        logger.error(f"💥 {request.method} {request.url.path}: {exc.code} {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code, "notification": note.model_dump(mode="json")},
        headers=headers,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    fields = ", ".join(".".join(str(p) for p in (err["loc"][1:] or err["loc"])) for err in exc.errors())
    note = Notification(title="Missing", message=f"Check the required fields: {fields}.", type=NotificationType.ERROR)
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "code": "VALIDATION_FAILED", "notification": note.model_dump(mode="json")},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"💥 Error causing 500: {request.url.path} - {exc}", exc_info=exc)
    note = notification_for_error(exc, "Request Failed")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": "INTERNAL_ERROR", "notification": note.model_dump(mode="json")},
    )


# --- APP INITIALIZATION ---
def create_app(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
    advisory: Optional[AdvisoryClient] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.getLogger().setLevel(settings.log_level)

    app = FastAPI(title="Waste Rewards API", version="1.0.0", lifespan=lifespan)
    app.state.services = build_services(settings, store=store, advisory=advisory)

    # --- MIDDLEWARE ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(TimingMiddleware, slow_ms=settings.slow_request_ms)

    app.add_exception_handler(WasteRewardsError, waste_rewards_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # --- ROUTER MOUNTING ---
    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(profiles_router, prefix="/api/profiles", tags=["Profiles"])
    app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])
    app.include_router(ai_router, prefix="/api", tags=["AI"])

    @app.get("/")
    async def root():
        return {"service": "waste-rewards", "status": "running"}

    @app.get("/api/health")
    async def health():
        report = await app.state.services.health()
        healthy = report["store"].get("status") == "ok"
        return JSONResponse(status_code=200 if healthy else 503, content={"healthy": healthy, **report})

    return app


app = create_app()


def run() -> None:
    uvicorn.run(
        "waste_rewards.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=os.getenv("RELOAD", "false").lower() == "true",
    )


if __name__ == "__main__":
    run()
