from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.router import router as api_router
from core.config import config
from core.db import engine
from core.exceptions.base import CustomException
from core.logging import get_logger, setup_logging

API_VERSION = "0.1.0"

setup_logging()
logger = get_logger(__name__)


def integration_status() -> dict:
    """Which outbound integrations this process will talk to."""
    return {
        "stripe": bool(config.STRIPE_SECRET_KEY),
        "stripe_webhooks": bool(config.STRIPE_WEBHOOK_SECRET),
        "chat": bool(config.CHAT_SERVICE_URL),
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {config.APP_NAME} ({config.APP_ENV})")
    for name, enabled in integration_status().items():
        if not enabled:
            logger.warning(f"Integration '{name}' is not configured")
    yield
    await engine.dispose()
    logger.info(f"{config.APP_NAME} stopped, database connections closed")


def create_app() -> FastAPI:
    """Build the enrollment API application."""
    app = FastAPI(
        title="Coaching Enrollment Backend",
        description="Program enrollment, squad allocation and coaching provisioning API",
        version=API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CustomException)
    async def custom_exception_handler(
        request: Request, exc: CustomException
    ) -> JSONResponse:
        # 5xx domain errors (payment provider, allocation contention) are worth more noise
        log = logger.error if exc.code >= 500 else logger.warning
        log(f"{request.method} {request.url.path} -> {exc.code} {exc.error_code}: {exc.message}")
        return JSONResponse(status_code=exc.code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={
                "error_code": "INTERNAL_ERROR",
                "message": "An internal server error occurred",
                "detail": str(exc) if config.DEBUG else None,
            },
        )

    @app.get("/health")
    async def health_check() -> dict:
        return {
            "status": "healthy",
            "version": API_VERSION,
            "app_name": config.APP_NAME,
            "integrations": integration_status(),
        }

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()
