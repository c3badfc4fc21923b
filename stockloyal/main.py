"""
StockLoyal webhook receiver.
Main FastAPI application entry point.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from stockloyal.config import get_settings
from stockloyal.api.router import api_router
from stockloyal.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("stockloyal")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


def _cors_origins(allowed_origins: str) -> list[str]:
    origins = [o.strip() for o in allowed_origins.split(",") if o.strip()]
    return origins or ["*"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("StockLoyal receiver starting up (env=%s)", settings.app_env)

    # Security warnings
    if not settings.webhook_secret:
        logger.warning(
            "STOCKLOYAL_WEBHOOK_SECRET not set - every webhook will be rejected as unauthorized."
        )
    if not settings.database_url:
        logger.warning("DATABASE_URL not set - webhook audit rows will not be stored.")

    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    from stockloyal.workers.retention_sweeper import run_retention_sweeper
    worker_tasks: list[asyncio.Task] = [asyncio.create_task(run_retention_sweeper(settings))]
    logger.info("Retention sweeper started")

    yield

    logger.info("StockLoyal receiver shutting down - stopping %d workers...", len(worker_tasks))
    for task in worker_tasks:
        task.cancel()
    await asyncio.gather(*worker_tasks, return_exceptions=True)

    from stockloyal.database import dispose_engine
    await dispose_engine()
    logger.info("StockLoyal receiver shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="StockLoyal Webhook Receiver",
        description="Inbound webhook receiver for the StockLoyal points-to-stock platform",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings.allowed_origins),
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=[
            "Authorization", "Content-Type", "X-API-Key", "X-Signature",
            "X-Request-Id", "X-Event-Type", "X-Correlation-ID",
        ],
    )

    # Correlation ID middleware (must be added AFTER CORS so it runs on every request)
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(api_router)

    return application


app = create_app()
