"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ecom_finance.api.errors import http_error
from ecom_finance.api.router import api_router
from ecom_finance.config import settings
from ecom_finance.models.database import close_db
from ecom_finance.observability.logging import setup_logging
from ecom_finance.pipeline.errors import PipelineError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    setup_logging()

    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,
        )

    logger.info("app_starting", version=settings.APP_VERSION, database_configured=bool(settings.DATABASE_URL))
    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="E-commerce Finance Back Office",
        description="Marketplace report import, reconciliation, CMV attribution and financial reports.",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.PROMETHEUS_ENABLED:
        from prometheus_client import make_asgi_app
        app.mount("/metrics", make_asgi_app())

    @app.exception_handler(PipelineError)
    async def pipeline_error_handler(request: Request, exc: PipelineError):
        # Routes translate the errors they expect; this catches the rest
        error = http_error(exc)
        logger.warning("pipeline_error_unhandled", path=request.url.path, error_code=exc.error_code)
        return JSONResponse(status_code=error.status_code, content={"detail": error.detail})

    app.include_router(api_router)
    return app


app = create_app()
