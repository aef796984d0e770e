"""
FastAPI application entry point.

This module creates and configures the FastAPI application using an
application factory (create_app), so tests can build apps with their
own settings.

For local development:
    uvicorn upload_router.main:app --reload

For production:
    gunicorn upload_router.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .api.routes import health, uploads
from .config.settings import Settings, get_settings
from .core.headers import cors_headers

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Settings to build the app with. Defaults to the cached
            environment settings.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    # Fails fast on inconsistent routing options (e.g. cookie auth with '*')
    options = settings.router_options()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Upload router starting",
            extra={
                "version": settings.api_version,
                "auth_mode": settings.auth_mode,
                "id_extraction": settings.id_extraction,
                "mock_mode": {"r2": settings.r2_mock_mode},
            }
        )

        missing_fields = settings.validate_required_fields()
        if missing_fields:
            logger.error(
                "Missing required configuration",
                extra={"missing_fields": missing_fields}
            )

        yield

        logger.info("Upload router shutting down")

    # The whole path space belongs to object keys, so no docs routes
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    # Route dependencies see the same settings the app was built with
    app.dependency_overrides[get_settings] = lambda: settings

    # Operational routes first; the upload route matches every path
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        uploads.router,
        tags=["Uploads"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """
        Catch-all exception handler.

        Logs the full error server-side and returns a generic message,
        with CORS headers so the browser can still read the failure.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error."},
            headers=cors_headers(options),
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "upload_router.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
