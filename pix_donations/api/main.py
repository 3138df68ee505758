"""
FastAPI application for Pix donations.

``create_app`` wires one Notification Hub and one gateway client per
process onto ``app.state``; routes reach them through dependencies.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pix_donations import __version__
from pix_donations.config import Settings, get_settings
from pix_donations.core.notifications import NotificationHub
from pix_donations.database.connection import close_db, init_db
from pix_donations.errors import ExternalError
from pix_donations.integrations.pix_client import PixClient
from pix_donations.monitoring.logging import setup_logging

from .routes import donation_router, monitoring_router, sse_router, webhook_router

logger = structlog.get_logger(__name__)

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create tables and register the webhook on startup; release clients on shutdown."""
    settings: Settings = app.state.settings
    pix_client: PixClient = app.state.pix_client

    logger.info("application_startup", env=settings.app_env, sandbox=settings.pix_sandbox)
    await init_db()

    if settings.pix_webhook_url:
        try:
            await pix_client.register_webhook(settings.pix_webhook_url)
        except ExternalError as e:
            # Charges still work; payments are confirmed once the webhook is registered.
            logger.error("pix_webhook_registration_failed", error=str(e))

    try:
        yield
    finally:
        logger.info("application_shutdown")
        await pix_client.close()
        await close_db()


async def request_context(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Tag the request with an id, time it, and harden the response headers."""
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    structlog.contextvars.bind_contextvars(
        request_id=request_id, method=request.method, path=request.url.path
    )
    logger.info("request_started", client_host=request.client.host if request.client else None)
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("request_failed", error=str(e), error_type=type(e).__name__)
        raise
    else:
        response.headers["X-Request-ID"] = request_id
        for header, value in SECURITY_HEADERS.items():
            response.headers.setdefault(header, value)
        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        return response
    finally:
        structlog.contextvars.clear_contextvars()


async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "An unexpected error occurred.", "code": "InternalError"},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application and its per-process collaborators."""
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Pix Donations",
        description=(
            "Donation charges paid over Pix, reconciled from gateway webhooks "
            "and confirmed live over Server-Sent Events."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
    )

    app.state.settings = settings
    app.state.notification_hub = NotificationHub()
    app.state.pix_client = PixClient(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    app.middleware("http")(request_context)
    app.add_exception_handler(Exception, unhandled_error)

    for router in (donation_router, webhook_router, sse_router, monitoring_router):
        app.include_router(router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "sandbox": settings.pix_sandbox,
        }

    return app


app = create_app()


def run() -> None:
    """Serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "pix_donations.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
