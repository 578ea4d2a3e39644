"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import APIRouter, FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from clinic_notifications.app.context import ServiceContext
from clinic_notifications.app.exception_handlers import configure_exception_handlers
from clinic_notifications.core.settings import get_app_settings, get_logging_settings
from clinic_notifications.features.notifications.router import router as notifications_router
from clinic_notifications.infra.logging import configure_logging, shutdown

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

logger = logging.getLogger(__name__)

metrics_router = APIRouter(tags=["observability"])


@metrics_router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type=CONTENT_TYPE_LATEST,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


def create_app(
    context_factory: Callable[[], ServiceContext] | None = None,
    *,
    configure_logs: bool = True,
) -> FastAPI:
    """Create the application.

    Args:
        context_factory: Builds the ServiceContext at startup. The host
            application passes one wired to its session directory and
            address book; the default uses settings only.
        configure_logs: Install the logging configuration on startup.
    """
    settings = get_app_settings()
    factory = context_factory or ServiceContext

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if configure_logs:
            configure_logging(get_logging_settings())

        context = factory()
        await context.start()
        app.state.context = context
        logger.info(
            "Application started",
            extra={"operation": "app.startup", "service": settings.service_name, "version": settings.version},
        )
        try:
            yield
        finally:
            app.state.context = None
            await context.stop()
            logger.info("Application stopped", extra={"operation": "app.shutdown"})
            if configure_logs:
                shutdown()

    app = FastAPI(
        title=settings.title,
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
    )
    configure_exception_handlers(app)

    app.include_router(notifications_router, prefix=settings.api_prefix)
    if settings.metrics_enabled:
        app.include_router(metrics_router)

    return app


# Application instance for uvicorn
app = create_app()
