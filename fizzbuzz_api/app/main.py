"""
Main entrypoint for the FizzBuzz API.

This module assembles the FastAPI application, sets up logging,
error handlers and the versioned router.  The ``create_app`` function
builds and configures the app, which is then instantiated at module
import time as ``app``.  Importing the app here makes it easy to run
with uvicorn or another ASGI server, e.g.::

    uvicorn fizzbuzz_api.app.main:app

The statistics store named by ``Settings.database_url`` is opened when
the application starts and closed when it shuts down.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.v2.router import router as v2_router
from .core.access_log import AccessLogMiddleware
from .core.config import Settings, settings
from .core.errors import DeadlineExceeded, InvalidInputError, StorageError
from .core.logging_config import setup_logging
from .services.stats_service import StatsService, open_stats

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as ``{"error": "<message>"}``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, "invalid request")

    @app.exception_handler(InvalidInputError)
    async def invalid_input_handler(request: Request, exc: InvalidInputError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(DeadlineExceeded)
    async def deadline_handler(request: Request, exc: DeadlineExceeded) -> JSONResponse:
        logger.warning("%s %s: %s", request.method, request.url.path, exc)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("%s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "statistics storage error")


def create_app(
    app_settings: Optional[Settings] = None,
    stats: Optional[StatsService] = None,
) -> FastAPI:
    """Create and configure a FastAPI application.

    Parameters
    ----------
    app_settings : Optional[Settings]
        Settings to use; the module level ``settings`` by default.
    stats : Optional[StatsService]
        An already opened statistics store.  The caller keeps
        ownership of it.  When omitted, the store named by
        ``app_settings.database_url`` is opened at startup and closed
        at shutdown.

    Returns
    -------
    FastAPI
        A configured FastAPI application instance.
    """
    app_settings = app_settings or settings
    # Initialise logging before anything else so that the startup
    # hook can log which database is used.
    setup_logging(
        app_settings.log_level,
        app_settings.log_file or None,
        http_logging=app_settings.http_logging,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = app.state.stats is None
        if owned:
            logger.info("Using database: %s", app_settings.database_url)
            app.state.stats = open_stats(
                app_settings.database_url,
                busy_timeout_ms=app_settings.busy_timeout_ms,
                checkpoint_interval=app_settings.checkpoint_interval,
            )
        try:
            yield
        finally:
            if owned:
                logger.info("Closing statistics store")
                app.state.stats.close()
                app.state.stats = None

    app = FastAPI(
        title=app_settings.project_name,
        version=app_settings.api_version,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.stats = stats

    register_exception_handlers(app)

    app.include_router(v2_router, prefix="/api/v2")

    if app_settings.http_logging:
        app.add_middleware(AccessLogMiddleware)

    return app


# Create the application instance at import time so that tools such as
# uvicorn can discover it without calling create_app manually.
app = create_app()
