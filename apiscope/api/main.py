"""FastAPI application for APIScope.

Provides RESTful endpoints for:
- Capturing the API traffic of a page
- Cancelling running captures
- Reading, inspecting and cleaning up stored sessions
- Health checks
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..browser.capture import PlaywrightCaptureRunner
from ..core.config import Settings, get_settings
from ..core.logging import setup_logging
from ..services.capture_service import CaptureRunner, CaptureService
from ..store.session_store import SessionStore
from .middleware.logging import RequestLoggingMiddleware
from .routes import health_router, sessions_router
from .schemas import ErrorResponse, ValidationErrorDetail, ValidationErrorResponse

logger = structlog.get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    runner: CaptureRunner | None = None,
    store: SessionStore | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Application settings (cached settings by default)
        runner: Capture runner (Playwright by default)
        store: Session store (built from settings by default)

    Returns:
        Configured FastAPI app; the store's background sweep runs for the
        lifetime of the app
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.

        - Startup: build the capture service, start the session sweep
        - Shutdown: stop the sweep
        """
        logger.info(
            "application_starting",
            app_name=settings.APP_NAME,
            environment=settings.ENVIRONMENT.value,
            debug=settings.DEBUG,
        )

        session_store = store if store is not None else SessionStore.from_settings(settings)
        app.state.capture_service = CaptureService(
            store=session_store,
            runner=runner if runner is not None else PlaywrightCaptureRunner(settings),
            settings=settings,
        )

        try:
            await session_store.start()
            logger.info("application_ready")

            yield

        finally:
            logger.info("application_shutting_down")
            await session_store.stop()
            logger.info("application_shutdown_complete")

    app = FastAPI(
        title="APIScope API",
        description=(
            "Loads a page in a headless browser and records the API calls it makes: "
            "classified requests, correlated responses, rate limits and auth markers."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # ===== Middleware =====

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # ===== Exception Handlers =====

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request,
        exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle HTTP exceptions with consistent error format."""
        request_id = getattr(request.state, "request_id", None)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
        )

        error_response = ErrorResponse(
            error="http_error",
            detail=str(exc.detail),
            request_id=request_id,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=error_response.model_dump(exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors with detailed field information."""
        validation_errors = [
            ValidationErrorDetail(
                loc=list(error["loc"]),
                msg=error["msg"],
                type=error["type"],
            )
            for error in exc.errors()
        ]

        logger.warning(
            "validation_error",
            path=request.url.path,
            error_count=len(validation_errors),
        )

        error_response = ValidationErrorResponse(
            error="validation_error",
            detail="Request validation failed",
            validation_errors=validation_errors,
        )

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_response.model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions with logging."""
        request_id = getattr(request.state, "request_id", None)

        logger.error(
            "unexpected_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            exc_info=True,
        )

        # In production, don't expose internal error details
        detail = str(exc) if settings.DEBUG else "An unexpected error occurred"

        error_response = ErrorResponse(
            error="internal_error",
            detail=detail,
            request_id=request_id,
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_response.model_dump(exclude_none=True),
        )

    # ===== Routes =====

    app.include_router(health_router)
    app.include_router(health_router, prefix=settings.API_PREFIX)
    app.include_router(sessions_router, prefix=settings.API_PREFIX)

    return app


def get_app() -> FastAPI:
    """App factory for ``uvicorn --factory apiscope.api.main:get_app``."""
    setup_logging()
    return create_app()
