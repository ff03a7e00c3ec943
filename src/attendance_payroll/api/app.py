"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from attendance_payroll import __version__
from attendance_payroll.api.routes import attendance_router, health_router, payroll_router
from attendance_payroll.config import configure_logging, get_settings
from attendance_payroll.database import dispose_db, init_db
from attendance_payroll.exceptions import (
    InvalidAmount,
    InvalidAttendanceStatus,
    InvalidSetting,
    NotFound,
    PayrollEngineError,
)

logger = logging.getLogger(__name__)

UNPROCESSABLE = (InvalidAmount, InvalidSetting, InvalidAttendanceStatus)


def status_for(exc: PayrollEngineError) -> int:
    """HTTP status for an engine error."""
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, UNPROCESSABLE):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    return status.HTTP_409_CONFLICT


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging(get_settings())
    init_db()
    yield
    # Shutdown
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Attendance Payroll API",
        description="Attendance-driven payroll runs for multi-location organizations",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PayrollEngineError)
    async def engine_error_handler(
        request: Request, exc: PayrollEngineError
    ) -> JSONResponse:
        """Map engine errors to a status and a body naming entity and rule."""
        code = status_for(exc)
        if code >= status.HTTP_409_CONFLICT:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(payroll_router, prefix="/api/v1")
    app.include_router(attendance_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
