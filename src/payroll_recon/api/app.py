"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_recon.api.routes import health_router, payroll_runs_router
from payroll_recon.database import dispose_db, init_db
from payroll_recon.exceptions import (
    ConcurrentDetectionError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db()
    yield
    # Shutdown
    await dispose_db()


def _error(status_code: int, detail: str, code: str, context: dict | None = None) -> JSONResponse:
    content: dict = {"detail": detail, "code": code}
    if context:
        content["context"] = context
    return JSONResponse(status_code=status_code, content=content)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Payroll Reconciliation API",
        description="Payroll anomaly detection, run review and pay traceability",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(
            status.HTTP_404_NOT_FOUND,
            str(exc),
            "NOT_FOUND",
            {"entity": exc.entity, "id": str(exc.entity_id)},
        )

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(
        request: Request, exc: InvalidTransitionError
    ) -> JSONResponse:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            str(exc),
            "INVALID_TRANSITION",
            {"from_status": exc.from_status, "to_status": exc.to_status},
        )

    @app.exception_handler(InvalidStateError)
    async def invalid_state_handler(request: Request, exc: InvalidStateError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "INVALID_STATE")

    @app.exception_handler(ConcurrentDetectionError)
    async def concurrent_detection_handler(
        request: Request, exc: ConcurrentDetectionError
    ) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc), "CONCURRENT_DETECTION")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), "INVALID_REQUEST")

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
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
