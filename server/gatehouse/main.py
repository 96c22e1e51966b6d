"""FastAPI application initialization and configuration."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .core.database import close_db, init_db
from .core.exceptions import (
    ProblemDetailsException,
    generic_exception_handler,
    problem_details_handler,
    validation_exception_handler,
)
from .core.middleware import setup_middleware
from .core.observability import (
    SERVICE_NAME,
    SERVICE_VERSION,
    get_logger,
    instrument_fastapi,
    instrument_sqlalchemy,
    setup_metrics,
    setup_structured_logging,
    setup_tracing,
)
from .routers import attendance, bookings, gate, guests, metrics
from .workers.manager import worker_manager

setup_structured_logging()

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Sets up observability and the database schema, then starts background
    workers when WORKERS_ENABLED is set.
    """
    logger.info("Starting application", environment=settings.environment, debug=settings.debug)

    setup_tracing(SERVICE_NAME)
    setup_metrics(SERVICE_NAME)
    instrument_sqlalchemy()

    await init_db()
    logger.info("Database initialized")

    if settings.workers_enabled:
        await worker_manager.start_all()

    yield

    logger.info("Shutting down application")
    try:
        if settings.workers_enabled:
            await worker_manager.stop_all()
    finally:
        await close_db()

    logger.info("Application shutdown complete")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)


def register_routers(app: FastAPI) -> None:
    app.include_router(bookings.router)
    app.include_router(guests.router)
    app.include_router(gate.router)
    app.include_router(attendance.router)
    app.include_router(metrics.router)


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    app = FastAPI(
        title="Gatehouse API",
        description="Access control and lifecycle reconciliation for residential societies: "
                    "amenity bookings, guests, gate scans and the attendance ledger",
        version=SERVICE_VERSION,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "traceparent", "tracestate"],
    )

    setup_middleware(app, enable_logging=True)
    instrument_fastapi(app)
    register_exception_handlers(app)

    register_routers(app)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gatehouse.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )
