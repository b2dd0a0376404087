"""Hindustani Tongue progress API - Main Application."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tongue.access.router import router as access_router
from tongue.access.service import AccessControlService
from tongue.config import Settings, get_settings
from tongue.core.context import get_request_id
from tongue.core.database import CassandraDocumentStore, DocumentStore, InMemoryDocumentStore
from tongue.core.logging import configure_structlog, get_logger
from tongue.core.middleware import RequestContextMiddleware
from tongue.core.redis import init_redis, shutdown_redis
from tongue.courses.service import CourseService
from tongue.enrollments.router import router as enrollments_router
from tongue.enrollments.service import EnrollmentService
from tongue.health.router import router as health_router
from tongue.offline.journal import FileProgressJournal, ProgressJournal, RedisProgressJournal
from tongue.offline.retry import RetryPolicy
from tongue.offline.service import OfflineSyncService
from tongue.payments.router import router as payments_router
from tongue.progress.reducer import ReducerPolicy
from tongue.progress.router import router as progress_router
from tongue.progress.service import ProgressService


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(settings, log_dir=None if settings.is_testing else Path(settings.log_dir))

logger = get_logger(__name__)


async def _open_document_store(app: FastAPI, settings: Settings) -> DocumentStore | None:
    """Use a store preset on app.state, else the configured backend."""
    preset = getattr(app.state, "document_store", None)
    if preset is not None:
        return preset

    if settings.document_backend == "memory":
        logger.info("document_store_initialized", backend="memory")
        return InMemoryDocumentStore()

    try:
        # Imported here so the memory backend runs without a Cassandra driver
        from tongue.core.database.async_cassandra import init_async_cassandra

        session = await init_async_cassandra()
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )
        return None

    app.state.cassandra_session = session
    logger.info("document_store_initialized", backend="cassandra")
    return CassandraDocumentStore(session, settings.cassandra_keyspace)


async def _open_journal(settings: Settings) -> ProgressJournal:
    """Durable journal for progress updates the store could not take."""
    if settings.offline_journal_backend == "redis":
        try:
            client = await init_redis()
            logger.info("offline_journal_initialized", backend="redis")
            return RedisProgressJournal(client)
        except Exception as e:
            logger.warning(
                "redis_journal_unavailable",
                error=str(e),
                message="Falling back to the file journal",
            )

    logger.info("offline_journal_initialized", backend="file", path=settings.offline_journal_dir)
    return FileProgressJournal(settings.offline_journal_dir)


def build_services(app: FastAPI, store: DocumentStore, settings: Settings) -> None:
    """Create services and expose them on app.state."""
    course_service = CourseService(store)
    progress_service = ProgressService(
        store, course_service, policy=ReducerPolicy.from_settings(settings)
    )
    enrollment_service = EnrollmentService(store, course_service, progress_service)
    access_service = AccessControlService(
        course_service, enrollment_service, progress_service
    )

    app.state.course_service = course_service
    app.state.progress_service = progress_service
    app.state.enrollment_service = enrollment_service
    app.state.access_service = access_service
    logger.info("services_initialized")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    store = await _open_document_store(app, settings)
    offline_service: OfflineSyncService | None = None
    background: list[asyncio.Task] = []

    if store is not None:
        build_services(app, store, settings)

        journal = await _open_journal(settings)
        offline_service = OfflineSyncService(
            journal,
            sink=app.state.access_service.deliver_snapshot,
            policy=RetryPolicy.from_settings(settings),
        )
        app.state.offline_service = offline_service

        # Deliver journals left over from a previous run, then keep retrying
        background.append(asyncio.create_task(offline_service.restore()))
        background.append(
            asyncio.create_task(
                offline_service.run_periodic_sync(settings.offline_sync_interval_seconds)
            )
        )

    yield

    # Shutdown
    logger.info("shutting_down_application")
    for task in background:
        task.cancel()
    for task in background:
        with contextlib.suppress(asyncio.CancelledError):
            await task
    if offline_service is not None:
        await offline_service.aclose()
    await shutdown_redis()
    if getattr(app.state, "cassandra_session", None) is not None:
        from tongue.core.database.async_cassandra import shutdown_async_cassandra

        await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # SECURITY: debug=False keeps Starlette's ServerErrorMiddleware from
    # exposing stack traces; the handlers below log details internally.
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Lesson progress tracking and sequential unlocking API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        """Get request_id from request state or context."""
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    # Global exception handlers (never expose stack traces)
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        detail = exc.detail if isinstance(exc.detail, dict) else {"message": str(exc.detail)}
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            detail = {"message": "Internal server error"}

        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                **detail,
                "status_code": exc.status_code,
                "request_id": request_id,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        """Handle validation errors with safe error messages."""
        request_id = _get_request_id_safe(request)

        logger.warning(
            "validation_error",
            errors=exc.errors(),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler for unhandled exceptions."""
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(access_router)
    app.include_router(enrollments_router)
    app.include_router(progress_router)
    app.include_router(payments_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        """Root endpoint."""
        return {
            "message": "Hindustani Tongue Progress API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


app = create_app()
