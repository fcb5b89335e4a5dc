"""
Main Application - FastAPI application setup.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest

from manabee.api.admin_routes import router as admin_router
from manabee.api.dependencies import get_services
from manabee.api.routes import router
from manabee.config import settings
from manabee.db.migration_runner import run_migrations_async
from manabee.db.session import Database
from manabee.exceptions import InternalError, ManabeeError
from manabee.models.api import HealthResponse
from manabee.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from manabee.observability.tracing import instrument_fastapi, instrument_sqlalchemy
from manabee.services.ai_provider import build_ai_provider
from manabee.services.identity import FirebaseIdentityVerifier, init_firebase_app
from manabee.services.notifications import FirebasePushProvider
from manabee.services.registry import build_periodic_runner, build_services
from manabee.storage import build_store

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Builds the store, providers and services at startup, starts the
    periodic maintenance runner, and tears everything down on shutdown.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        storage=settings.storage_backend,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
    )

    database: Database | None = None
    if settings.storage_backend == "sql":
        if settings.run_migrations:
            await run_migrations_async(settings)
        database = Database.from_settings(settings)
        instrument_sqlalchemy(database.engine)

    firebase_app = init_firebase_app(settings)
    services = build_services(
        settings,
        build_store(settings, database),
        ai_provider=build_ai_provider(settings),
        push_provider=(
            FirebasePushProvider(firebase_app)
            if firebase_app is not None and settings.push_enabled
            else None
        ),
        verifier=FirebaseIdentityVerifier(firebase_app) if firebase_app is not None else None,
    )
    app.state.services = services

    runner = build_periodic_runner(services)
    runner.start()

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await runner.stop()
    if database is not None:
        await database.dispose()
        logger.info("database_engine_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(ManabeeError)
async def manabee_exception_handler(request: Request, exc: ManabeeError) -> JSONResponse:
    """Translate service errors to {"detail", "code"} responses."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "request_rejected",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        code=exc.code,
        status_code=exc.status_code,
        detail=str(exc),
    )
    metrics.record_error(type(exc).__name__, request.url.path)

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
        headers=headers,
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log the failure and answer with an InternalError body."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        error=str(exc),
        exc_info=exc,
    )
    metrics.record_error(type(exc).__name__, request.url.path)

    error = InternalError()
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": str(error), "code": error.code},
    )


# Add validation error logging handler
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Log detailed validation errors for debugging."""
    sanitized_errors = []
    for error in exc.errors():
        sanitized = {
            "type": error.get("type"),
            "loc": error.get("loc"),
            "msg": error.get("msg"),
        }
        # ctx may contain non-serializable objects
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": sanitized_errors, "code": "invalid-argument"},
    )


# Setup tracing
setup_tracing()
instrument_fastapi(app)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request logging middleware
@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    endpoint = request.url.path
    method = request.method
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()

    try:
        with log_context(request_id=request_id):
            response = await call_next(request)
        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, response.status_code, duration)

        logger.info(
            "request_completed",
            method=method,
            path=endpoint,
            status_code=response.status_code,
            duration_seconds=duration,
            request_id=request_id,
        )
        return response
    except Exception as e:
        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        metrics.record_error(type(e).__name__, "http_request")

        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(e),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()


# Register routes
app.include_router(router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> JSONResponse:
    """Liveness plus a store round-trip."""
    services = get_services(request)
    healthy = await services.store.ping()
    body = HealthResponse(
        status="healthy" if healthy else "degraded",
        storage=services.store.name,
        version=settings.api_version,
    )
    return JSONResponse(status_code=200 if healthy else 503, content=body.model_dump())


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "manabee.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
