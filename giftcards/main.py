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

from giftcards.api.admin_routes import router as admin_router
from giftcards.api.dependencies import init_giftcard_service, reset_giftcard_service
from giftcards.api.routes import router
from giftcards.config import settings
from giftcards.db.session import close_engine
from giftcards.exceptions import StorageFailureError
from giftcards.observability import get_logger, log_context, metrics, setup_logging

# Setup logging before anything else
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        metrics_enabled=settings.metrics_enabled,
    )

    # Load persisted state now so a broken store fails startup
    try:
        init_giftcard_service()
    except StorageFailureError as e:
        logger.critical("startup_state_load_failed", error=str(e))
        close_engine()
        raise

    yield

    logger.info("application_shutting_down")
    reset_giftcard_service()
    close_engine()
    logger.info("database_engine_closed")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


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
        if "ctx" in error:
            sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        sanitized_errors.append(sanitized)

    # Request bodies may carry codes or passwords, so they are not logged
    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=sanitized_errors,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": sanitized_errors},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Log all HTTP requests with timing."""
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")
    endpoint = request.url.path
    method = request.method

    logger.info("request_started", method=method, path=endpoint, request_id=request_id)

    try:
        with log_context(request_id=request_id):
            response = await call_next(request)
    except Exception as e:
        duration = time.time() - start_time
        if settings.metrics_enabled:
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

    duration = time.time() - start_time
    if settings.metrics_enabled:
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


# Register routes
app.include_router(router)  # Redemption, wallet and session routes
app.include_router(admin_router)  # Admin card management routes


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "giftcards.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
