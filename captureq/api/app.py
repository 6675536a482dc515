"""FastAPI server for captureq capture enrichment and task intelligence"""

from __future__ import annotations

import sqlite3
from typing import Any

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from captureq.api.routes.cleanup import router as cleanup_router
from captureq.api.routes.health import router as health_router
from captureq.api.routes.tasks import router as tasks_router
from captureq.config import API_HOST, API_PORT, APP_VERSION, STALENESS_SWEEP_INTERVAL_SECONDS
from captureq.infrastructure.database import init_database
from captureq.infrastructure.settings import sweep_enabled
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter
from captureq.tasks.errors import (
    EmptyGroup,
    InvalidTransition,
    ItemNotFound,
    PartialBulkFailure,
)
from captureq.tasks.staleness import StalenessSweepThread

# Load environment variables from .env file
load_dotenv()

app = FastAPI(title="captureq API", version=APP_VERSION)
logger = get_logger(__name__)


# ============================================================================
# ERROR HANDLERS
# ============================================================================


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Sanitized validation errors: field names only, no validation rules.

    Side Effects:
        - Logs the full error list at warning level
        - Increments api.validation_errors
    """
    logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
    counter("api.validation_errors")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Invalid request format. Please check your request and try again.",
            "error_count": len(exc.errors()),
            "invalid_fields": [str(err["loc"][-1]) for err in exc.errors()],
        },
    )


@app.exception_handler(ItemNotFound)
async def item_not_found_handler(request: Request, exc: ItemNotFound) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition) -> JSONResponse:
    counter("api.invalid_transitions")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "detail": str(exc),
            "current": exc.current.value,
            "target": exc.target.value,
            "reason": exc.reason,
        },
    )


@app.exception_handler(EmptyGroup)
async def empty_group_handler(request: Request, exc: EmptyGroup) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "operation": exc.operation},
    )


@app.exception_handler(PartialBulkFailure)
async def partial_failure_handler(request: Request, exc: PartialBulkFailure) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"detail": str(exc), "result": exc.result.model_dump()},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


# Initialize database schema (idempotent - safe to run on every startup)
try:
    logger.info("Initializing database schema...")
    init_database()
    logger.info("Database initialization complete")
except sqlite3.OperationalError as e:
    logger.critical("Database schema error: %s", e)
    logger.critical("Database may be corrupted or locked by another process")
    raise RuntimeError(f"Database initialization failed: {e}") from e


app.include_router(health_router)
app.include_router(tasks_router)
app.include_router(cleanup_router)


# ============================================================================
# BACKGROUND SWEEP
# ============================================================================

_sweep_thread: StalenessSweepThread | None = None


@app.on_event("startup")
async def validate_database_schema() -> None:
    """Validate database schema on startup (fail fast if database is broken)

    Side Effects:
        - Calls validate_schema() which reads from the database
        - May raise RuntimeError on validation failure (crashes the app)
    """
    from captureq.infrastructure.database import validate_schema

    try:
        validate_schema()
        logger.info("Database schema validation passed")
    except ValueError as e:
        logger.critical("Database schema invalid: %s", e)
        raise RuntimeError(f"Database schema validation failed: {e}") from e


@app.on_event("startup")
async def start_staleness_sweep() -> None:
    """Start the periodic staleness sweep unless CAPTUREQ_SWEEP_ENABLED=false."""
    global _sweep_thread
    from captureq.tasks.service import get_tasks_service

    if not sweep_enabled():
        logger.info("Staleness sweep disabled")
        return

    service = get_tasks_service()
    _sweep_thread = StalenessSweepThread(
        service.run_staleness_sweep, interval=STALENESS_SWEEP_INTERVAL_SECONDS
    )
    _sweep_thread.start()
    logger.info("Staleness sweep started (%ds interval)", STALENESS_SWEEP_INTERVAL_SECONDS)


@app.on_event("shutdown")
async def stop_staleness_sweep() -> None:
    global _sweep_thread
    if _sweep_thread is not None:
        _sweep_thread.stop()
        _sweep_thread = None


# ============================================================================
# CORE ENDPOINTS
# ============================================================================


@app.get("/")
def root() -> dict[str, Any]:
    return {
        "service": "captureq API",
        "version": APP_VERSION,
        "endpoints": {
            "health": "/health",
            "items": "/api/users/{user_id}/items",
            "tiny_tasks": "/api/users/{user_id}/items/tiny",
            "stale": "/api/users/{user_id}/items/stale",
            "cleanup": "/api/users/{user_id}/cleanup/analyze",
            "sweep": "/api/staleness/sweep",
        },
    }


def main() -> None:
    import uvicorn

    uvicorn.run("captureq.api.app:app", host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    main()
