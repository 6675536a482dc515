"""Health check endpoints for the captureq API.

- /health - Service health including LLM credential presence
- /health/db - Database connection pool health
- /health/pipeline - Pipeline counters (fallbacks, sweeps, bulk failures) and
  optional per-user staleness tier counts
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from captureq.config import APP_VERSION
from captureq.infrastructure.settings import use_llm

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Health check endpoint.

    Returns service status, version, and credential readiness for
    Vertex AI / Gemini (does not make an API call, only checks presence).
    """
    has_api_key = bool(os.getenv("GOOGLE_API_KEY"))
    has_project = bool(os.getenv("GOOGLE_CLOUD_PROJECT"))

    return {
        "status": "healthy",
        "service": "captureq API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "llm": {
            "enabled": use_llm(),
            "ready": has_api_key or has_project,
            "google_api_key": has_api_key,
            "google_cloud_project": has_project,
        },
    }


@router.get("/health/db")
async def database_health() -> dict[str, Any]:
    """
    Database health check endpoint.

    Alerts if pool usage exceeds 80%.
    """
    from captureq.infrastructure.database import get_pool_stats

    stats = get_pool_stats()
    usage_percent = stats["usage_percent"]

    return {
        "status": "degraded" if usage_percent > 80 else "healthy",
        "pool": stats,
        "warning": "Pool usage high" if usage_percent > 80 else None,
    }


@router.get("/health/pipeline")
async def pipeline_health(user_id: str | None = None) -> dict[str, Any]:
    """In-memory counters for the AI stages, sweeps and cleanup. Contains no PII.

    With ?user_id= the response also carries that user's open item counts per
    staleness tier, so a sweep's effect can be checked without listing items.
    """
    from captureq.observability.telemetry import get_counters, get_latency_stats
    from captureq.tasks.repository import ItemRepository

    data: dict[str, Any] = {
        "counters": get_counters(),
        "latency": {"staleness.sweep": get_latency_stats("staleness.sweep")},
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if user_id:
        data["staleness"] = ItemRepository.count_by_staleness(user_id)
    return data
