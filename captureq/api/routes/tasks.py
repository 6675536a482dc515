"""
Task API endpoints: listing, classification, enrichment and staleness.

Pipeline errors (ItemNotFound, InvalidTransition, ...) propagate to the
exception handlers registered in captureq.api.app.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from captureq.config import API_LIST_LIMIT_DEFAULT, API_LIST_LIMIT_MAX, FIESTA_MIN_TASKS
from captureq.observability.logging import get_logger
from captureq.tasks.display import DisplayState, resolve
from captureq.tasks.models import Item, ItemCreate, PriorityTier, ProcessingStatus, ScheduledBucket
from captureq.tasks.service import TasksService, get_tasks_service
from captureq.tasks.staleness import RESOLUTION_ACTIONS
from captureq.tasks.tiny_tasks import TinyTaskClassification

router = APIRouter(prefix="/api", tags=["tasks"])
logger = get_logger(__name__)


# ============================================================================
# Request/Response Models
# ============================================================================


class ItemResponse(BaseModel):
    """API response for a single item, with its resolved display state."""

    id: str
    user_id: str
    title: str
    context: str | None
    raw_content: str | None
    ai_summary: str | None
    ai_confidence: float | None
    processing_status: str
    priority_tier: str
    is_tiny_task: bool | None
    scheduled_bucket: str | None
    is_focus: bool
    focus_date: str | None
    reminder_time: str | None
    staleness_status: str
    completed: bool
    created_at: str
    updated_at: str
    display: dict[str, Any]

    @classmethod
    def from_item(cls, item: Item, display: DisplayState | None = None) -> ItemResponse:
        display = display or resolve(item)
        return cls(
            id=item.id,
            user_id=item.user_id,
            title=item.title,
            context=item.context,
            raw_content=item.raw_content,
            ai_summary=item.ai_summary,
            ai_confidence=item.ai_confidence,
            processing_status=item.processing_status.value,
            priority_tier=item.effective_priority().value,
            is_tiny_task=item.is_tiny_task,
            scheduled_bucket=item.scheduled_bucket.value if item.scheduled_bucket else None,
            is_focus=item.is_focus,
            focus_date=item.focus_date,
            reminder_time=item.reminder_time.isoformat() if item.reminder_time else None,
            staleness_status=item.staleness_status.value,
            completed=item.completed,
            created_at=item.created_at.isoformat(),
            updated_at=item.updated_at.isoformat(),
            display=display.to_dict(),
        )


class ClassificationResponse(BaseModel):
    is_tiny: bool
    confidence: float
    reason: str
    source: str

    @classmethod
    def from_result(cls, result: TinyTaskClassification) -> ClassificationResponse:
        return cls(
            is_tiny=result.is_tiny,
            confidence=result.confidence,
            reason=result.reason,
            source=result.source,
        )


class ClassifiedItemResponse(BaseModel):
    item: ItemResponse
    classification: ClassificationResponse


class CreateItemRequest(BaseModel):
    title: str = Field(default="", max_length=2000)
    context: str | None = Field(default=None, max_length=10000)
    raw_content: str | None = Field(default=None, max_length=20000)
    voice: bool = Field(default=False, description="Voice capture awaiting transcription")
    pending_audio_path: str | None = None
    priority_tier: PriorityTier | None = None
    scheduled_bucket: ScheduledBucket | None = None
    is_time_based: bool = False
    reminder_time: datetime | None = None
    category: str | None = None


class TranscriptRequest(BaseModel):
    text: str = Field(default="", max_length=20000)


class SweepRequest(BaseModel):
    user_id: str | None = None


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/users/{user_id}/items", response_model=ItemResponse, status_code=201)
def create_item(
    user_id: str,
    request: CreateItemRequest,
    service: TasksService = Depends(get_tasks_service),
) -> ItemResponse:
    """Capture a new item. Voice captures start in the pending state."""
    item = service.create_item(
        ItemCreate(
            user_id=user_id,
            title=request.title,
            context=request.context,
            raw_content=request.raw_content,
            processing_status=ProcessingStatus.PENDING if request.voice else ProcessingStatus.NONE,
            pending_audio_path=request.pending_audio_path,
            priority_tier=request.priority_tier,
            scheduled_bucket=request.scheduled_bucket,
            is_time_based=request.is_time_based,
            reminder_time=request.reminder_time,
            category=request.category,
        )
    )
    return ItemResponse.from_item(item)


@router.get("/users/{user_id}/items", response_model=list[ItemResponse])
def list_items(
    user_id: str,
    limit: int = Query(API_LIST_LIMIT_DEFAULT, ge=1, le=API_LIST_LIMIT_MAX),
    service: TasksService = Depends(get_tasks_service),
) -> list[ItemResponse]:
    """Incomplete items in priority order, each with its display state."""
    return [
        ItemResponse.from_item(item, display)
        for item, display in service.list_items(user_id, limit=limit)
    ]


@router.get("/users/{user_id}/items/tiny", response_model=list[ClassifiedItemResponse])
def list_tiny_tasks(
    user_id: str,
    service: TasksService = Depends(get_tasks_service),
) -> list[ClassifiedItemResponse]:
    return [
        ClassifiedItemResponse(
            item=ItemResponse.from_item(item),
            classification=ClassificationResponse.from_result(verdict),
        )
        for item, verdict in service.tiny_tasks(user_id)
    ]


@router.get("/users/{user_id}/items/fiesta")
def fiesta_suggestion(
    user_id: str,
    min_count: int = Query(FIESTA_MIN_TASKS, ge=1, le=100),
    service: TasksService = Depends(get_tasks_service),
) -> dict[str, Any]:
    tiny = service.tiny_tasks(user_id)
    return {
        "suggest": len(tiny) >= min_count,
        "tiny_task_count": len(tiny),
        "min_count": min_count,
    }


@router.get("/users/{user_id}/items/stale", response_model=list[ItemResponse])
def list_stale_items(
    user_id: str,
    service: TasksService = Depends(get_tasks_service),
) -> list[ItemResponse]:
    return [ItemResponse.from_item(item) for item in service.list_stale_items(user_id)]


@router.get("/items/{item_id}", response_model=ItemResponse)
def get_item(
    item_id: str,
    service: TasksService = Depends(get_tasks_service),
) -> ItemResponse:
    return ItemResponse.from_item(service.get_item(item_id))


@router.post("/items/{item_id}/classify", response_model=ClassifiedItemResponse)
def classify_item(
    item_id: str,
    service: TasksService = Depends(get_tasks_service),
) -> ClassifiedItemResponse:
    """Classify as tiny / not tiny. AI outages degrade to the heuristic silently."""
    item, verdict = service.classify_item(item_id)
    return ClassifiedItemResponse(
        item=ItemResponse.from_item(item),
        classification=ClassificationResponse.from_result(verdict),
    )


@router.post("/items/{item_id}/transcript", response_model=ItemResponse)
def ingest_transcript(
    item_id: str,
    request: TranscriptRequest,
    service: TasksService = Depends(get_tasks_service),
) -> ItemResponse:
    """Feed a finished transcription through summarization and indexing."""
    return ItemResponse.from_item(service.ingest_transcript(item_id, request.text))


@router.post("/items/{item_id}/retry", response_model=ItemResponse)
def retry_enrichment(
    item_id: str,
    service: TasksService = Depends(get_tasks_service),
) -> ItemResponse:
    return ItemResponse.from_item(service.retry_enrichment(item_id))


@router.post("/staleness/sweep")
def run_sweep(
    request: SweepRequest | None = None,
    service: TasksService = Depends(get_tasks_service),
) -> dict[str, Any]:
    user_id = request.user_id if request else None
    return service.run_staleness_sweep(user_id=user_id).to_dict()


@router.post("/items/{item_id}/stale/{action}", response_model=ItemResponse)
def resolve_stale_item(
    item_id: str,
    action: str,
    service: TasksService = Depends(get_tasks_service),
) -> ItemResponse:
    """Resolve a stale item: archive, schedule_for_today or dismiss_for_now."""
    if action not in RESOLUTION_ACTIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown action. Expected one of: {', '.join(RESOLUTION_ACTIONS)}",
        )
    return ItemResponse.from_item(service.resolve_stale(item_id, action))
