"""
Inbox cleanup endpoints.

/analyze returns the AI-proposed grouping (or available=false when the model
could not be reached, with local category suggestions instead). /apply takes the
user's per-group decisions and runs them, writing one audit record.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field, field_validator

from captureq.api.routes.tasks import ItemResponse
from captureq.config import API_BATCH_SIZE_MAX
from captureq.observability.logging import get_logger
from captureq.tasks.cleanup import GroupDecision
from captureq.tasks.remote import CategorySuggestion, InboxAnalysis
from captureq.tasks.service import TasksService, get_tasks_service

router = APIRouter(prefix="/api/users/{user_id}/cleanup", tags=["cleanup"])
logger = get_logger(__name__)


class ApplyCleanupRequest(BaseModel):
    decisions: list[GroupDecision] = Field(default_factory=list)

    @field_validator("decisions")
    @classmethod
    def limit_batch_size(cls, v: list[GroupDecision]) -> list[GroupDecision]:
        total = sum(len(d.task_ids) for d in v)
        if total > API_BATCH_SIZE_MAX:
            raise ValueError(f"At most {API_BATCH_SIZE_MAX} task ids per cleanup")
        return v


class GroupIdsRequest(BaseModel):
    task_ids: list[str] = Field(default_factory=list, max_length=API_BATCH_SIZE_MAX)


@router.post("/analyze", response_model=InboxAnalysis)
def analyze_inbox(
    user_id: str,
    service: TasksService = Depends(get_tasks_service),
) -> InboxAnalysis:
    return service.analyze_inbox(user_id)


@router.post("/apply")
def apply_cleanup(
    user_id: str,
    request: ApplyCleanupRequest,
    service: TasksService = Depends(get_tasks_service),
) -> dict[str, Any]:
    """
    Apply confirmed group decisions.

    Groups that fail are reported with their per-id outcome and left as they
    were, so the client can retry just those.
    """
    report = service.apply_cleanup(user_id, request.decisions)
    return {
        "groups": [outcome.to_dict() for outcome in report.outcomes],
        "log": report.log.model_dump(mode="json") if report.log else None,
    }


@router.post("/complete")
def complete_group(
    user_id: str,
    request: GroupIdsRequest,
    service: TasksService = Depends(get_tasks_service),
) -> dict[str, Any]:
    return service.complete_group(user_id, request.task_ids).model_dump()


@router.post("/snooze")
def snooze_group(
    user_id: str,
    request: GroupIdsRequest,
    service: TasksService = Depends(get_tasks_service),
) -> dict[str, Any]:
    return service.snooze_group(user_id, request.task_ids).model_dump()


@router.post("/archive")
def archive_group(
    user_id: str,
    request: GroupIdsRequest,
    service: TasksService = Depends(get_tasks_service),
) -> dict[str, Any]:
    return service.archive_group(user_id, request.task_ids).model_dump()


@router.get("/history")
def cleanup_history(
    user_id: str,
    limit: int = Query(20, ge=1, le=100),
    service: TasksService = Depends(get_tasks_service),
) -> list[dict[str, Any]]:
    return [entry.model_dump(mode="json") for entry in service.cleanup_history(user_id, limit)]


class ApplySuggestionRequest(BaseModel):
    task_id: str
    category: str = Field(..., min_length=1, max_length=50)


class ApplySuggestionsRequest(BaseModel):
    suggestions: list[CategorySuggestion] = Field(default_factory=list, max_length=API_BATCH_SIZE_MAX)


@router.post("/suggestions/apply", response_model=ItemResponse)
def apply_suggestion(
    user_id: str,
    request: ApplySuggestionRequest,
    service: TasksService = Depends(get_tasks_service),
) -> ItemResponse:
    """Move one item to a suggested category ("today" schedules it for today)."""
    return ItemResponse.from_item(service.apply_suggestion(user_id, request.task_id, request.category))


@router.post("/suggestions/apply-all")
def apply_all_suggestions(
    user_id: str,
    request: ApplySuggestionsRequest,
    service: TasksService = Depends(get_tasks_service),
) -> dict[str, Any]:
    return service.apply_suggestions(user_id, request.suggestions).model_dump()
