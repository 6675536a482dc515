"""
Item domain models for the captureq pipeline.

An Item is a single user capture (typed or transcribed voice) that the
pipeline enriches, classifies, schedules and eventually retires. The
persistence layer owns it; everything else reads it as a value.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from captureq.config import TINY_TASK_DEFAULT_THRESHOLD


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix aware and naive."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class ProcessingStatus(str, Enum):
    """Enrichment lifecycle of a capture."""

    NONE = "none"  # Plain text capture, never needed enrichment
    PENDING = "pending"  # Captured, nothing derived yet
    PROCESSING = "processing"  # Transcription in flight
    TRANSCRIBED = "transcribed"  # Raw text available
    SUMMARIZED = "summarized"  # Compression applied (or fell back)
    INDEXED = "indexed"  # Terminal success
    COMPLETED = "completed"  # Terminal success, same as INDEXED
    FAILED = "failed"  # Terminal failure, retryable


class PriorityTier(str, Enum):
    MUST = "MUST"
    SHOULD = "SHOULD"
    COULD = "COULD"


class ScheduledBucket(str, Enum):
    TODAY = "today"
    THIS_WEEK = "this_week"
    UPCOMING = "upcoming"
    SOMEDAY = "someday"


class StalenessStatus(str, Enum):
    """Freshness tier derived from age; independent of enrichment."""

    ACTIVE = "active"
    STALE = "stale"  # 7-13 days old
    DECISION_REQUIRED = "decision_required"  # 14-20 days old
    EXPIRING = "expiring"  # 21+ days old


def parse_priority(value: Any) -> PriorityTier | None:
    """Lenient priority parsing for AI-supplied metadata ("must", "Should", ...)."""
    if isinstance(value, PriorityTier):
        return value
    if isinstance(value, str):
        try:
            return PriorityTier(value.strip().upper())
        except ValueError:
            return None
    return None


class Item(BaseModel):
    """
    A capture/task record.

    Enrichment (processing_status) and freshness (staleness_status) are two
    separate lifecycles; neither is ever inferred from the other.
    """

    model_config = ConfigDict(frozen=False, validate_assignment=False)

    # Identity
    id: str = Field(..., description="Opaque unique identifier")
    user_id: str = Field(..., description="Owning user")

    # Content
    title: str = Field(default="", description="Short label")
    context: str | None = Field(default=None, description="Free-text notes")
    raw_content: str | None = Field(default=None, description="Verbatim original capture")
    ai_summary: str | None = Field(default=None, description="Compressed meaning sentence")
    ai_confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    # Enrichment
    processing_status: ProcessingStatus = Field(default=ProcessingStatus.NONE)
    pending_audio_path: str | None = Field(default=None)
    ai_metadata: dict[str, Any] = Field(default_factory=dict)

    # Classification
    is_tiny_task: bool | None = Field(default=None, description="None = unclassified")
    priority_tier: PriorityTier | None = Field(default=None)
    future_priority_score: float | None = Field(default=None)
    is_time_based: bool = Field(default=False)
    category: str | None = Field(default=None)

    # Scheduling
    scheduled_bucket: ScheduledBucket | None = Field(default=None)
    is_focus: bool = Field(default=False)
    focus_date: str | None = Field(default=None, description="ISO date (YYYY-MM-DD)")
    reminder_time: datetime | None = Field(default=None)

    # Lifecycle
    staleness_status: StalenessStatus = Field(default=StalenessStatus.ACTIVE)
    completed: bool = Field(default=False)
    completed_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("processing_status", mode="before")
    @classmethod
    def null_status_is_none(cls, v: Any) -> Any:
        return ProcessingStatus.NONE if v is None else v

    @field_validator("staleness_status", mode="before")
    @classmethod
    def null_staleness_is_active(cls, v: Any) -> Any:
        return StalenessStatus.ACTIVE if v is None else v

    @field_validator("ai_metadata", mode="before")
    @classmethod
    def null_metadata_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("created_at", "updated_at", "reminder_time", "completed_at")
    @classmethod
    def timestamps_are_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    def effective_priority(self) -> PriorityTier:
        """User-set tier, else the AI's suggestion, else SHOULD."""
        if self.priority_tier is not None:
            return self.priority_tier
        return parse_priority(self.ai_metadata.get("priority")) or PriorityTier.SHOULD

    def is_inbox(self) -> bool:
        return self.category in (None, "", "inbox")

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "context": self.context,
            "raw_content": self.raw_content,
            "ai_summary": self.ai_summary,
            "ai_confidence": self.ai_confidence,
            "processing_status": self.processing_status.value,
            "pending_audio_path": self.pending_audio_path,
            "ai_metadata": json.dumps(self.ai_metadata),
            "category": self.category,
            "is_tiny_task": None if self.is_tiny_task is None else int(self.is_tiny_task),
            "is_time_based": int(self.is_time_based),
            "priority_tier": self.priority_tier.value if self.priority_tier else None,
            "future_priority_score": self.future_priority_score,
            "scheduled_bucket": self.scheduled_bucket.value if self.scheduled_bucket else None,
            "is_focus": int(self.is_focus),
            "focus_date": self.focus_date,
            "reminder_time": self.reminder_time.isoformat() if self.reminder_time else None,
            "staleness_status": self.staleness_status.value,
            "completed": int(self.completed),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> Item:
        """Create Item from database row."""

        def parse_dt(val: str | None) -> datetime | None:
            if val is None:
                return None
            return datetime.fromisoformat(val)

        def parse_bool(val: int | None) -> bool | None:
            return None if val is None else bool(val)

        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row.get("title") or "",
            context=row.get("context"),
            raw_content=row.get("raw_content"),
            ai_summary=row.get("ai_summary"),
            ai_confidence=row.get("ai_confidence"),
            processing_status=row.get("processing_status"),
            pending_audio_path=row.get("pending_audio_path"),
            ai_metadata=json.loads(row["ai_metadata"]) if row.get("ai_metadata") else {},
            category=row.get("category"),
            is_tiny_task=parse_bool(row.get("is_tiny_task")),
            is_time_based=bool(row.get("is_time_based") or 0),
            priority_tier=row.get("priority_tier"),
            future_priority_score=row.get("future_priority_score"),
            scheduled_bucket=row.get("scheduled_bucket"),
            is_focus=bool(row.get("is_focus") or 0),
            focus_date=row.get("focus_date"),
            reminder_time=parse_dt(row.get("reminder_time")),
            staleness_status=row.get("staleness_status"),
            completed=bool(row.get("completed") or 0),
            completed_at=parse_dt(row.get("completed_at")),
            created_at=parse_dt(row.get("created_at")) or utc_now(),
            updated_at=parse_dt(row.get("updated_at")) or utc_now(),
        )


class ItemCreate(BaseModel):
    """Input model for a new capture (id and timestamps are assigned on insert)."""

    user_id: str
    title: str = ""
    context: str | None = None
    raw_content: str | None = None
    processing_status: ProcessingStatus = ProcessingStatus.NONE
    pending_audio_path: str | None = None
    priority_tier: PriorityTier | None = None
    scheduled_bucket: ScheduledBucket | None = None
    is_time_based: bool = False
    reminder_time: datetime | None = None
    category: str | None = None


class MemoryProfile(BaseModel):
    """Per-user personalization snapshot, passed explicitly to the classifier."""

    user_id: str
    tiny_task_threshold: int = Field(default=TINY_TASK_DEFAULT_THRESHOLD, ge=0)
    updated_at: datetime = Field(default_factory=utc_now)

    @classmethod
    def default_for(cls, user_id: str) -> MemoryProfile:
        return cls(user_id=user_id)


class CleanupLog(BaseModel):
    """Audit record of one cleanup session."""

    id: int | None = None
    user_id: str
    total_tasks: int = Field(..., ge=0, description="Inbox size before the cleanup")
    completed_count: int = Field(default=0, ge=0)
    archived_count: int = Field(default=0, ge=0)
    snoozed_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utc_now)


class BulkResult(BaseModel):
    """Per-id outcome of one bulk cleanup operation."""

    operation: str
    succeeded: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict, description="id -> error")
    skipped: list[str] = Field(
        default_factory=list, description="Ids filtered out (missing or already completed)"
    )
    rolled_back: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed
