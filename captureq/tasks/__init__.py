"""
captureq tasks module - enrichment, display, tiny tasks, staleness and cleanup.
"""

from captureq.tasks.display import DisplayState, resolve
from captureq.tasks.enrichment import TransitionResult, advance, retry
from captureq.tasks.errors import (
    EmptyGroup,
    InvalidTransition,
    ItemNotFound,
    PartialBulkFailure,
    RemoteClassificationFailed,
    TasksError,
)
from captureq.tasks.models import (
    BulkResult,
    CleanupLog,
    Item,
    ItemCreate,
    MemoryProfile,
    PriorityTier,
    ProcessingStatus,
    ScheduledBucket,
    StalenessStatus,
)
from captureq.tasks.sorting import sort_items
from captureq.tasks.staleness import run_staleness_sweep
from captureq.tasks.tiny_tasks import TinyTaskClassification, classify

__all__ = [
    # Models
    "BulkResult",
    "CleanupLog",
    "Item",
    "ItemCreate",
    "MemoryProfile",
    "PriorityTier",
    "ProcessingStatus",
    "ScheduledBucket",
    "StalenessStatus",
    # Errors
    "EmptyGroup",
    "InvalidTransition",
    "ItemNotFound",
    "PartialBulkFailure",
    "RemoteClassificationFailed",
    "TasksError",
    # Components
    "DisplayState",
    "TinyTaskClassification",
    "TransitionResult",
    "advance",
    "classify",
    "resolve",
    "retry",
    "run_staleness_sweep",
    "sort_items",
]
