"""
Exceptions raised by the capture pipeline.

RemoteClassificationFailed never reaches API callers: the classifier,
inbox analyzer and enrichment pipeline each catch it and fall back.
Enrichment failure is a normal terminal state (ProcessingStatus.FAILED),
not an exception.
"""

from __future__ import annotations

from captureq.tasks.models import BulkResult, ProcessingStatus


class TasksError(Exception):
    """Base exception for capture pipeline errors."""

    pass


class InvalidTransition(TasksError):
    """Enrichment state machine refused a move; the item is unchanged."""

    def __init__(
        self,
        item_id: str,
        current: ProcessingStatus,
        target: ProcessingStatus,
        reason: str = "not reachable",
    ):
        self.item_id = item_id
        self.current = current
        self.target = target
        self.reason = reason
        super().__init__(
            f"Item {item_id}: cannot move {current.value} -> {target.value} ({reason})"
        )


class RemoteClassificationFailed(TasksError):
    """A remote AI capability errored, timed out, or returned garbage."""

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage}: {message}")


class EmptyGroup(TasksError):
    """Cleanup operation had no valid ids left after filtering."""

    def __init__(self, operation: str, requested: int = 0):
        self.operation = operation
        self.requested = requested
        super().__init__(f"{operation}: no valid ids (requested {requested})")


class PartialBulkFailure(TasksError):
    """Some ids in a bulk operation failed; the whole group was rolled back."""

    def __init__(self, result: BulkResult):
        self.result = result
        super().__init__(
            f"{result.operation}: {len(result.failed)} of "
            f"{len(result.failed) + len(result.succeeded)} ids failed, rolled back"
        )


class ItemNotFound(TasksError):
    """Item does not exist."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")
