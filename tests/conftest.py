"""
Pytest configuration shared across captureq tests

Provides a fixed clock, an item factory, a throwaway SQLite database per test,
in-memory fakes for the remote AI capabilities, and an API client wired to a
service built from those fakes.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

import pytest

from captureq.observability import telemetry
from captureq.tasks.models import (
    BulkResult,
    CleanupLog,
    Item,
    ItemCreate,
    ProcessingStatus,
    StalenessStatus,
)
from captureq.tasks.remote import (
    CompressionResult,
    InboxAnalysis,
    IndexingResult,
    RemoteTinyTaskVerdict,
)

# ============================================================================
# Clock and items
# ============================================================================


@pytest.fixture
def now() -> datetime:
    """Fixed 'now' for deterministic tests."""
    return datetime(2026, 3, 10, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def make_item(now):
    """Factory for Item values; every field can be overridden."""

    def _make(**overrides: Any) -> Item:
        fields: dict[str, Any] = {
            "id": f"item-{uuid.uuid4().hex[:8]}",
            "user_id": "user-1",
            "title": "Buy milk",
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return Item(**fields)

    return _make


@pytest.fixture(autouse=True)
def reset_telemetry():
    telemetry.reset()
    yield
    telemetry.reset()


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def db(tmp_path, monkeypatch):
    """Fresh SQLite database for one test (CAPTUREQ_DB_PATH points at tmp_path)."""
    from captureq.infrastructure.database import init_database, reset_pool

    db_path = tmp_path / "captureq.db"
    monkeypatch.setenv("CAPTUREQ_DB_PATH", str(db_path))
    reset_pool()
    init_database()
    yield db_path
    reset_pool()


@pytest.fixture
def save_item(db, make_item):
    """Build an item with make_item and persist it."""
    from captureq.tasks.repository import ItemRepository

    def _save(**overrides: Any) -> Item:
        return ItemRepository.save(make_item(**overrides))

    return _save


# ============================================================================
# In-memory store
# ============================================================================


class InMemoryStore:
    """ItemStore backed by a dict. Ids in fail_ids make bulk writes fail."""

    def __init__(self, items: Sequence[Item] = ()):
        self.items: dict[str, Item] = {item.id: item for item in items}
        self.fail_ids: set[str] = set()
        self.logs: list[CleanupLog] = []
        self.writes = 0

    def create(self, data: ItemCreate) -> Item:
        item = Item(id=f"item-{uuid.uuid4().hex[:8]}", **data.model_dump())
        self.items[item.id] = item
        return item

    def load_items(self, user_id: str | None, filters: Mapping[str, Any] | None = None) -> list[Item]:
        filters = filters or {}
        result = []
        for item in self.items.values():
            if user_id is not None and item.user_id != user_id:
                continue
            if "completed" in filters and item.completed != filters["completed"]:
                continue
            if filters.get("inbox") and not item.is_inbox():
                continue
            if filters.get("stale_only") and item.staleness_status == StalenessStatus.ACTIVE:
                continue
            result.append(item)
        return sorted(result, key=lambda i: (i.created_at, i.id))

    def get_items(self, ids: Sequence[str]) -> list[Item]:
        return [self.items[i] for i in dict.fromkeys(ids) if i in self.items]

    def update_item(
        self,
        item_id: str,
        fields: Mapping[str, Any],
        expected: ProcessingStatus | None = None,
    ) -> Item | None:
        item = self.items.get(item_id)
        if item is None:
            return None
        if expected is not None and item.processing_status != expected:
            return None
        self.items[item_id] = item.model_copy(update=dict(fields))
        self.writes += 1
        return self.items[item_id]

    def bulk_update(
        self, ids: Sequence[str], fields: Mapping[str, Any], operation: str = "bulk_update"
    ) -> BulkResult:
        result = BulkResult(operation=operation)
        for item_id in ids:
            if item_id in self.fail_ids or item_id not in self.items:
                result.failed[item_id] = "write failed"
            else:
                result.succeeded.append(item_id)
        if result.failed:
            result.rolled_back = True
            return result
        for item_id in ids:
            self.items[item_id] = self.items[item_id].model_copy(update=dict(fields))
            self.writes += 1
        return result

    def delete_items(self, ids: Sequence[str], operation: str = "archive_group") -> BulkResult:
        result = BulkResult(operation=operation)
        for item_id in ids:
            if item_id in self.fail_ids or item_id not in self.items:
                result.failed[item_id] = "delete failed"
            else:
                result.succeeded.append(item_id)
        if result.failed:
            result.rolled_back = True
            return result
        for item_id in ids:
            del self.items[item_id]
            self.writes += 1
        return result

    def set_staleness(self, ids: Sequence[str], status: StalenessStatus) -> int:
        updated = 0
        for item_id in ids:
            item = self.items.get(item_id)
            if item is None or item.completed or item.staleness_status == status:
                continue
            self.items[item_id] = item.model_copy(update={"staleness_status": status})
            updated += 1
        return updated

    # CleanupLogStore
    def insert(self, entry: CleanupLog) -> CleanupLog:
        saved = entry.model_copy(update={"id": len(self.logs) + 1})
        self.logs.append(saved)
        return saved

    def list_by_user(self, user_id: str, limit: int = 20) -> list[CleanupLog]:
        return [log for log in reversed(self.logs) if log.user_id == user_id][:limit]


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


# ============================================================================
# Remote fakes
# ============================================================================


class _FakeRemote:
    """Records calls; raises `error` if set, sleeps `delay` seconds first."""

    def __init__(self):
        self.calls: list[tuple[Any, ...]] = []
        self.error: Exception | None = None
        self.delay = 0.0

    def _enter(self, *args: Any) -> None:
        self.calls.append(args)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error


class FakeTinyTaskRemote(_FakeRemote):
    def __init__(self):
        super().__init__()
        self.verdict = RemoteTinyTaskVerdict(is_tiny_task=True, reason="quick")

    def classify_tiny_task(self, title: str, context: str | None) -> RemoteTinyTaskVerdict:
        self._enter(title, context)
        return self.verdict


class FakeCompressor(_FakeRemote):
    def __init__(self):
        super().__init__()
        self.result = CompressionResult(ai_summary="Call the plumber about the leak.", confidence_score=0.9)

    def compress(self, text: str) -> CompressionResult:
        self._enter(text)
        return self.result


class FakeIndexer(_FakeRemote):
    def __init__(self):
        super().__init__()
        self.result = IndexingResult(memory_tags=["plumber", "home"], category="home", priority="MUST")

    def index(self, text: str, summary: str) -> IndexingResult:
        self._enter(text, summary)
        return self.result


class FakeInboxRemote(_FakeRemote):
    def __init__(self):
        super().__init__()
        self.analysis = InboxAnalysis()

    def analyze_inbox(self, items: Sequence[Item]) -> InboxAnalysis:
        self._enter([item.id for item in items])
        return self.analysis


@pytest.fixture
def tiny_remote() -> FakeTinyTaskRemote:
    return FakeTinyTaskRemote()


@pytest.fixture
def compressor() -> FakeCompressor:
    return FakeCompressor()


@pytest.fixture
def indexer() -> FakeIndexer:
    return FakeIndexer()


@pytest.fixture
def inbox_remote() -> FakeInboxRemote:
    return FakeInboxRemote()


# ============================================================================
# Service and API
# ============================================================================


@pytest.fixture
def service(db, now, tiny_remote, inbox_remote, compressor, indexer):
    """TasksService over the temporary SQLite database and the remote fakes."""
    from captureq.tasks.service import TasksService

    return TasksService(
        tiny_task_remote=tiny_remote,
        inbox_remote=inbox_remote,
        compressor=compressor,
        indexer=indexer,
        clock=lambda: now,
    )


@pytest.fixture
def client(db, service, monkeypatch):
    """FastAPI TestClient with the sweep thread off and the service overridden."""
    from fastapi.testclient import TestClient

    monkeypatch.setenv("CAPTUREQ_SWEEP_ENABLED", "false")

    from captureq.api.app import app
    from captureq.tasks.service import get_tasks_service

    app.dependency_overrides[get_tasks_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
