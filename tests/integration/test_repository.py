"""
Integration tests for the SQLite repositories (temporary database per test).
"""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from captureq.infrastructure.database import get_db_path, validate_schema
from captureq.tasks.models import (
    CleanupLog,
    ItemCreate,
    MemoryProfile,
    PriorityTier,
    ProcessingStatus,
    ScheduledBucket,
    StalenessStatus,
)
from captureq.tasks.repository import (
    CleanupLogRepository,
    ItemRepository,
    MemoryProfileRepository,
)


def add_trigger(sql: str) -> None:
    conn = sqlite3.connect(get_db_path())
    conn.execute(sql)
    conn.commit()
    conn.close()


class TestSchema:
    def test_schema_validates(self, db):
        assert validate_schema() is True


class TestItemRepository:
    def test_create_and_round_trip(self, db, now):
        created = ItemRepository.create(
            ItemCreate(
                user_id="u1",
                title="Call plumber",
                processing_status=ProcessingStatus.PENDING,
                pending_audio_path="/audio/1.m4a",
                priority_tier=PriorityTier.MUST,
                reminder_time=now,
            )
        )

        loaded = ItemRepository.get_by_id(created.id)

        assert loaded == created
        assert loaded.processing_status == ProcessingStatus.PENDING
        assert loaded.priority_tier == PriorityTier.MUST
        assert loaded.reminder_time == now

    def test_ai_metadata_stored_as_json(self, save_item):
        item = save_item(ai_metadata={"memory_tags": ["a"], "priority": "COULD"})

        assert ItemRepository.get_by_id(item.id).ai_metadata == {"memory_tags": ["a"], "priority": "COULD"}

    def test_get_items_keeps_request_order(self, save_item):
        a, b, c = save_item(id="a"), save_item(id="b"), save_item(id="c")

        assert [i.id for i in ItemRepository.get_items(["c", "missing", "a", "c"])] == ["c", "a"]
        assert b.id == "b"

    def test_load_items_filters(self, save_item, now):
        save_item(id="open", user_id="u1")
        save_item(id="done", user_id="u1", completed=True)
        save_item(id="work", user_id="u1", category="work")
        save_item(id="stale", user_id="u1", staleness_status=StalenessStatus.STALE)
        save_item(id="theirs", user_id="u2")

        def load(filters):
            return sorted(i.id for i in ItemRepository.load_items("u1", filters))

        assert load({"completed": False}) == ["open", "stale", "work"]
        assert load({"completed": True}) == ["done"]
        assert load({"completed": False, "inbox": True}) == ["open", "stale"]
        assert load({"stale_only": True}) == ["stale"]
        assert len(ItemRepository.load_items(None)) == 5

    def test_load_items_oldest_first_with_limit(self, save_item, now):
        save_item(id="new", user_id="u1", created_at=now)
        save_item(id="old", user_id="u1", created_at=now - timedelta(days=2))

        assert [i.id for i in ItemRepository.load_items("u1", limit=1)] == ["old"]

    def test_update_item(self, save_item):
        item = save_item(title="Before")

        updated = ItemRepository.update_item(item.id, {"title": "After", "is_focus": True})

        assert updated.title == "After"
        assert updated.is_focus is True
        assert updated.updated_at != item.updated_at

    def test_update_item_compare_and_set(self, save_item):
        item = save_item(processing_status=ProcessingStatus.PROCESSING)

        stale = ItemRepository.update_item(
            item.id, {"processing_status": ProcessingStatus.FAILED}, expected=ProcessingStatus.PENDING
        )

        assert stale is None
        assert ItemRepository.get_by_id(item.id).processing_status == ProcessingStatus.PROCESSING

    def test_update_rejects_unknown_columns(self, save_item):
        item = save_item()

        with pytest.raises(ValueError):
            ItemRepository.update_item(item.id, {"user_id": "someone-else"})

    def test_update_missing_item(self, db):
        assert ItemRepository.update_item("missing", {"title": "x"}) is None


class TestBulkOperations:
    def test_bulk_update_all_succeed(self, save_item):
        save_item(id="a")
        save_item(id="b")

        result = ItemRepository.bulk_update(
            ["a", "b"], {"scheduled_bucket": ScheduledBucket.SOMEDAY}, operation="snooze_group"
        )

        assert result.ok
        assert result.succeeded == ["a", "b"]
        assert ItemRepository.get_by_id("b").scheduled_bucket == ScheduledBucket.SOMEDAY

    def test_bulk_update_rolls_back_on_any_failure(self, save_item):
        save_item(id="a")
        save_item(id="b")
        add_trigger(
            "CREATE TRIGGER fail_b BEFORE UPDATE ON items WHEN NEW.id = 'b' "
            "BEGIN SELECT RAISE(ABORT, 'cannot update b'); END"
        )

        result = ItemRepository.bulk_update(["a", "b"], {"completed": True}, operation="complete_group")

        assert result.rolled_back is True
        assert list(result.failed) == ["b"]
        assert "cannot update b" in result.failed["b"]
        assert ItemRepository.get_by_id("a").completed is False

    def test_bulk_update_reports_missing_ids(self, save_item):
        save_item(id="a")

        result = ItemRepository.bulk_update(["a", "ghost"], {"completed": True})

        assert result.failed == {"ghost": "not found"}
        assert ItemRepository.get_by_id("a").completed is False

    def test_delete_items(self, save_item):
        save_item(id="a")
        save_item(id="b")

        result = ItemRepository.delete_items(["a", "b"])

        assert result.succeeded == ["a", "b"]
        assert ItemRepository.get_items(["a", "b"]) == []

    def test_delete_rolls_back_on_failure(self, save_item):
        save_item(id="a")
        save_item(id="b")
        add_trigger(
            "CREATE TRIGGER keep_b BEFORE DELETE ON items WHEN OLD.id = 'b' "
            "BEGIN SELECT RAISE(ABORT, 'cannot delete b'); END"
        )

        result = ItemRepository.delete_items(["a", "b"])

        assert result.rolled_back is True
        assert [i.id for i in ItemRepository.get_items(["a", "b"])] == ["a", "b"]


class TestStalenessWrites:
    def test_set_staleness_only_changes_incomplete_rows(self, save_item):
        save_item(id="open")
        save_item(id="done", completed=True)
        save_item(id="already", staleness_status=StalenessStatus.STALE)

        updated = ItemRepository.set_staleness(["open", "done", "already"], StalenessStatus.STALE)

        assert updated == 1
        assert ItemRepository.get_by_id("done").staleness_status == StalenessStatus.ACTIVE

    def test_set_staleness_leaves_other_columns_and_updated_at(self, save_item):
        item = save_item(id="a", title="Original")
        ItemRepository.update_item("a", {"title": "Edited by user"})
        edited = ItemRepository.get_by_id("a")

        ItemRepository.set_staleness(["a"], StalenessStatus.EXPIRING)

        swept = ItemRepository.get_by_id("a")
        assert swept.title == "Edited by user"
        assert swept.updated_at == edited.updated_at
        assert item.title == "Original"

    def test_count_by_staleness(self, save_item):
        save_item(id="a", user_id="u1")
        save_item(id="b", user_id="u1", staleness_status=StalenessStatus.EXPIRING)

        counts = ItemRepository.count_by_staleness("u1")

        assert counts["active"] == 1
        assert counts["expiring"] == 1
        assert counts["stale"] == 0


class TestCleanupLogRepository:
    def test_insert_and_list_newest_first(self, db, now):
        first = CleanupLogRepository.insert(
            CleanupLog(user_id="u1", total_tasks=10, completed_count=2, created_at=now - timedelta(hours=1))
        )
        second = CleanupLogRepository.insert(
            CleanupLog(user_id="u1", total_tasks=8, archived_count=3, created_at=now)
        )
        CleanupLogRepository.insert(CleanupLog(user_id="u2", total_tasks=1, created_at=now))

        logs = CleanupLogRepository.list_by_user("u1")

        assert [log.id for log in logs] == [second.id, first.id]
        assert logs[0].archived_count == 3
        assert logs[1].total_tasks == 10


class TestMemoryProfileRepository:
    def test_default_when_missing(self, db):
        profile = MemoryProfileRepository.get("new-user")

        assert profile.tiny_task_threshold == 5

    def test_upsert(self, db):
        MemoryProfileRepository.save(MemoryProfile(user_id="u1", tiny_task_threshold=7))
        MemoryProfileRepository.save(MemoryProfile(user_id="u1", tiny_task_threshold=8))

        assert MemoryProfileRepository.get("u1").tiny_task_threshold == 8
