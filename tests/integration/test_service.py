"""
End-to-end tests for TasksService over a temporary SQLite database, with the
remote AI capabilities replaced by fakes.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from captureq.observability.telemetry import get_counters
from captureq.tasks.cleanup import CleanupAction, GroupDecision
from captureq.tasks.errors import EmptyGroup, InvalidTransition, ItemNotFound, PartialBulkFailure
from captureq.tasks.models import (
    ItemCreate,
    PriorityTier,
    ProcessingStatus,
    ScheduledBucket,
    StalenessStatus,
)
from captureq.tasks.remote import InboxAnalysis, TaskGroup
from captureq.tasks.repository import ItemRepository, MemoryProfileRepository

TRANSCRIPT = "So I really need to remember to renew the car insurance before it lapses at the end of the month"


class TestItems:
    def test_list_items_sorted_with_display(self, service, save_item, now):
        save_item(id="could", user_id="u1", priority_tier=PriorityTier.COULD)
        save_item(id="must", user_id="u1", priority_tier=PriorityTier.MUST)
        save_item(id="done", user_id="u1", completed=True)
        save_item(
            id="voice",
            user_id="u1",
            title="",
            processing_status=ProcessingStatus.PENDING,
            pending_audio_path="/a.m4a",
        )

        listed = service.list_items("u1")

        assert [item.id for item, _ in listed] == ["must", "voice", "could"]
        voice_display = dict((item.id, display) for item, display in listed)["voice"]
        assert voice_display.is_pending is True
        assert voice_display.show_expand_indicator is False

    def test_get_item_enforces_ownership(self, service, save_item):
        save_item(id="a", user_id="u1")

        assert service.get_item("a", "u1").id == "a"
        with pytest.raises(ItemNotFound):
            service.get_item("a", "u2")


class TestClassification:
    def test_classify_persists_verdict_and_learns(self, service, save_item):
        save_item(id="a", user_id="u1", title="Pay electric bill")

        item, verdict = service.classify_item("a")

        assert verdict.is_tiny is True
        assert verdict.source == "ai"
        assert item.is_tiny_task is True
        assert ItemRepository.get_by_id("a").is_tiny_task is True
        # (5 + 17) / 2 = 11
        assert MemoryProfileRepository.get("u1").tiny_task_threshold == 11

    def test_ai_outage_is_invisible(self, service, save_item, tiny_remote):
        tiny_remote.error = ConnectionError("503")
        save_item(id="a", user_id="u1", title="Research vendors")

        item, verdict = service.classify_item("a")

        assert verdict.source == "heuristic"
        assert item.is_tiny_task is False

    def test_tiny_tasks_and_fiesta(self, service, save_item):
        for n in range(5):
            save_item(id=f"t{n}", user_id="u1", title=f"Pay bill {n}")
        save_item(id="big", user_id="u1", title="Design the new onboarding flow")

        tiny = service.tiny_tasks("u1")

        assert sorted(item.id for item, _ in tiny) == ["t0", "t1", "t2", "t3", "t4"]
        assert service.should_suggest_fiesta("u1") is True
        assert service.should_suggest_fiesta("u1", min_count=6) is False


class TestEnrichment:
    def test_voice_capture_end_to_end(self, service, compressor):
        created = service.create_item(
            ItemCreate(user_id="u1", processing_status=ProcessingStatus.PENDING, pending_audio_path="/v.m4a")
        )

        service.start_enrichment(created.id)
        result = service.ingest_transcript(created.id, TRANSCRIPT)

        assert result.processing_status == ProcessingStatus.INDEXED
        assert result.raw_content == TRANSCRIPT
        assert result.ai_summary == compressor.result.ai_summary
        assert result.pending_audio_path is None
        assert result.effective_priority() == PriorityTier.MUST
        assert ItemRepository.get_by_id(created.id) == result

    def test_failure_and_retry(self, service):
        created = service.create_item(
            ItemCreate(user_id="u1", processing_status=ProcessingStatus.PENDING, pending_audio_path="/v.m4a")
        )

        failed = service.fail_enrichment(created.id)
        assert failed.processing_status == ProcessingStatus.FAILED
        assert failed.pending_audio_path == "/v.m4a"

        retried = service.retry_enrichment(created.id)
        assert retried.processing_status == ProcessingStatus.PENDING

        with pytest.raises(InvalidTransition):
            service.retry_enrichment(created.id)

    def test_transcript_for_failed_item_is_ignored(self, service):
        created = service.create_item(ItemCreate(user_id="u1", processing_status=ProcessingStatus.PENDING))
        service.fail_enrichment(created.id)

        result = service.ingest_transcript(created.id, TRANSCRIPT)

        assert result.processing_status == ProcessingStatus.FAILED
        assert result.raw_content is None
        assert get_counters("enrichment.transition_absorbed")["enrichment.transition_absorbed"] >= 1


class TestStaleness:
    def test_sweep_scenarios(self, service, save_item, now):
        save_item(id="eight", user_id="u1", created_at=now - timedelta(days=8))
        save_item(id="twenty", user_id="u1", created_at=now - timedelta(days=20))
        save_item(id="twentytwo", user_id="u1", created_at=now - timedelta(days=22))
        save_item(id="done", user_id="u1", created_at=now - timedelta(days=60), completed=True)
        save_item(id="new", user_id="u1", created_at=now - timedelta(days=1))

        report = service.run_staleness_sweep()

        def status(item_id):
            return ItemRepository.get_by_id(item_id).staleness_status

        assert status("eight") == StalenessStatus.STALE
        assert status("twenty") == StalenessStatus.DECISION_REQUIRED
        assert status("twentytwo") == StalenessStatus.EXPIRING
        assert status("done") == StalenessStatus.ACTIVE
        assert status("new") == StalenessStatus.ACTIVE
        assert report.total_updated == 3
        assert [i.id for i in service.list_stale_items("u1")] == ["twentytwo", "twenty", "eight"]

    def test_resolve_actions(self, service, save_item, now):
        for item_id in ("a", "b", "c"):
            save_item(id=item_id, user_id="u1", created_at=now - timedelta(days=15))
        service.run_staleness_sweep()

        archived = service.resolve_stale("a", "archive")
        scheduled = service.resolve_stale("b", "schedule_for_today")
        dismissed = service.resolve_stale("c", "dismiss_for_now")

        assert archived.completed is True
        assert scheduled.is_focus is True
        assert scheduled.focus_date == now.date().isoformat()
        assert scheduled.staleness_status == StalenessStatus.ACTIVE
        assert dismissed.staleness_status == StalenessStatus.ACTIVE
        assert dismissed.is_focus is False
        assert service.list_stale_items("u1") == []

    def test_unknown_action(self, service, save_item):
        save_item(id="a", user_id="u1")

        with pytest.raises(ValueError):
            service.resolve_stale("a", "snooze_forever")


class TestCleanup:
    @pytest.fixture
    def inbox(self, save_item, now):
        for n, title in enumerate(["Email Sam", "Pay water bill", "Old idea", "Call vet"]):
            save_item(id=f"i{n}", user_id="u1", title=title, created_at=now - timedelta(hours=n))
        save_item(id="sorted", user_id="u1", category="work")

    def test_analyze_inbox(self, service, inbox, inbox_remote):
        inbox_remote.analysis = InboxAnalysis(
            grouped_tasks=[TaskGroup(group_title="Admin", task_ids=["i0", "i1", "sorted", "ghost"])]
        )

        analysis = service.analyze_inbox("u1")

        assert analysis.grouped_tasks[0].task_ids == ["i0", "i1"]
        assert sorted(inbox_remote.calls[0][0]) == ["i0", "i1", "i2", "i3"]

    def test_apply_cleanup_writes_audit_record(self, service, inbox, now):
        report = service.apply_cleanup(
            "u1",
            [
                GroupDecision(group_title="Admin", action=CleanupAction.COMPLETE, task_ids=["i0", "i1"]),
                GroupDecision(group_title="Later", action=CleanupAction.SNOOZE, task_ids=["i3"]),
                GroupDecision(group_title="Drop", action=CleanupAction.ARCHIVE, task_ids=["i2"]),
            ],
        )

        assert all(outcome.applied for outcome in report.outcomes)
        assert ItemRepository.get_by_id("i0").completed_at == now
        assert ItemRepository.get_by_id("i3").scheduled_bucket == ScheduledBucket.SOMEDAY
        assert ItemRepository.get_by_id("i2") is None

        history = service.cleanup_history("u1")
        assert len(history) == 1
        assert history[0].total_tasks == 4
        assert (history[0].completed_count, history[0].snoozed_count, history[0].archived_count) == (2, 1, 1)

    def test_complete_empty_group(self, service, inbox):
        with pytest.raises(EmptyGroup):
            service.complete_group("u1", [])

    def test_group_ops_do_not_touch_other_users(self, service, inbox, save_item):
        save_item(id="foreign", user_id="u2")

        result = service.archive_group("u1", ["i0", "foreign"])

        assert result.skipped == ["foreign"]
        assert ItemRepository.get_by_id("foreign") is not None

    def test_partial_failure_leaves_group_intact(self, service, inbox):
        import sqlite3

        from captureq.infrastructure.database import get_db_path

        conn = sqlite3.connect(get_db_path())
        conn.execute(
            "CREATE TRIGGER fail_i1 BEFORE UPDATE ON items WHEN NEW.id = 'i1' "
            "BEGIN SELECT RAISE(ABORT, 'locked row'); END"
        )
        conn.commit()
        conn.close()

        with pytest.raises(PartialBulkFailure) as exc_info:
            service.snooze_group("u1", ["i0", "i1"])

        assert list(exc_info.value.result.failed) == ["i1"]
        assert ItemRepository.get_by_id("i0").scheduled_bucket is None
