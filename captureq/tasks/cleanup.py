"""
Inbox cleanup: AI-proposed grouping plus the bulk operations that apply it.

InboxAnalyzer asks the remote model to group the user's inbox. The user then
confirms an action per group, and CleanupExecutor applies it:

    complete_group -> completed = true, completed_at = now
    snooze_group   -> scheduled_bucket = someday
    archive_group  -> hard delete

Each operation is a single store transaction. If any id fails the whole group
is rolled back and PartialBulkFailure reports the per-id outcome, so retrying
the same group is safe.

When the model is unavailable the analysis instead carries local keyword
suggestions (work, home, gym or today), applied one item at a time.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from captureq.config import LLM_CIRCUIT_FAIL_MAX, LLM_CIRCUIT_RESET_SECONDS
from captureq.infrastructure.retry import CircuitBreaker
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter, log_event
from captureq.tasks.errors import EmptyGroup, ItemNotFound, PartialBulkFailure, RemoteClassificationFailed
from captureq.tasks.models import BulkResult, CleanupLog, Item, ScheduledBucket, utc_now
from captureq.tasks.remote import (
    CategorySuggestion,
    ClarifyingQuestion,
    InboxAnalysis,
    InboxAnalysisRemote,
    TaskGroup,
    TaskSuggestion,
    guarded_call,
)

if TYPE_CHECKING:
    from captureq.tasks.repository import CleanupLogStore, ItemStore

logger = get_logger(__name__)


class CleanupAction(str, Enum):
    COMPLETE = "complete"
    SNOOZE = "snooze"
    ARCHIVE = "archive"
    KEEP = "keep"


class GroupDecision(BaseModel):
    """User-confirmed action for one proposed group."""

    group_title: str = ""
    action: CleanupAction
    task_ids: list[str] = Field(default_factory=list)


@dataclass
class GroupOutcome:
    group_title: str
    action: CleanupAction
    result: BulkResult | None = None
    error: str | None = None

    @property
    def applied(self) -> bool:
        return self.result is not None and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_title": self.group_title,
            "action": self.action.value,
            "applied": self.applied,
            "result": self.result.model_dump() if self.result else None,
            "error": self.error,
        }


@dataclass
class CleanupReport:
    outcomes: list[GroupOutcome] = field(default_factory=list)
    log: CleanupLog | None = None


def inbox_items(items: Iterable[Item]) -> list[Item]:
    return [item for item in items if item.is_inbox() and not item.completed]


# Checked in order; the first matching category wins
LOCAL_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("work", ("meeting", "email", "client", "project", "report", "deadline", "boss", "coworker", "office")),
    ("home", ("bill", "grocery", "clean", "laundry", "cook", "fix", "call mom", "family", "apartment")),
    ("gym", ("gym", "workout", "exercise", "run", "weight", "fitness", "trainer")),
)
TODAY_KEYWORDS = ("quick", "5 min", "remind")
TODAY_CATEGORY = "today"
SHORT_TITLE_CHARS = 30


def categorize_locally(title: str) -> tuple[str | None, float]:
    """
    Keyword categorization used when the model is not available.

    Returns (category, confidence); category is None when nothing matched.
    Short titles and quick-win wording land in "today".
    """
    text = (title or "").lower()
    for category, keywords in LOCAL_CATEGORY_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category, 0.8
    if any(keyword in text for keyword in TODAY_KEYWORDS) or len(text) < SHORT_TITLE_CHARS:
        return TODAY_CATEGORY, 0.7
    return None, 0.0


def local_suggestions(items: Iterable[Item]) -> list[CategorySuggestion]:
    suggestions = []
    for item in inbox_items(items):
        category, confidence = categorize_locally(item.title)
        if category is not None:
            suggestions.append(
                CategorySuggestion(
                    task_id=item.id,
                    title=item.title,
                    suggested_category=category,
                    confidence=confidence,
                )
            )
    counter("cleanup.local_suggestions", len(suggestions))
    return suggestions


class InboxAnalyzer:
    """
    Remote grouping of the inbox with a deterministic fallback.

    Without a remote, or on any remote failure, the result is
    InboxAnalysis.unavailable() carrying the local keyword suggestions. Ids the
    model invents are dropped, and a task lands in at most one group.
    """

    def __init__(self, remote: InboxAnalysisRemote | None = None):
        self.remote = remote
        self._breaker = CircuitBreaker(
            "inbox", fail_max=LLM_CIRCUIT_FAIL_MAX, reset_timeout=LLM_CIRCUIT_RESET_SECONDS
        )

    def analyze(self, items: Sequence[Item]) -> InboxAnalysis:
        candidates = inbox_items(items)
        if not candidates:
            return InboxAnalysis()
        if self.remote is None:
            return InboxAnalysis.unavailable(local_suggestions(candidates))

        try:
            raw = guarded_call("inbox", self._breaker, self.remote.analyze_inbox, candidates)
        except RemoteClassificationFailed as e:
            counter("cleanup.analysis_unavailable")
            logger.warning("Inbox analysis unavailable: %s", e)
            return InboxAnalysis.unavailable(local_suggestions(candidates))

        analysis = sanitize_analysis(raw, {item.id for item in candidates})
        log_event(
            "cleanup.analyzed",
            inbox_size=len(candidates),
            groups=len(analysis.grouped_tasks),
            quick_wins=len(analysis.quick_wins),
            archive_suggestions=len(analysis.archive_suggestions),
        )
        return analysis


def sanitize_analysis(analysis: InboxAnalysis, known_ids: set[str]) -> InboxAnalysis:
    """Drop unknown ids, keep each task in its first group only, drop empty groups."""
    grouped: set[str] = set()
    groups: list[TaskGroup] = []
    for group in analysis.grouped_tasks:
        ids = []
        for task_id in group.task_ids:
            if task_id in known_ids and task_id not in grouped:
                grouped.add(task_id)
                ids.append(task_id)
        if ids:
            groups.append(group.model_copy(update={"task_ids": ids}))

    def unique_known(entries: list[Any]) -> list[Any]:
        seen: set[str] = set()
        kept = []
        for entry in entries:
            if entry.task_id in known_ids and entry.task_id not in seen:
                seen.add(entry.task_id)
                kept.append(entry)
        return kept

    quick_wins: list[TaskSuggestion] = unique_known(analysis.quick_wins)
    archive_suggestions: list[TaskSuggestion] = unique_known(analysis.archive_suggestions)
    questions: list[ClarifyingQuestion] = unique_known(analysis.questions)
    suggestions: list[CategorySuggestion] = unique_known(analysis.suggestions)

    dropped = sum(len(g.task_ids) for g in analysis.grouped_tasks) - len(grouped)
    if dropped:
        counter("cleanup.dropped_ids", dropped)

    return InboxAnalysis(
        grouped_tasks=groups,
        quick_wins=quick_wins,
        archive_suggestions=archive_suggestions,
        questions=questions,
        suggestions=suggestions,
        available=analysis.available,
    )


class CleanupExecutor:
    """Applies user-confirmed cleanup decisions against the item store."""

    def __init__(
        self,
        store: ItemStore,
        log_store: CleanupLogStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.log_store = log_store
        self.clock = clock

    def _filter(self, operation: str, ids: Iterable[str], user_id: str | None) -> tuple[list[str], list[str]]:
        """Split ids into (writable, skipped). Raises EmptyGroup before any write."""
        requested = list(dict.fromkeys(ids))
        found = {
            item.id: item
            for item in self.store.get_items(requested)
            if user_id is None or item.user_id == user_id
        }
        valid = [i for i in requested if i in found and not found[i].completed]
        skipped = [i for i in requested if i not in valid]
        if not valid:
            counter("cleanup.empty_group")
            raise EmptyGroup(operation, len(requested))
        return valid, skipped

    def _finish(self, result: BulkResult, skipped: list[str]) -> BulkResult:
        result.skipped = skipped
        if not result.ok:
            counter(f"cleanup.{result.operation}.partial_failure")
            logger.warning(
                "%s rolled back: %d ids failed (%s)",
                result.operation,
                len(result.failed),
                ", ".join(sorted(result.failed)),
            )
            raise PartialBulkFailure(result)
        counter(f"cleanup.{result.operation}", len(result.succeeded))
        log_event(
            "cleanup.bulk_applied",
            operation=result.operation,
            succeeded=len(result.succeeded),
            skipped=len(skipped),
        )
        return result

    def complete_group(self, ids: Iterable[str], user_id: str | None = None) -> BulkResult:
        valid, skipped = self._filter("complete_group", ids, user_id)
        result = self.store.bulk_update(
            valid, {"completed": True, "completed_at": self.clock()}, operation="complete_group"
        )
        return self._finish(result, skipped)

    def snooze_group(self, ids: Iterable[str], user_id: str | None = None) -> BulkResult:
        valid, skipped = self._filter("snooze_group", ids, user_id)
        result = self.store.bulk_update(
            valid, {"scheduled_bucket": ScheduledBucket.SOMEDAY}, operation="snooze_group"
        )
        return self._finish(result, skipped)

    def archive_group(self, ids: Iterable[str], user_id: str | None = None) -> BulkResult:
        valid, skipped = self._filter("archive_group", ids, user_id)
        result = self.store.delete_items(valid)
        return self._finish(result, skipped)

    def apply_suggestion(self, item_id: str, category: str, user_id: str | None = None) -> Item:
        """
        Move one item as suggested: "today" schedules it for today, any other
        category is written to the item's category.

        Raises:
            ItemNotFound: unknown, foreign or completed item
            ValueError: empty category
        """
        category = (category or "").strip().lower()
        if not category:
            raise ValueError("category must not be empty")

        found = self.store.get_items([item_id])
        if not found or (user_id is not None and found[0].user_id != user_id) or found[0].completed:
            raise ItemNotFound(item_id)

        if category == TODAY_CATEGORY:
            fields: dict[str, Any] = {"scheduled_bucket": ScheduledBucket.TODAY}
        else:
            fields = {"category": category}
        updated = self.store.update_item(item_id, fields)
        if updated is None:
            raise ItemNotFound(item_id)

        counter("cleanup.suggestion_applied")
        log_event("cleanup.suggestion_applied", item_id=item_id, category=category)
        return updated

    def apply_suggestions(
        self, suggestions: Sequence[CategorySuggestion], user_id: str | None = None
    ) -> BulkResult:
        """Apply each suggestion in turn. Items that vanished or were completed are skipped."""
        result = BulkResult(operation="apply_suggestions")
        for suggestion in suggestions:
            try:
                self.apply_suggestion(suggestion.task_id, suggestion.suggested_category, user_id=user_id)
            except ItemNotFound:
                result.skipped.append(suggestion.task_id)
            except ValueError as e:
                result.failed[suggestion.task_id] = str(e)
            else:
                result.succeeded.append(suggestion.task_id)
        return result

    def log_cleanup(
        self,
        user_id: str,
        completed: int,
        archived: int,
        snoozed: int,
        total_tasks: int,
    ) -> CleanupLog:
        """Write the audit record for one cleanup session."""
        entry = CleanupLog(
            user_id=user_id,
            total_tasks=total_tasks,
            completed_count=completed,
            archived_count=archived,
            snoozed_count=snoozed,
            created_at=self.clock(),
        )
        saved = self.log_store.insert(entry)
        log_event(
            "cleanup.logged",
            user_id=user_id,
            total_tasks=total_tasks,
            completed=completed,
            archived=archived,
            snoozed=snoozed,
        )
        return saved

    def apply_plan(self, user_id: str, decisions: Sequence[GroupDecision]) -> CleanupReport:
        """
        Apply every decision, then write one audit record.

        A failing group is reported in its outcome and left untouched for a
        retry; the other groups still apply. The audit record is skipped when
        nothing was applied.
        """
        total_tasks = len(self.store.load_items(user_id, {"completed": False, "inbox": True}))
        operations = {
            CleanupAction.COMPLETE: self.complete_group,
            CleanupAction.SNOOZE: self.snooze_group,
            CleanupAction.ARCHIVE: self.archive_group,
        }
        counts = {CleanupAction.COMPLETE: 0, CleanupAction.SNOOZE: 0, CleanupAction.ARCHIVE: 0}

        report = CleanupReport()
        for decision in decisions:
            if decision.action == CleanupAction.KEEP:
                continue
            outcome = GroupOutcome(group_title=decision.group_title, action=decision.action)
            try:
                outcome.result = operations[decision.action](decision.task_ids, user_id=user_id)
                counts[decision.action] += len(outcome.result.succeeded)
            except PartialBulkFailure as e:
                outcome.result = e.result
                outcome.error = str(e)
            except EmptyGroup as e:
                outcome.error = str(e)
            report.outcomes.append(outcome)

        if any(outcome.applied for outcome in report.outcomes):
            report.log = self.log_cleanup(
                user_id,
                completed=counts[CleanupAction.COMPLETE],
                archived=counts[CleanupAction.ARCHIVE],
                snoozed=counts[CleanupAction.SNOOZE],
                total_tasks=total_tasks,
            )
        return report
