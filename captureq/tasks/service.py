"""Tasks service layer - facade between API routes and the pipeline components.

Wires the pure components (resolver, sorter, classifier) to the stores and
the remote AI adapters, and enforces ownership: an item that belongs to
another user is reported as not found.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime
from functools import lru_cache

from captureq.config import FIESTA_MIN_TASKS
from captureq.infrastructure.settings import use_llm
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter
from captureq.tasks import staleness
from captureq.tasks.cleanup import (
    CleanupExecutor,
    CleanupReport,
    GroupDecision,
    InboxAnalyzer,
)
from captureq.tasks.display import DisplayState, resolve
from captureq.tasks.enrichment import EnrichmentPipeline
from captureq.tasks.errors import ItemNotFound
from captureq.tasks.models import BulkResult, CleanupLog, Item, ItemCreate, utc_now
from captureq.tasks.remote import (
    CategorySuggestion,
    CompressionRemote,
    GeminiCompressionRemote,
    GeminiInboxAnalysisRemote,
    GeminiIndexingRemote,
    GeminiTinyTaskRemote,
    InboxAnalysis,
    InboxAnalysisRemote,
    IndexingRemote,
    TinyTaskRemote,
)
from captureq.tasks.repository import (
    CleanupLogRepository,
    CleanupLogStore,
    ItemRepository,
    ItemStore,
    MemoryProfileRepository,
)
from captureq.tasks.sorting import sort_items
from captureq.tasks.tiny_tasks import (
    TinyTaskClassification,
    TinyTaskClassifier,
    find_tiny_tasks,
    learn_tiny_task_threshold,
)
from captureq.tasks.tiny_tasks import classify as classify_heuristic

logger = get_logger(__name__)


class TasksService:
    """Service layer for capture/task operations."""

    def __init__(
        self,
        store: ItemStore = ItemRepository,  # type: ignore[assignment]
        log_store: CleanupLogStore = CleanupLogRepository,  # type: ignore[assignment]
        profiles: type[MemoryProfileRepository] = MemoryProfileRepository,
        tiny_task_remote: TinyTaskRemote | None = None,
        inbox_remote: InboxAnalysisRemote | None = None,
        compressor: CompressionRemote | None = None,
        indexer: IndexingRemote | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.profiles = profiles
        self.clock = clock
        self.classifier = TinyTaskClassifier(tiny_task_remote)
        self.analyzer = InboxAnalyzer(inbox_remote)
        self.cleanup = CleanupExecutor(store, log_store, clock=clock)
        self.log_store = log_store
        self.pipeline = EnrichmentPipeline(store, compressor, indexer, clock=clock)

    # --- Items ---

    def create_item(self, data: ItemCreate) -> Item:
        return self.store.create(data)

    def get_item(self, item_id: str, user_id: str | None = None) -> Item:
        """
        Raises:
            ItemNotFound: unknown id, or owned by a different user
        """
        items = self.store.get_items([item_id])
        if not items or (user_id is not None and items[0].user_id != user_id):
            raise ItemNotFound(item_id)
        return items[0]

    def list_items(
        self,
        user_id: str,
        now: datetime | None = None,
        limit: int | None = None,
    ) -> list[tuple[Item, DisplayState]]:
        """Incomplete items in display order, each with its resolved display state."""
        items = self.store.load_items(user_id, {"completed": False})
        ordered = sort_items(items, now or self.clock())
        if limit is not None:
            ordered = ordered[:limit]
        return [(item, resolve(item)) for item in ordered]

    # --- Tiny tasks ---

    def classify_item(self, item_id: str, user_id: str | None = None) -> tuple[Item, TinyTaskClassification]:
        """
        Classify one item, store the verdict and fold it into the user's
        learned tiny-task threshold.
        """
        item = self.get_item(item_id, user_id)
        profile = self.profiles.get(item.user_id)
        verdict = self.classifier.classify(item, profile)

        updated = self.store.update_item(item.id, {"is_tiny_task": verdict.is_tiny}) or item
        learned = learn_tiny_task_threshold(profile, updated)
        if learned is not profile:
            self.profiles.save(learned)
            logger.debug(
                "Tiny-task threshold for %s: %d -> %d",
                item.user_id,
                profile.tiny_task_threshold,
                learned.tiny_task_threshold,
            )
        counter("tasks.classified")
        return updated, verdict

    def tiny_tasks(self, user_id: str) -> list[tuple[Item, TinyTaskClassification]]:
        profile = self.profiles.get(user_id)
        items = self.store.load_items(user_id, {"completed": False})
        return [(item, classify_heuristic(item, profile)) for item in find_tiny_tasks(items, profile)]

    def should_suggest_fiesta(self, user_id: str, min_count: int = FIESTA_MIN_TASKS) -> bool:
        return len(self.tiny_tasks(user_id)) >= min_count

    # --- Enrichment ---

    def start_enrichment(self, item_id: str, user_id: str | None = None) -> Item:
        self.get_item(item_id, user_id)
        return self.pipeline.start(item_id)

    def ingest_transcript(self, item_id: str, text: str, user_id: str | None = None) -> Item:
        self.get_item(item_id, user_id)
        return self.pipeline.ingest_transcript(item_id, text)

    def fail_enrichment(self, item_id: str, user_id: str | None = None) -> Item:
        self.get_item(item_id, user_id)
        return self.pipeline.fail(item_id)

    def retry_enrichment(self, item_id: str, user_id: str | None = None) -> Item:
        self.get_item(item_id, user_id)
        return self.pipeline.retry(item_id)

    # --- Staleness ---

    def run_staleness_sweep(
        self, user_id: str | None = None, now: datetime | None = None
    ) -> staleness.SweepReport:
        return staleness.run_staleness_sweep(self.store, now or self.clock(), user_id)

    def list_stale_items(self, user_id: str) -> list[Item]:
        """Incomplete items past the stale threshold, oldest first."""
        return self.store.load_items(user_id, {"completed": False, "stale_only": True})

    def resolve_stale(self, item_id: str, action: str, user_id: str | None = None) -> Item:
        """
        Raises:
            ItemNotFound: unknown or foreign item
            ValueError: unknown action
        """
        if action not in staleness.RESOLUTION_ACTIONS:
            raise ValueError(f"Unknown staleness action: {action}")
        self.get_item(item_id, user_id)
        if action == "dismiss_for_now":
            return staleness.dismiss_for_now(self.store, item_id)
        return staleness.RESOLUTION_ACTIONS[action](self.store, item_id, self.clock())

    # --- Cleanup ---

    def analyze_inbox(self, user_id: str) -> InboxAnalysis:
        items = self.store.load_items(user_id, {"completed": False, "inbox": True})
        return self.analyzer.analyze(items)

    def complete_group(self, user_id: str, ids: Sequence[str]) -> BulkResult:
        return self.cleanup.complete_group(ids, user_id=user_id)

    def snooze_group(self, user_id: str, ids: Sequence[str]) -> BulkResult:
        return self.cleanup.snooze_group(ids, user_id=user_id)

    def archive_group(self, user_id: str, ids: Sequence[str]) -> BulkResult:
        return self.cleanup.archive_group(ids, user_id=user_id)

    def apply_suggestion(self, user_id: str, item_id: str, category: str) -> Item:
        return self.cleanup.apply_suggestion(item_id, category, user_id=user_id)

    def apply_suggestions(self, user_id: str, suggestions: Sequence[CategorySuggestion]) -> BulkResult:
        return self.cleanup.apply_suggestions(suggestions, user_id=user_id)

    def log_cleanup(
        self, user_id: str, completed: int, archived: int, snoozed: int, total_tasks: int
    ) -> CleanupLog:
        return self.cleanup.log_cleanup(user_id, completed, archived, snoozed, total_tasks)

    def apply_cleanup(self, user_id: str, decisions: Sequence[GroupDecision]) -> CleanupReport:
        return self.cleanup.apply_plan(user_id, decisions)

    def cleanup_history(self, user_id: str, limit: int = 20) -> list[CleanupLog]:
        return self.log_store.list_by_user(user_id, limit)


@lru_cache(maxsize=1)
def get_tasks_service() -> TasksService:
    """
    Process-wide service. Gemini adapters are wired in only when
    CAPTUREQ_USE_LLM=true; otherwise every AI stage uses its fallback.
    """
    if not use_llm():
        logger.info("LLM disabled (CAPTUREQ_USE_LLM != true); heuristics only")
        return TasksService()

    return TasksService(
        tiny_task_remote=GeminiTinyTaskRemote(),
        inbox_remote=GeminiInboxAnalysisRemote(),
        compressor=GeminiCompressionRemote(),
        indexer=GeminiIndexingRemote(),
    )
