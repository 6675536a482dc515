"""
Enrichment state machine and the pipeline that drives captures through it.

    pending -> processing -> transcribed -> summarized -> indexed | completed
                  \\______________\\______________\\_______> failed

Every non-terminal state may jump to failed. none, indexed, completed and
failed are terminal; retry() is the only way out of failed (back to pending).

advance() and retry() are pure: they return a TransitionResult describing the
new item and the fields to write. EnrichmentPipeline persists those fields
with a conditional write on the status it expected, so duplicate or
out-of-order deliveries become no-ops instead of regressions.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from captureq.config import (
    ENRICHMENT_FALLBACK_CONFIDENCE,
    ENRICHMENT_MIN_COMPRESS_CHARS,
    ENRICHMENT_TITLE_MAX_CHARS,
    LLM_CIRCUIT_FAIL_MAX,
    LLM_CIRCUIT_RESET_SECONDS,
)
from captureq.infrastructure.retry import CircuitBreaker
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter, log_event
from captureq.tasks.errors import InvalidTransition, ItemNotFound, RemoteClassificationFailed
from captureq.tasks.models import Item, ProcessingStatus, utc_now
from captureq.tasks.remote import CompressionRemote, IndexingRemote, guarded_call

if TYPE_CHECKING:
    from captureq.tasks.repository import ItemStore

logger = get_logger(__name__)

S = ProcessingStatus

_RANK: dict[ProcessingStatus, int] = {
    S.PENDING: 0,
    S.PROCESSING: 1,
    S.TRANSCRIBED: 2,
    S.SUMMARIZED: 3,
    S.INDEXED: 4,
    S.COMPLETED: 4,
}

TERMINAL_STATES = frozenset({S.NONE, S.INDEXED, S.COMPLETED, S.FAILED})
TERMINAL_SUCCESS = frozenset({S.INDEXED, S.COMPLETED})

PAYLOAD_FIELDS: dict[ProcessingStatus, frozenset[str]] = {
    S.PENDING: frozenset(),
    S.PROCESSING: frozenset(),
    S.TRANSCRIBED: frozenset({"raw_content", "title"}),
    S.SUMMARIZED: frozenset({"ai_summary", "ai_confidence", "title"}),
    S.INDEXED: frozenset({"ai_metadata", "category"}),
    S.COMPLETED: frozenset({"ai_metadata", "category"}),
    S.FAILED: frozenset({"title"}),
}

FAILED_TRANSCRIPTION_TITLE = "Voice note (transcription failed - tap to retry)"


@dataclass
class TransitionResult:
    """Outcome of advance()/retry(). changes is empty when applied is False."""

    item: Item
    changes: dict[str, Any] = field(default_factory=dict)
    applied: bool = True
    previous: ProcessingStatus | None = None


def _same_state(a: ProcessingStatus, b: ProcessingStatus) -> bool:
    return a == b or (a in TERMINAL_SUCCESS and b in TERMINAL_SUCCESS)


def is_reachable(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    """True if target is the next forward state of current, or failed."""
    if current in TERMINAL_STATES:
        return False
    if target == S.FAILED:
        return True
    if target not in _RANK:
        return False
    return _RANK[target] == _RANK[current] + 1


def advance(
    item: Item,
    new_status: ProcessingStatus,
    payload: Mapping[str, Any] | None = None,
) -> TransitionResult:
    """
    Move item to new_status, applying payload fields.

    Re-applying the status the item is already in with the same payload is a
    no-op (applied=False). The input item is never mutated.

    Raises:
        InvalidTransition: backward move, skipped state, move out of a
            terminal state, or same status with a conflicting payload
        ValueError: payload carries fields the target state does not own,
            or a value the item model rejects (e.g. confidence outside [0, 1])
    """
    payload = dict(payload or {})
    current = item.processing_status

    unknown = set(payload) - PAYLOAD_FIELDS.get(new_status, frozenset())
    if unknown:
        raise ValueError(f"Fields {sorted(unknown)} cannot be set by a {new_status.value} transition")

    if _same_state(current, new_status):
        if all(getattr(item, name) == value for name, value in payload.items()):
            counter("enrichment.duplicate_transition")
            return TransitionResult(item=item, applied=False, previous=current)
        raise InvalidTransition(item.id, current, new_status, "conflicting payload for current state")

    if not is_reachable(current, new_status):
        if current in TERMINAL_STATES:
            reason = "current state is terminal"
        elif new_status in _RANK and _RANK[new_status] <= _RANK.get(current, -1):
            reason = "backward move"
        else:
            reason = "skips a required state"
        raise InvalidTransition(item.id, current, new_status, reason)

    changes: dict[str, Any] = {"processing_status": new_status, **payload}
    if new_status in TERMINAL_SUCCESS:
        changes["pending_audio_path"] = None

    # Validate here: a bad value written to the row would make it unreadable
    try:
        updated = Item.model_validate({**item.model_dump(), **changes})
    except ValidationError as e:
        fields = sorted({str(err["loc"][0]) for err in e.errors() if err["loc"]})
        raise ValueError(f"Invalid {new_status.value} payload for fields {fields}") from e
    changes = {name: getattr(updated, name) for name in changes}

    return TransitionResult(item=updated, changes=changes, previous=current)


def retry(item: Item) -> TransitionResult:
    """
    Reset a failed capture to pending. Raw content and audio path are kept.

    Raises:
        InvalidTransition: item is not in the failed state
    """
    if item.processing_status != S.FAILED:
        raise InvalidTransition(item.id, item.processing_status, S.PENDING, "only failed items can be retried")

    changes: dict[str, Any] = {"processing_status": S.PENDING}
    return TransitionResult(item=item.model_copy(update=changes), changes=changes, previous=S.FAILED)


def truncate_title(text: str, limit: int = ENRICHMENT_TITLE_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class EnrichmentPipeline:
    """
    Drives one capture through transcription, compression and indexing.

    The store is the only writer. Remote stages are best-effort: compression
    failure still reaches summarized (with a low confidence so the raw layer
    shows) and indexing failure still reaches indexed (without metadata).
    """

    def __init__(
        self,
        store: ItemStore,
        compressor: CompressionRemote | None = None,
        indexer: IndexingRemote | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.compressor = compressor
        self.indexer = indexer
        self.clock = clock
        self._compress_breaker = CircuitBreaker(
            "compress", fail_max=LLM_CIRCUIT_FAIL_MAX, reset_timeout=LLM_CIRCUIT_RESET_SECONDS
        )
        self._index_breaker = CircuitBreaker(
            "index", fail_max=LLM_CIRCUIT_FAIL_MAX, reset_timeout=LLM_CIRCUIT_RESET_SECONDS
        )

    def _load(self, item_id: str) -> Item:
        items = self.store.get_items([item_id])
        if not items:
            raise ItemNotFound(item_id)
        return items[0]

    def _apply(
        self,
        item: Item,
        target: ProcessingStatus,
        payload: Mapping[str, Any] | None = None,
    ) -> Item:
        """Persist one transition; stale or out-of-order moves are logged and absorbed."""
        try:
            result = advance(item, target, payload)
        except InvalidTransition as e:
            counter("enrichment.transition_absorbed")
            logger.info("Ignoring out-of-order enrichment step: %s", e)
            return item

        if not result.applied:
            return item

        stored = self.store.update_item(item.id, result.changes, expected=item.processing_status)
        if stored is None:
            # Someone else moved the item since we read it
            counter("enrichment.stale_write")
            current = self._load(item.id)
            logger.info(
                "Enrichment write for %s lost race (expected %s, found %s)",
                item.id,
                item.processing_status.value,
                current.processing_status.value,
            )
            return current

        log_event(
            "enrichment.transition",
            item_id=item.id,
            from_status=item.processing_status.value,
            to_status=target.value,
        )
        return stored

    def start(self, item_id: str) -> Item:
        """Mark a pending capture as being transcribed."""
        return self._apply(self._load(item_id), S.PROCESSING)

    def fail(self, item_id: str, title: str = FAILED_TRANSCRIPTION_TITLE) -> Item:
        item = self._load(item_id)
        counter("enrichment.failed")
        return self._apply(item, S.FAILED, {"title": title})

    def retry(self, item_id: str) -> Item:
        """
        Reset a failed capture to pending.

        Raises:
            ItemNotFound: unknown id
            InvalidTransition: item is not failed
        """
        item = self._load(item_id)
        result = retry(item)
        stored = self.store.update_item(item.id, result.changes, expected=S.FAILED)
        if stored is None:
            current = self._load(item_id)
            raise InvalidTransition(item_id, current.processing_status, S.PENDING, "item changed concurrently")
        counter("enrichment.retried")
        log_event("enrichment.retry", item_id=item_id)
        return stored

    def ingest_transcript(self, item_id: str, text: str) -> Item:
        """
        Run the rest of the pipeline for a finished transcription.

        Raw text is saved before any remote call so it is never lost. An empty
        transcript fails the capture, keeping the audio path for a retry.
        """
        item = self._load(item_id)
        if item.processing_status == S.PENDING:
            item = self._apply(item, S.PROCESSING)

        text = (text or "").strip()
        if not text:
            if item.processing_status in TERMINAL_STATES:
                return item
            counter("enrichment.empty_transcript")
            return self._apply(item, S.FAILED, {"title": FAILED_TRANSCRIPTION_TITLE})

        item = self._apply(item, S.TRANSCRIBED, {"raw_content": text, "title": truncate_title(text)})
        if item.processing_status != S.TRANSCRIBED:
            return item

        summary = text
        if self.compressor is not None and len(text) > ENRICHMENT_MIN_COMPRESS_CHARS:
            try:
                compressed = guarded_call("compress", self._compress_breaker, self.compressor.compress, text)
                summary = compressed.ai_summary
                item = self._apply(
                    item,
                    S.SUMMARIZED,
                    {
                        "ai_summary": compressed.ai_summary,
                        "ai_confidence": compressed.confidence_score,
                        "title": truncate_title(compressed.ai_summary),
                    },
                )
            except RemoteClassificationFailed as e:
                logger.warning("Compression unavailable for %s, keeping raw transcript: %s", item_id, e)
                item = self._apply(item, S.SUMMARIZED, {"ai_confidence": ENRICHMENT_FALLBACK_CONFIDENCE})
        else:
            item = self._apply(item, S.SUMMARIZED)

        if item.processing_status != S.SUMMARIZED:
            return item

        if self.indexer is None:
            return self._apply(item, S.INDEXED)

        try:
            indexed = guarded_call("index", self._index_breaker, self.indexer.index, text, summary)
        except RemoteClassificationFailed as e:
            logger.warning("Indexing unavailable for %s: %s", item_id, e)
            return self._apply(item, S.INDEXED)

        payload: dict[str, Any] = {
            "ai_metadata": {
                "memory_tags": indexed.memory_tags,
                "category": indexed.category,
                "priority": indexed.priority,
                "indexed_at": self.clock().isoformat(),
            }
        }
        if indexed.category and indexed.category != "inbox":
            payload["category"] = indexed.category
        return self._apply(item, S.INDEXED, payload)
