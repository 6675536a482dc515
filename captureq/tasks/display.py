"""
Dual-layer display resolver.

A capture can carry two texts: the raw layer (what the user said or typed)
and the AI layer (the compressed summary). resolve() decides which one the
list shows and whether an "expand to original" affordance is offered. It is
a pure function of the item and never raises.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from captureq.config import LONG_ENTRY_CHARS, LOW_CONFIDENCE_THRESHOLD, TRANSCRIPT_PREVIEW_CHARS
from captureq.observability.logging import get_logger
from captureq.tasks.models import Item, ProcessingStatus

logger = get_logger(__name__)

FAILED_PLACEHOLDER = "Voice note processing failed - tap to retry"
PENDING_PLACEHOLDER = "Voice note processing…"
PROCESSING_PLACEHOLDER = "Transcribing voice note…"
EMPTY_PLACEHOLDER = "Empty capture"

_SUMMARY_STATES = frozenset(
    {
        ProcessingStatus.SUMMARIZED,
        ProcessingStatus.INDEXED,
        ProcessingStatus.COMPLETED,
        ProcessingStatus.NONE,
    }
)
_IN_FLIGHT = frozenset(
    {
        ProcessingStatus.PENDING,
        ProcessingStatus.PROCESSING,
        ProcessingStatus.TRANSCRIBED,
    }
)


@dataclass(frozen=True)
class DisplayState:
    display_text: str
    raw_content: str | None
    has_ai_summary: bool
    has_dual_layer: bool
    is_long_entry: bool
    low_confidence: bool
    confidence: float
    show_expand_indicator: bool
    is_empty: bool
    is_pending: bool
    processing_status: ProcessingStatus

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["processing_status"] = self.processing_status.value
        return data


def _preview(raw: str, limit: int = TRANSCRIPT_PREVIEW_CHARS) -> str:
    first_line = raw.strip().splitlines()[0] if raw.strip() else ""
    if len(first_line) <= limit:
        return first_line
    return first_line[: limit - 3] + "..."


def _resolve(item: Item) -> DisplayState:
    status = item.processing_status or ProcessingStatus.NONE
    raw = item.raw_content or None
    title = item.title or ""
    summary = item.ai_summary or None
    confidence = 1.0 if item.ai_confidence is None else float(item.ai_confidence)

    has_ai_summary = bool(summary and summary.strip())
    low_confidence = confidence < LOW_CONFIDENCE_THRESHOLD
    raw_layer = raw or title
    has_dual_layer = has_ai_summary and summary.strip() != raw_layer.strip()

    if status == ProcessingStatus.FAILED:
        display_text = FAILED_PLACEHOLDER
    elif status == ProcessingStatus.PENDING:
        display_text = PENDING_PLACEHOLDER
    elif status == ProcessingStatus.PROCESSING:
        display_text = PROCESSING_PLACEHOLDER
    elif status == ProcessingStatus.TRANSCRIBED and raw:
        display_text = _preview(raw) or title
    elif status in _SUMMARY_STATES and has_ai_summary and not low_confidence:
        display_text = summary
    else:
        display_text = raw_layer

    is_empty = not (display_text.strip() or (raw and raw.strip()) or item.pending_audio_path)
    if is_empty or not display_text.strip():
        display_text = EMPTY_PLACEHOLDER

    is_long_entry = len(display_text) > LONG_ENTRY_CHARS or len(raw or "") > LONG_ENTRY_CHARS

    if status in _IN_FLIGHT or is_empty:
        show_expand_indicator = False
    else:
        show_expand_indicator = (
            has_dual_layer or is_long_entry or status == ProcessingStatus.FAILED
        )

    return DisplayState(
        display_text=display_text,
        raw_content=raw,
        has_ai_summary=has_ai_summary,
        has_dual_layer=has_dual_layer,
        is_long_entry=is_long_entry,
        low_confidence=low_confidence,
        confidence=confidence,
        show_expand_indicator=show_expand_indicator,
        is_empty=is_empty,
        is_pending=status in (ProcessingStatus.PENDING, ProcessingStatus.PROCESSING),
        processing_status=status,
    )


def resolve(item: Item) -> DisplayState:
    """
    Decide what text to show for an item.

    Rules, first match wins:
    1. failed -> failure placeholder, expand indicator shown
    2. pending -> "still arriving" placeholder
    3. processing -> "transcribing" placeholder
    4. transcribed -> first line of raw_content, at most 80 chars
    5. summarized/indexed/completed/none with a confident summary -> ai_summary
    6. otherwise -> raw_content, or title when there is none

    Never raises: an item that cannot be resolved shows as an empty capture.
    """
    try:
        return _resolve(item)
    except Exception:
        logger.exception("Display resolution failed for item %s", getattr(item, "id", "?"))
        status = getattr(item, "processing_status", None)
        if not isinstance(status, ProcessingStatus):
            status = ProcessingStatus.NONE
        return DisplayState(
            display_text=EMPTY_PLACEHOLDER,
            raw_content=None,
            has_ai_summary=False,
            has_dual_layer=False,
            is_long_entry=False,
            low_confidence=False,
            confidence=1.0,
            show_expand_indicator=False,
            is_empty=True,
            is_pending=False,
            processing_status=status,
        )
