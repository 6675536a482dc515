"""
Remote AI capabilities used by the capture pipeline.

Each capability is a Protocol with one method. The pipeline only depends on
the protocol; the Gemini adapters below are the production implementations.
Consumers never call a capability directly: they go through guarded_call,
which bounds the wait, consults a circuit breaker and turns every failure
into RemoteClassificationFailed so the caller can fall back.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Sequence
from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, Field, ValidationError

from captureq.config import LLM_TIMEOUT_SECONDS
from captureq.infrastructure.retry import CircuitBreaker
from captureq.llm.retry import call_llm, call_with_timeout, parse_json_response
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter, time_block
from captureq.tasks.errors import RemoteClassificationFailed
from captureq.tasks.models import Item

logger = get_logger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Contract types
# ---------------------------------------------------------------------------


class RemoteTinyTaskVerdict(BaseModel):
    is_tiny_task: bool
    reason: str = ""


class CompressionResult(BaseModel):
    ai_summary: str = Field(..., min_length=1)
    confidence_score: float = Field(..., ge=0.0, le=1.0)


class IndexingResult(BaseModel):
    memory_tags: list[str] = Field(default_factory=list)
    category: str = "inbox"
    priority: str | None = None


class TaskGroup(BaseModel):
    group_title: str
    reason: str = ""
    task_ids: list[str] = Field(default_factory=list)


class TaskSuggestion(BaseModel):
    task_id: str
    reason: str = ""


class ClarifyingQuestion(BaseModel):
    task_id: str
    question: str


class CategorySuggestion(BaseModel):
    """Locally computed move for one inbox item ("today" means schedule for today)."""

    task_id: str
    title: str = ""
    suggested_category: str
    confidence: float = Field(..., ge=0.0, le=1.0)


class InboxAnalysis(BaseModel):
    """
    AI-proposed cleanup plan. available=False means the model gave no
    analysis; suggestions then carries the local keyword categorization.
    """

    grouped_tasks: list[TaskGroup] = Field(default_factory=list)
    quick_wins: list[TaskSuggestion] = Field(default_factory=list)
    archive_suggestions: list[TaskSuggestion] = Field(default_factory=list)
    questions: list[ClarifyingQuestion] = Field(default_factory=list)
    suggestions: list[CategorySuggestion] = Field(default_factory=list)
    available: bool = True

    @classmethod
    def unavailable(cls, suggestions: list[CategorySuggestion] | None = None) -> InboxAnalysis:
        return cls(available=False, suggestions=suggestions or [])


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


@runtime_checkable
class TinyTaskRemote(Protocol):
    def classify_tiny_task(self, title: str, context: str | None) -> RemoteTinyTaskVerdict: ...


@runtime_checkable
class InboxAnalysisRemote(Protocol):
    def analyze_inbox(self, items: Sequence[Item]) -> InboxAnalysis: ...


@runtime_checkable
class CompressionRemote(Protocol):
    def compress(self, text: str) -> CompressionResult: ...


@runtime_checkable
class IndexingRemote(Protocol):
    def index(self, text: str, summary: str) -> IndexingResult: ...


def guarded_call(
    stage: str,
    breaker: CircuitBreaker | None,
    func: Callable[..., T],
    *args,
    timeout: float = LLM_TIMEOUT_SECONDS,
) -> T:
    """
    Run one remote capability call with a deadline and circuit breaker.

    Raises:
        RemoteClassificationFailed: circuit open, timeout, or any error from func
    """
    if breaker is not None and not breaker.allow_request():
        counter(f"remote.{stage}.short_circuited")
        raise RemoteClassificationFailed(stage, "circuit open")

    try:
        with time_block(f"remote.{stage}"):
            result = call_with_timeout(func, *args, timeout=timeout)
    except RemoteClassificationFailed:
        if breaker is not None:
            breaker.record_failure()
        counter(f"remote.{stage}.failed")
        raise
    except Exception as e:
        if breaker is not None:
            breaker.record_failure()
        counter(f"remote.{stage}.failed")
        raise RemoteClassificationFailed(stage, f"{type(e).__name__}: {e}") from e

    if breaker is not None:
        breaker.record_success()
    return result


# ---------------------------------------------------------------------------
# Gemini adapters
# ---------------------------------------------------------------------------


def _sanitize(text: str | None, max_length: int = 2000) -> str:
    """Strip prompt-injection markers and truncate user text before prompting."""
    if not text:
        return ""
    text = re.sub(r"(?i)(ignore|disregard).*(instruction|prompt)", "[REDACTED]", text)
    text = re.sub(r"(?i)system\s*:", "", text)
    text = re.sub(r"(?i)assistant\s*:", "", text)
    return text[:max_length]


def _parse(stage: str, response_text: str, schema: type[BaseModel]) -> BaseModel:
    try:
        return schema.model_validate(parse_json_response(response_text))
    except (json.JSONDecodeError, ValidationError) as e:
        counter(f"remote.{stage}.parse_error")
        logger.warning("Malformed %s response: %s", stage, e)
        raise RemoteClassificationFailed(stage, f"malformed payload: {e}") from e


TINY_TASK_SYSTEM_INSTRUCTION = """You decide whether a task is a tiny task.

Tiny tasks can be finished in under 5 minutes with low cognitive load:
paying a bill, replying to a simple email, confirming an appointment, sending
a document, checking a status, renewing a subscription, filing a document,
sending a quick message, scheduling a meeting, updating a spreadsheet entry.

NOT tiny: research projects, writing reports or articles, planning complex
activities, long meetings, creative work, strategic thinking, learning new skills.

Consider duration, complexity, cognitive load and number of steps.

Output ONLY JSON: {"is_tiny_task": true|false, "reason": "under 12 words"}"""


COMPRESSION_SYSTEM_INSTRUCTION = """You turn a raw spoken or typed note into one clean, actionable sentence.

Rules:
- Exactly one sentence, direct actionable language
- Remove filler ("um", "like", "I think maybe")
- Do not invent intent, split into several tasks, or add advice

Output ONLY JSON: {"ai_summary": "...", "confidence_score": 0.0-1.0}
confidence_score is how sure you are the sentence preserves the note's meaning."""


INDEXING_SYSTEM_INSTRUCTION = """You categorize tasks for later recall.

Extract:
1. memory_tags: 3-5 lowercase keyword tags without spaces
2. category: one of [work, personal, health, finance, home, social, learning, errands]
3. priority: one of [MUST, SHOULD, COULD] from urgency and importance signals

Output ONLY JSON: {"memory_tags": ["tag1"], "category": "...", "priority": "..."}"""


INBOX_SYSTEM_INSTRUCTION = """You help a user batch-process their task inbox.

1. Group similar tasks (errands, emails, planning, ...)
2. Identify quick wins (under 5 minutes)
3. Suggest outdated tasks that could be archived
4. Ask clarifying questions about ambiguous tasks

Only use task ids from the list you are given. A task belongs to at most one group.

Output ONLY JSON:
{
  "grouped_tasks": [{"group_title": "...", "reason": "...", "task_ids": ["id"]}],
  "quick_wins": [{"task_id": "id", "reason": "..."}],
  "archive_suggestions": [{"task_id": "id", "reason": "..."}],
  "questions": [{"task_id": "id", "question": "..."}]
}"""


class GeminiTinyTaskRemote:
    def classify_tiny_task(self, title: str, context: str | None) -> RemoteTinyTaskVerdict:
        task_text = _sanitize(title, 300)
        if context:
            task_text = f"{task_text}\n{_sanitize(context, 700)}"
        response = call_llm(
            f"Classify this task:\n\n{task_text}",
            counter_prefix="tiny_task",
            system_instruction=TINY_TASK_SYSTEM_INSTRUCTION,
        )
        return _parse("tiny_task", response, RemoteTinyTaskVerdict)  # type: ignore[return-value]


class GeminiCompressionRemote:
    def compress(self, text: str) -> CompressionResult:
        response = call_llm(
            _sanitize(text),
            counter_prefix="compress",
            system_instruction=COMPRESSION_SYSTEM_INSTRUCTION,
        )
        return _parse("compress", response, CompressionResult)  # type: ignore[return-value]


class GeminiIndexingRemote:
    def index(self, text: str, summary: str) -> IndexingResult:
        prompt = f'Analyze this task:\nOriginal: "{_sanitize(text)}"\nSummary: "{_sanitize(summary, 500)}"'
        response = call_llm(
            prompt,
            counter_prefix="index",
            system_instruction=INDEXING_SYSTEM_INSTRUCTION,
        )
        return _parse("index", response, IndexingResult)  # type: ignore[return-value]


class GeminiInboxAnalysisRemote:
    def analyze_inbox(self, items: Sequence[Item]) -> InboxAnalysis:
        task_list = "\n\n".join(
            f"ID: {item.id}\nTitle: {_sanitize(item.title, 300)}\n"
            f"Created: {item.created_at.isoformat()}\nCategory: {item.category or 'inbox'}"
            for item in items
        )
        response = call_llm(
            f"Analyze these inbox tasks:\n\n{task_list}",
            counter_prefix="inbox",
            system_instruction=INBOX_SYSTEM_INSTRUCTION,
        )
        return _parse("inbox", response, InboxAnalysis)  # type: ignore[return-value]
