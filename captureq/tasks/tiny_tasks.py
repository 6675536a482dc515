"""
Tiny-task classifier.

A tiny task is something the user can knock out in a few minutes (pay a
bill, reply to an email). Classification is keyword and length based, with
an optional remote AI verdict on top. The heuristic is always available and
is what the AI path falls back to when the remote call fails.

Personalization comes in as an explicit MemoryProfile argument; nothing here
reads per-user state on its own.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from captureq.config import (
    FIESTA_MIN_TASKS,
    LLM_CIRCUIT_FAIL_MAX,
    LLM_CIRCUIT_RESET_SECONDS,
    TINY_TASK_PERSONALIZATION_BOOST,
    TINY_TASK_SHORT_TITLE_WORDS,
    TINY_TASK_THRESHOLD_CEILING,
)
from captureq.infrastructure.retry import CircuitBreaker
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter
from captureq.tasks.errors import RemoteClassificationFailed
from captureq.tasks.models import Item, MemoryProfile, utc_now
from captureq.tasks.remote import TinyTaskRemote, guarded_call

logger = get_logger(__name__)

# Short admin verbs. Matched as substrings of the lowercased text.
TINY_TASK_KEYWORDS: tuple[str, ...] = (
    "pay",
    "send",
    "check",
    "renew",
    "schedule",
    "reply",
    "email",
    "call",
    "text",
    "message",
    "confirm",
    "verify",
    "submit",
    "upload",
    "download",
    "forward",
    "respond",
    "acknowledge",
    "approve",
    "review",
    "sign",
    "file",
    "update",
    "quick",
)

BIG_TASK_KEYWORDS: tuple[str, ...] = (
    "research",
    "analyze",
    "design",
    "develop",
    "implement",
    "create",
    "build",
    "write",
    "draft",
    "plan",
    "strategy",
    "meeting",
    "presentation",
)

AI_TINY_CONFIDENCE = 0.9
AI_NOT_TINY_CONFIDENCE = 0.2
TINY_CUTOFF = 0.5


@dataclass(frozen=True)
class TinyTaskClassification:
    is_tiny: bool
    confidence: float
    reason: str
    source: str = "heuristic"  # "heuristic" or "ai"
    big_keyword: bool = False


def _has_keyword(text: str, keywords: Iterable[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def classify(item: Item, profile: MemoryProfile | None = None) -> TinyTaskClassification:
    """
    Heuristic classification. Pure; no external calls.

    Most specific rule wins:
        big keyword            -> 0.1
        tiny keyword + short   -> 0.9
        tiny keyword           -> 0.7
        short + time-based     -> 0.6
        short                  -> 0.5
        anything else          -> 0.3

    A learned threshold below the ceiling boosts short titles by +0.3, except
    when a big keyword is present.
    """
    title = item.title or ""
    full_text = f"{title} {item.context or ''}".lower()

    has_big = _has_keyword(full_text, BIG_TASK_KEYWORDS)
    has_tiny = _has_keyword(full_text, TINY_TASK_KEYWORDS)
    is_short = len(title.split()) <= TINY_TASK_SHORT_TITLE_WORDS

    if has_big:
        confidence, reason = 0.1, "Contains keywords suggesting complex work"
    elif has_tiny and is_short:
        confidence, reason = 0.9, "Quick admin action with clear intent"
    elif has_tiny:
        confidence, reason = 0.7, "Administrative action detected"
    elif is_short and item.is_time_based:
        confidence, reason = 0.6, "Short time-based task"
    elif is_short:
        confidence, reason = 0.5, "Brief task description"
    else:
        confidence, reason = 0.3, "May require more time or focus"

    if profile is not None and not has_big:
        threshold = profile.tiny_task_threshold
        if 0 < threshold < TINY_TASK_THRESHOLD_CEILING and len(title) <= threshold:
            confidence = min(1.0, round(confidence + TINY_TASK_PERSONALIZATION_BOOST, 4))
            reason += " (matches your typical tiny task length)"

    return TinyTaskClassification(
        is_tiny=confidence >= TINY_CUTOFF,
        confidence=confidence,
        reason=reason,
        big_keyword=has_big,
    )


def find_tiny_tasks(items: Iterable[Item], profile: MemoryProfile | None = None) -> list[Item]:
    """Incomplete items the heuristic calls tiny, most confident first (stable on ties)."""
    scored = []
    for item in items:
        if item.completed:
            continue
        verdict = classify(item, profile)
        if verdict.is_tiny:
            scored.append((verdict.confidence, item))
    # sorted() is stable, so equal confidences keep input order
    return [item for _, item in sorted(scored, key=lambda pair: -pair[0])]


def should_suggest_fiesta(
    items: Iterable[Item],
    min_count: int = FIESTA_MIN_TASKS,
    profile: MemoryProfile | None = None,
) -> bool:
    return len(find_tiny_tasks(items, profile)) >= min_count


def learn_tiny_task_threshold(profile: MemoryProfile, item: Item) -> MemoryProfile:
    """
    Fold one classified item into the learned threshold.

    new = round-half-up((current + len(title)) / 2). Unclassified items and
    empty titles leave the profile untouched.
    """
    title_length = len(item.title or "")
    if item.is_tiny_task is None or title_length == 0:
        return profile

    new_threshold = int((profile.tiny_task_threshold + title_length) / 2 + 0.5)
    if new_threshold == profile.tiny_task_threshold:
        return profile
    return profile.model_copy(update={"tiny_task_threshold": new_threshold, "updated_at": utc_now()})


class TinyTaskClassifier:
    """
    Heuristic classifier with an optional remote AI verdict.

    The remote call is bounded and guarded by a circuit breaker. Any failure
    is logged and answered with the heuristic result; callers never see it.
    """

    def __init__(self, remote: TinyTaskRemote | None = None):
        self.remote = remote
        self._breaker = CircuitBreaker(
            "tiny_task", fail_max=LLM_CIRCUIT_FAIL_MAX, reset_timeout=LLM_CIRCUIT_RESET_SECONDS
        )

    def classify(self, item: Item, profile: MemoryProfile | None = None) -> TinyTaskClassification:
        heuristic = classify(item, profile)
        if self.remote is None:
            return heuristic

        try:
            verdict = guarded_call(
                "tiny_task", self._breaker, self.remote.classify_tiny_task, item.title, item.context
            )
        except RemoteClassificationFailed as e:
            counter("tiny_task.ai_fallback")
            logger.warning("Tiny-task AI unavailable for %s, using heuristic: %s", item.id, e)
            return heuristic

        if verdict.is_tiny_task and heuristic.big_keyword:
            counter("tiny_task.big_keyword_override")
            return heuristic

        counter("tiny_task.ai_verdict")
        return TinyTaskClassification(
            is_tiny=verdict.is_tiny_task,
            confidence=AI_TINY_CONFIDENCE if verdict.is_tiny_task else AI_NOT_TINY_CONFIDENCE,
            reason=verdict.reason or ("AI: quick task" if verdict.is_tiny_task else "AI: needs focus"),
            source="ai",
            big_keyword=heuristic.big_keyword,
        )
