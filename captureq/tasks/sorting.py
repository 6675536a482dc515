"""
Priority/bucket ordering for the task list.

Ordering rules, first difference wins:
    1. focus item first
    2. MUST before everything else
    3. due today (and not yet overdue) first
    4. overdue first
    5. within the same tier, non-tiny before tiny
    6. SHOULD before COULD
    7. newest created_at first

The rules are encoded as a sort key, so the order is a strict weak ordering
and sorted() gives the same output for the same input and the same `now`.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, time, timedelta

from captureq.tasks.models import Item, PriorityTier, ensure_utc, utc_now

_TIER_RANK = {PriorityTier.MUST: 0, PriorityTier.SHOULD: 1, PriorityTier.COULD: 2}

SortKey = tuple[bool, bool, bool, bool, int, bool, float]


def _day_bounds(now: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
    return start, start + timedelta(days=1)


def sort_key(item: Item, now: datetime) -> SortKey:
    """Key for one item against a fixed `now`; lower sorts first."""
    now = ensure_utc(now)
    today_start, today_end = _day_bounds(now)
    tier = item.effective_priority()

    reminder = ensure_utc(item.reminder_time) if item.reminder_time else None
    overdue = reminder is not None and reminder < now
    due_today = reminder is not None and not overdue and today_start <= reminder < today_end

    return (
        not item.is_focus,
        tier != PriorityTier.MUST,
        not due_today,
        not overdue,
        _TIER_RANK[tier],
        bool(item.is_tiny_task),
        -ensure_utc(item.created_at).timestamp(),
    )


def compare_items(a: Item, b: Item, now: datetime) -> int:
    """-1 if a sorts before b, 1 if after, 0 if the rules cannot tell them apart."""
    key_a, key_b = sort_key(a, now), sort_key(b, now)
    return (key_a > key_b) - (key_a < key_b)


def sort_items(items: Iterable[Item], now: datetime | None = None) -> list[Item]:
    """
    Drop completed items and order the rest.

    One `now` snapshot is used for every due/overdue check in the call.
    """
    now = ensure_utc(now or utc_now())
    return sorted((item for item in items if not item.completed), key=lambda item: sort_key(item, now))
