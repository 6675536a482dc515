"""
Staleness decay sweep.

Incomplete items age into freshness tiers based on created_at only:

    age_days >= 21        -> expiring
    14 <= age_days < 21   -> decision_required
    7 <= age_days < 14    -> stale
    age_days < 7          -> left alone

The sweep writes nothing but staleness_status, one batched conditional
UPDATE per tier, so it can run next to user edits and the enrichment
pipeline without taking a lock. The user resolves a stale item with one of
three single-item actions: archive, schedule_for_today, dismiss_for_now.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from captureq.config import (
    DECISION_REQUIRED_AFTER_DAYS,
    EXPIRING_AFTER_DAYS,
    STALE_AFTER_DAYS,
    STALENESS_SWEEP_INTERVAL_SECONDS,
)
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter, log_event, time_block
from captureq.tasks.errors import ItemNotFound
from captureq.tasks.models import Item, StalenessStatus, ensure_utc, utc_now

if TYPE_CHECKING:
    from captureq.tasks.repository import ItemStore

logger = get_logger(__name__)

# Checked highest first so an item gets exactly one tier per pass
TIERS: tuple[tuple[int, StalenessStatus], ...] = (
    (EXPIRING_AFTER_DAYS, StalenessStatus.EXPIRING),
    (DECISION_REQUIRED_AFTER_DAYS, StalenessStatus.DECISION_REQUIRED),
    (STALE_AFTER_DAYS, StalenessStatus.STALE),
)


@dataclass
class SweepReport:
    scanned: int = 0
    candidates: dict[str, int] = field(default_factory=dict)
    updated: dict[str, int] = field(default_factory=dict)
    swept_at: datetime | None = None

    @property
    def total_updated(self) -> int:
        return sum(self.updated.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "candidates": self.candidates,
            "updated": self.updated,
            "total_updated": self.total_updated,
            "swept_at": self.swept_at.isoformat() if self.swept_at else None,
        }


def age_days(created_at: datetime, now: datetime) -> int:
    """Whole days since creation (floor)."""
    return (ensure_utc(now) - ensure_utc(created_at)).days


def staleness_tier(item: Item, now: datetime) -> StalenessStatus | None:
    """Tier the sweep would assign, or None when the item is left alone."""
    if item.completed:
        return None
    age = age_days(item.created_at, now)
    for min_days, status in TIERS:
        if age >= min_days:
            return status
    return None


def run_staleness_sweep(
    store: ItemStore,
    now: datetime | None = None,
    user_id: str | None = None,
) -> SweepReport:
    """
    Tag every incomplete item (one user, or everyone) with its staleness tier.

    Only rows whose status actually changes are written; the store's
    conditional UPDATE also re-checks completed = 0 so an item completed
    mid-sweep is never tagged.
    """
    now = ensure_utc(now or utc_now())
    report = SweepReport(swept_at=now)

    with time_block("staleness.sweep"):
        items = store.load_items(user_id, {"completed": False})
        report.scanned = len(items)

        batches: dict[StalenessStatus, list[str]] = {status: [] for _, status in TIERS}
        for item in items:
            tier = staleness_tier(item, now)
            if tier is not None and tier != item.staleness_status:
                batches[tier].append(item.id)

        for status, ids in batches.items():
            report.candidates[status.value] = len(ids)
            report.updated[status.value] = store.set_staleness(ids, status) if ids else 0

    counter("staleness.sweeps")
    counter("staleness.tagged", report.total_updated)
    log_event(
        "staleness.sweep",
        user_id=user_id or "*",
        scanned=report.scanned,
        **{f"updated_{k}": v for k, v in report.updated.items()},
    )
    return report


def _resolve(store: ItemStore, item_id: str, fields: dict[str, Any], action: str) -> Item:
    updated = store.update_item(item_id, fields)
    if updated is None:
        raise ItemNotFound(item_id)
    counter(f"staleness.resolve.{action}")
    log_event("staleness.resolved", item_id=item_id, action=action)
    return updated


def archive(store: ItemStore, item_id: str, now: datetime | None = None) -> Item:
    """Retire a stale item by marking it completed."""
    now = ensure_utc(now or utc_now())
    return _resolve(store, item_id, {"completed": True, "completed_at": now}, "archive")


def schedule_for_today(store: ItemStore, item_id: str, now: datetime | None = None) -> Item:
    """Make the item today's focus and reset its freshness."""
    now = ensure_utc(now or utc_now())
    fields = {
        "is_focus": True,
        "focus_date": now.date().isoformat(),
        "staleness_status": StalenessStatus.ACTIVE,
    }
    return _resolve(store, item_id, fields, "schedule_for_today")


def dismiss_for_now(store: ItemStore, item_id: str) -> Item:
    return _resolve(store, item_id, {"staleness_status": StalenessStatus.ACTIVE}, "dismiss_for_now")


RESOLUTION_ACTIONS: dict[str, Callable[..., Item]] = {
    "archive": archive,
    "schedule_for_today": schedule_for_today,
    "dismiss_for_now": dismiss_for_now,
}


class StalenessSweepThread(threading.Thread):
    """
    Daemon thread that runs the sweep every `interval` seconds.

    Errors are logged and the loop keeps going; stop() wakes it immediately.
    """

    def __init__(
        self,
        sweep: Callable[[], SweepReport],
        interval: float = STALENESS_SWEEP_INTERVAL_SECONDS,
    ):
        super().__init__(name="captureq-staleness-sweep", daemon=True)
        self._sweep = sweep
        self.interval = interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                report = self._sweep()
                if report.total_updated:
                    logger.info("Staleness sweep tagged %d items", report.total_updated)
            except Exception as e:
                counter("staleness.sweep_errors")
                logger.error("Staleness sweep failed: %s", e)
            self._stop_event.wait(self.interval)

    def stop(self) -> None:
        self._stop_event.set()
