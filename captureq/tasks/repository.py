"""
Item, cleanup-log and memory-profile persistence.

Follows the patterns in captureq/infrastructure/database.py: pooled
connections, db_transaction for writes, retry_on_db_lock on anything that
can collide with the staleness sweep.

The pipeline components depend on the ItemStore / CleanupLogStore protocols
below; ItemRepository and CleanupLogRepository are the SQLite
implementations (used as classes, every method is static).
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterator, Mapping, Sequence
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from captureq.infrastructure.database import db_transaction, get_db_connection, retry_on_db_lock
from captureq.observability.logging import get_logger
from captureq.tasks.models import (
    BulkResult,
    CleanupLog,
    Item,
    ItemCreate,
    MemoryProfile,
    ProcessingStatus,
    StalenessStatus,
    utc_now,
)

logger = get_logger(__name__)

# SQLite caps bound parameters per statement; stay well below it
_CHUNK = 500

# Columns a caller may write through update_item / bulk_update
UPDATABLE_COLUMNS = frozenset(
    {
        "title",
        "context",
        "raw_content",
        "ai_summary",
        "ai_confidence",
        "processing_status",
        "pending_audio_path",
        "ai_metadata",
        "category",
        "is_tiny_task",
        "is_time_based",
        "priority_tier",
        "future_priority_score",
        "scheduled_bucket",
        "is_focus",
        "focus_date",
        "reminder_time",
        "staleness_status",
        "completed",
        "completed_at",
    }
)


class ItemStore(Protocol):
    def create(self, data: ItemCreate) -> Item: ...

    def load_items(self, user_id: str | None, filters: Mapping[str, Any] | None = None) -> list[Item]: ...

    def get_items(self, ids: Sequence[str]) -> list[Item]: ...

    def update_item(
        self,
        item_id: str,
        fields: Mapping[str, Any],
        expected: ProcessingStatus | None = None,
    ) -> Item | None: ...

    def bulk_update(self, ids: Sequence[str], fields: Mapping[str, Any], operation: str = ...) -> BulkResult: ...

    def delete_items(self, ids: Sequence[str], operation: str = ...) -> BulkResult: ...

    def set_staleness(self, ids: Sequence[str], status: StalenessStatus) -> int: ...


class CleanupLogStore(Protocol):
    def insert(self, entry: CleanupLog) -> CleanupLog: ...

    def list_by_user(self, user_id: str, limit: int = 20) -> list[CleanupLog]: ...


def _chunks(ids: Sequence[str]) -> Iterator[list[str]]:
    for start in range(0, len(ids), _CHUNK):
        yield list(ids[start : start + _CHUNK])


def _to_db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return json.dumps(value)
    return value


def _set_clause(fields: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    """
    Build "col = :col, ..." plus parameters, always bumping updated_at.

    Raises:
        ValueError: unknown or non-writable column
    """
    unknown = set(fields) - UPDATABLE_COLUMNS
    if unknown:
        raise ValueError(f"Cannot update columns: {sorted(unknown)}")

    params = {name: _to_db_value(value) for name, value in fields.items()}
    params["updated_at"] = utc_now().isoformat()
    clause = ", ".join(f"{name} = :{name}" for name in params)
    return clause, params


class ItemRepository:
    """
    SQLite-backed ItemStore.

    All methods use connection pooling and proper transaction handling.
    """

    @staticmethod
    @retry_on_db_lock()
    def save(item: Item) -> Item:
        """
        Insert a fully-formed item.

        Side Effects:
            - Inserts row into items table
        """
        db_dict = item.to_db_dict()
        columns = ", ".join(db_dict)
        placeholders = ", ".join(f":{name}" for name in db_dict)

        with db_transaction() as conn:
            conn.execute(f"INSERT INTO items ({columns}) VALUES ({placeholders})", db_dict)

        logger.debug("Saved item %s for user %s", item.id, item.user_id)
        return item

    @staticmethod
    def create(data: ItemCreate) -> Item:
        """Create a new capture with a generated id and fresh timestamps."""
        now = utc_now()
        item = Item(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **data.model_dump(),
        )
        ItemRepository.save(item)
        logger.info("Created item %s for user %s", item.id, item.user_id)
        return item

    @staticmethod
    def get_by_id(item_id: str) -> Item | None:
        with get_db_connection() as conn:
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()

        if not row:
            return None
        return Item.from_db_row(dict(row))

    @staticmethod
    def get_items(ids: Sequence[str]) -> list[Item]:
        """Items for the given ids, in request order. Missing ids are omitted."""
        ids = list(dict.fromkeys(ids))
        found: dict[str, Item] = {}

        with get_db_connection() as conn:
            for chunk in _chunks(ids):
                marks = ", ".join("?" for _ in chunk)
                rows = conn.execute(f"SELECT * FROM items WHERE id IN ({marks})", chunk).fetchall()
                for row in rows:
                    item = Item.from_db_row(dict(row))
                    found[item.id] = item

        return [found[i] for i in ids if i in found]

    @staticmethod
    def load_items(
        user_id: str | None,
        filters: Mapping[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        """
        Items for one user (or every user when user_id is None), oldest first.

        Filters:
            completed: bool       only completed / incomplete items
            inbox: bool           only items with no category or category 'inbox'
            stale_only: bool      only items whose staleness_status is not active
            processing_status: list of statuses to include
        """
        filters = dict(filters or {})
        clauses: list[str] = []
        params: list[Any] = []

        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if "completed" in filters and filters["completed"] is not None:
            clauses.append("completed = ?")
            params.append(int(bool(filters["completed"])))
        if filters.get("inbox"):
            clauses.append("(category IS NULL OR category = '' OR category = 'inbox')")
        if filters.get("stale_only"):
            clauses.append("staleness_status != 'active'")
        if filters.get("processing_status"):
            statuses = [_to_db_value(s) for s in filters["processing_status"]]
            clauses.append(f"processing_status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)

        query = "SELECT * FROM items"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at ASC, id ASC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        with get_db_connection() as conn:
            rows = conn.execute(query, params).fetchall()

        return [Item.from_db_row(dict(row)) for row in rows]

    @staticmethod
    @retry_on_db_lock()
    def update_item(
        item_id: str,
        fields: Mapping[str, Any],
        expected: ProcessingStatus | None = None,
    ) -> Item | None:
        """
        Partial update of one item.

        When `expected` is given the write only happens if the row is still in
        that processing status (compare-and-set for enrichment writers).

        Returns:
            The updated item, or None when the id is unknown or the expected
            status no longer matches

        Side Effects:
            - Updates the row and its updated_at
        """
        clause, params = _set_clause(fields)
        params["id"] = item_id
        query = f"UPDATE items SET {clause} WHERE id = :id"
        if expected is not None:
            query += " AND processing_status = :expected_status"
            params["expected_status"] = _to_db_value(expected)

        with db_transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM items WHERE id = ?", (item_id,)).fetchone()

        return Item.from_db_row(dict(row))

    @staticmethod
    @retry_on_db_lock()
    def bulk_update(
        ids: Sequence[str],
        fields: Mapping[str, Any],
        operation: str = "bulk_update",
    ) -> BulkResult:
        """
        Apply the same fields to every id in ONE transaction.

        Each id is written separately so the outcome is known per id. If any
        id fails the transaction is rolled back (rolled_back=True) and no row
        changes; `succeeded` then lists the ids whose write had gone through
        before the rollback.
        """
        clause, base_params = _set_clause(fields)
        result = BulkResult(operation=operation)

        with db_transaction() as conn:
            for item_id in ids:
                try:
                    cursor = conn.execute(
                        f"UPDATE items SET {clause} WHERE id = :id", {**base_params, "id": item_id}
                    )
                except sqlite3.OperationalError as e:
                    if "locked" in str(e).lower() or "busy" in str(e).lower():
                        raise
                    result.failed[item_id] = str(e)
                    continue
                except sqlite3.Error as e:
                    result.failed[item_id] = str(e)
                    continue
                if cursor.rowcount == 0:
                    result.failed[item_id] = "not found"
                else:
                    result.succeeded.append(item_id)

            if result.failed:
                conn.rollback()
                result.rolled_back = True

        if result.failed:
            logger.warning("%s rolled back for %d ids", operation, len(ids))
        else:
            logger.info("%s applied to %d items", operation, len(result.succeeded))
        return result

    @staticmethod
    @retry_on_db_lock()
    def delete_items(ids: Sequence[str], operation: str = "archive_group") -> BulkResult:
        """Hard-delete every id in one transaction, same rollback rule as bulk_update."""
        result = BulkResult(operation=operation)

        with db_transaction() as conn:
            for item_id in ids:
                try:
                    cursor = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
                except sqlite3.OperationalError as e:
                    if "locked" in str(e).lower() or "busy" in str(e).lower():
                        raise
                    result.failed[item_id] = str(e)
                    continue
                except sqlite3.Error as e:
                    result.failed[item_id] = str(e)
                    continue
                if cursor.rowcount == 0:
                    result.failed[item_id] = "not found"
                else:
                    result.succeeded.append(item_id)

            if result.failed:
                conn.rollback()
                result.rolled_back = True

        if not result.failed:
            logger.info("Deleted %d items", len(result.succeeded))
        return result

    @staticmethod
    @retry_on_db_lock()
    def set_staleness(ids: Sequence[str], status: StalenessStatus) -> int:
        """
        Tag items with a staleness tier.

        Writes staleness_status only, and only on incomplete rows whose tier
        actually changes, so concurrent edits to other columns are untouched.

        Returns:
            Number of rows updated
        """
        updated = 0
        with db_transaction() as conn:
            for chunk in _chunks(list(ids)):
                marks = ", ".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"""
                    UPDATE items
                    SET staleness_status = ?
                    WHERE id IN ({marks})
                      AND completed = 0
                      AND staleness_status != ?
                    """,
                    (status.value, *chunk, status.value),
                )
                updated += cursor.rowcount
        return updated

    @staticmethod
    def count_by_staleness(user_id: str) -> dict[str, int]:
        """Incomplete item counts per staleness tier."""
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT staleness_status, COUNT(*) AS n
                FROM items
                WHERE user_id = ? AND completed = 0
                GROUP BY staleness_status
                """,
                (user_id,),
            ).fetchall()

        counts = {status.value: 0 for status in StalenessStatus}
        for row in rows:
            counts[row["staleness_status"]] = row["n"]
        return counts


class CleanupLogRepository:
    """Audit trail of cleanup sessions (inbox_cleanup_log)."""

    @staticmethod
    @retry_on_db_lock()
    def insert(entry: CleanupLog) -> CleanupLog:
        with db_transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO inbox_cleanup_log (
                    user_id, total_tasks, completed_count, archived_count,
                    snoozed_count, created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.user_id,
                    entry.total_tasks,
                    entry.completed_count,
                    entry.archived_count,
                    entry.snoozed_count,
                    entry.created_at.isoformat(),
                ),
            )
            log_id = cursor.lastrowid

        return entry.model_copy(update={"id": log_id})

    @staticmethod
    def list_by_user(user_id: str, limit: int = 20) -> list[CleanupLog]:
        with get_db_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM inbox_cleanup_log
                WHERE user_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()

        return [
            CleanupLog(
                id=row["id"],
                user_id=row["user_id"],
                total_tasks=row["total_tasks"],
                completed_count=row["completed_count"],
                archived_count=row["archived_count"],
                snoozed_count=row["snoozed_count"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]


class MemoryProfileRepository:
    """Per-user personalization snapshots (memory_profiles)."""

    @staticmethod
    def get(user_id: str) -> MemoryProfile:
        """Stored profile, or the default one for users we have not learned about yet."""
        with get_db_connection() as conn:
            row = conn.execute(
                "SELECT * FROM memory_profiles WHERE user_id = ?", (user_id,)
            ).fetchone()

        if not row:
            return MemoryProfile.default_for(user_id)
        return MemoryProfile(
            user_id=row["user_id"],
            tiny_task_threshold=row["tiny_task_threshold"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    @retry_on_db_lock()
    def save(profile: MemoryProfile) -> MemoryProfile:
        with db_transaction() as conn:
            conn.execute(
                """
                INSERT INTO memory_profiles (user_id, tiny_task_threshold, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    tiny_task_threshold = excluded.tiny_task_threshold,
                    updated_at = excluded.updated_at
                """,
                (profile.user_id, profile.tiny_task_threshold, profile.updated_at.isoformat()),
            )
        return profile
