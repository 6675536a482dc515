"""
Database schema initialization for captureq.

Three tables:
- items: capture/task records (content, enrichment, classification, scheduling, lifecycle)
- inbox_cleanup_log: audit record written after each bulk cleanup
- memory_profiles: per-user personalization snapshot (learned tiny-task threshold)
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from captureq.observability.logging import get_logger

logger = get_logger(__name__)


def init_database(db_path: Path) -> None:
    """
    Initialize database with schema (idempotent)

    Safe to run multiple times - uses CREATE TABLE IF NOT EXISTS.

    Side Effects:
    - Creates tables and indexes if they don't exist
    - Creates the parent directory if needed
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)

    conn.executescript("""
        CREATE TABLE IF NOT EXISTS items (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL DEFAULT '',
            context TEXT,
            raw_content TEXT,
            ai_summary TEXT,
            ai_confidence REAL,
            processing_status TEXT NOT NULL DEFAULT 'none',
            pending_audio_path TEXT,
            ai_metadata TEXT DEFAULT '{}',
            category TEXT,
            is_tiny_task INTEGER,
            is_time_based INTEGER NOT NULL DEFAULT 0,
            priority_tier TEXT,
            future_priority_score REAL,
            scheduled_bucket TEXT,
            is_focus INTEGER NOT NULL DEFAULT 0,
            focus_date TEXT,
            reminder_time TEXT,
            staleness_status TEXT NOT NULL DEFAULT 'active',
            completed INTEGER NOT NULL DEFAULT 0,
            completed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_items_user_completed
        ON items(user_id, completed);

        CREATE INDEX IF NOT EXISTS idx_items_completed_created
        ON items(completed, created_at);

        CREATE INDEX IF NOT EXISTS idx_items_processing_status
        ON items(processing_status);

        CREATE TABLE IF NOT EXISTS inbox_cleanup_log (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            total_tasks INTEGER NOT NULL,
            completed_count INTEGER NOT NULL DEFAULT 0,
            archived_count INTEGER NOT NULL DEFAULT 0,
            snoozed_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_cleanup_log_user
        ON inbox_cleanup_log(user_id, created_at);

        CREATE TABLE IF NOT EXISTS memory_profiles (
            user_id TEXT PRIMARY KEY,
            tiny_task_threshold INTEGER NOT NULL,
            updated_at TEXT NOT NULL
        );
    """)

    conn.commit()
    conn.close()

    logger.info("Database initialized: %s", db_path)


def validate_schema(conn: sqlite3.Connection) -> bool:
    """
    Validate database has expected schema

    Raises:
        ValueError: If tables are missing
    """
    required_tables = {
        "items": [
            "id",
            "user_id",
            "title",
            "processing_status",
            "staleness_status",
            "completed",
            "created_at",
        ],
        "inbox_cleanup_log": ["id", "user_id", "total_tasks", "completed_count"],
        "memory_profiles": ["user_id", "tiny_task_threshold"],
    }

    cursor = conn.cursor()

    cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
    existing_tables = {row[0] for row in cursor.fetchall()}

    missing_tables = set(required_tables.keys()) - existing_tables
    if missing_tables:
        raise ValueError(f"Database missing tables: {missing_tables}")

    for table, required_cols in required_tables.items():
        # Table names come from the dict above; identifiers can't be parameterized
        cursor.execute(f"PRAGMA table_info({table})")
        existing_cols = {row[1] for row in cursor.fetchall()}

        missing_cols = set(required_cols) - existing_cols
        if missing_cols:
            raise ValueError(f"Table '{table}' missing columns: {missing_cols}")

    return True
