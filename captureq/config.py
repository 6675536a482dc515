"""Centralized configuration for the captureq backend.

Re-exports everything from captureq.infrastructure.settings, then adds typed
constants for the database, LLM access, and the enrichment/staleness/tiny-task
pipeline.  Every threshold the pipeline uses lives here so it can be tuned per
deployment through CAPTUREQ_* environment variables instead of being buried in
the modules that read it.
"""

from __future__ import annotations

import os

from captureq.infrastructure.settings import *  # noqa: F401, F403

# --- App ---
APP_VERSION: str = "1.0.0"

# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("CAPTUREQ_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("CAPTUREQ_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("CAPTUREQ_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("CAPTUREQ_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("CAPTUREQ_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("CAPTUREQ_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("CAPTUREQ_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("CAPTUREQ_DB_RETRY_JITTER", "0.1"))

# --- LLM ---
LLM_TIMEOUT_SECONDS: float = float(os.getenv("CAPTUREQ_LLM_TIMEOUT", "10"))
LLM_MAX_RETRIES: int = int(os.getenv("CAPTUREQ_LLM_MAX_RETRIES", "2"))
LLM_MAX_WORKERS: int = int(os.getenv("CAPTUREQ_LLM_MAX_WORKERS", "4"))
LLM_CIRCUIT_FAIL_MAX: int = int(os.getenv("CAPTUREQ_LLM_CIRCUIT_FAIL_MAX", "5"))
LLM_CIRCUIT_RESET_SECONDS: float = float(os.getenv("CAPTUREQ_LLM_CIRCUIT_RESET", "60"))

# --- Display (dual-layer) ---
LOW_CONFIDENCE_THRESHOLD: float = float(os.getenv("CAPTUREQ_LOW_CONFIDENCE", "0.6"))
LONG_ENTRY_CHARS: int = 100
TRANSCRIPT_PREVIEW_CHARS: int = 80

# --- Enrichment ---
ENRICHMENT_TITLE_MAX_CHARS: int = 100
ENRICHMENT_MIN_COMPRESS_CHARS: int = 50
ENRICHMENT_FALLBACK_CONFIDENCE: float = 0.3

# --- Staleness sweep ---
STALE_AFTER_DAYS: int = int(os.getenv("CAPTUREQ_STALE_AFTER_DAYS", "7"))
DECISION_REQUIRED_AFTER_DAYS: int = int(os.getenv("CAPTUREQ_DECISION_AFTER_DAYS", "14"))
EXPIRING_AFTER_DAYS: int = int(os.getenv("CAPTUREQ_EXPIRING_AFTER_DAYS", "21"))
STALENESS_SWEEP_INTERVAL_SECONDS: int = int(os.getenv("CAPTUREQ_SWEEP_INTERVAL", "3600"))

# --- Tiny tasks ---
TINY_TASK_THRESHOLD_CEILING: int = int(os.getenv("CAPTUREQ_TINY_THRESHOLD_CEILING", "10"))
TINY_TASK_DEFAULT_THRESHOLD: int = 5
TINY_TASK_PERSONALIZATION_BOOST: float = 0.3
TINY_TASK_SHORT_TITLE_WORDS: int = 5
FIESTA_MIN_TASKS: int = int(os.getenv("CAPTUREQ_FIESTA_MIN_TASKS", "5"))

# --- API ---
API_LIST_LIMIT_DEFAULT: int = 100
API_LIST_LIMIT_MAX: int = 500
API_BATCH_SIZE_MAX: int = 500
