"""
Application-wide settings and environment configuration
"""

from __future__ import annotations

import os

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT", "")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")  # Vertex AI model
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "1024"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.3"))


def use_llm() -> bool:
    """Check the LLM feature flag at call time (not import time).

    Reads env var fresh to avoid stale cache when dotenv loads after module import.
    """
    return os.getenv("CAPTUREQ_USE_LLM", "false").lower() == "true"


def sweep_enabled() -> bool:
    """Whether the API process runs the periodic staleness sweep (default on)."""
    return os.getenv("CAPTUREQ_SWEEP_ENABLED", "true").lower() == "true"
