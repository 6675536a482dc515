"""
Gemini models for the remote AI stages.

Each stage (tiny-task, compression, indexing, inbox grouping) sends a fixed
system instruction, so one model is built per instruction and reused. The
SDK is configured once per process:

  vertexai - google-cloud-aiplatform with GOOGLE_CLOUD_PROJECT (production)
  genai    - google-generativeai with GOOGLE_API_KEY (local dev)
"""

from __future__ import annotations

import os
from functools import lru_cache

from captureq.infrastructure.settings import GEMINI_LOCATION, GEMINI_MODEL, GOOGLE_CLOUD_PROJECT
from captureq.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Neither Gemini SDK could be configured."""


def _init_vertexai() -> bool:
    try:
        import vertexai
    except ImportError:
        logger.info("Vertex AI SDK not installed, trying google-generativeai")
        return False

    # dotenv may load after settings.py is imported
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    if not project:
        raise GeminiInitializationError("GOOGLE_CLOUD_PROJECT not set")
    location = os.getenv("GEMINI_LOCATION") or GEMINI_LOCATION or "us-central1"

    vertexai.init(project=project, location=location)
    logger.info("Gemini backend: Vertex AI project=%s location=%s model=%s", project, location, GEMINI_MODEL)
    return True


def _init_genai() -> None:
    try:
        import google.generativeai as genai
    except ImportError as e:
        raise GeminiInitializationError(
            "No Gemini SDK available. Install google-cloud-aiplatform or google-generativeai."
        ) from e

    api_key = os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise GeminiInitializationError("Set GOOGLE_CLOUD_PROJECT (Vertex AI) or GOOGLE_API_KEY")

    genai.configure(api_key=api_key)
    logger.info("Gemini backend: google-generativeai model=%s", GEMINI_MODEL)


@lru_cache(maxsize=1)
def backend() -> str:
    """
    Configure the Gemini SDK and return which one is in use.

    Raises:
        GeminiInitializationError: neither SDK is installed and configured
    """
    try:
        if _init_vertexai():
            return "vertexai"
        _init_genai()
        return "genai"
    except GeminiInitializationError:
        raise
    except Exception as e:
        logger.error("Failed to initialize Gemini: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e


@lru_cache(maxsize=8)
def model_for(system_instruction: str | None = None):
    """Cached GenerativeModel for one system instruction."""
    if backend() == "vertexai":
        from vertexai.generative_models import GenerativeModel
    else:
        from google.generativeai import GenerativeModel

    if system_instruction is None:
        return GenerativeModel(GEMINI_MODEL)
    return GenerativeModel(GEMINI_MODEL, system_instruction=system_instruction)
