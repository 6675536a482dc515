"""Shared LLM call helpers.

call_llm is the single retry-decorated entry point every Gemini adapter uses.
Vertex AI transport errors are converted to builtin exception types so
tenacity can retry them; anything else propagates to the adapter, which owns
its own fallback policy.

call_with_timeout runs a callable on a bounded worker pool so a slow model
never blocks a request handler or the enrichment driver past
LLM_TIMEOUT_SECONDS.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from functools import lru_cache
from typing import Any, TypeVar

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from captureq.config import LLM_MAX_RETRIES, LLM_MAX_WORKERS, LLM_TIMEOUT_SECONDS
from captureq.infrastructure.settings import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE
from captureq.llm.gemini import model_for
from captureq.observability.logging import get_logger
from captureq.observability.telemetry import counter

logger = get_logger(__name__)

T = TypeVar("T")

_FENCE_OPEN = re.compile(r"^```(?:json)?\n?")
_FENCE_CLOSE = re.compile(r"\n?```$")


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
    reraise=True,
)
def call_llm(
    prompt: str,
    counter_prefix: str = "llm",
    system_instruction: str | None = None,
    json_output: bool = True,
) -> str:
    """Call Gemini with retry and Vertex AI exception conversion.

    Args:
        prompt: The prompt to send to the model.
        counter_prefix: Telemetry counter prefix (e.g. "compress", "tiny_task").
        system_instruction: Optional system instruction.
        json_output: Ask the model for application/json output.

    Raises:
        TimeoutError: On deadline exceeded (retried).
        ConnectionError: On service unavailable or internal error (retried).
        OSError: On resource exhausted / rate limited (retried).
        Exception: On other errors (not retried, caller handles).
    """
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    model = model_for(system_instruction)

    generation_config: dict[str, Any] = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": GEMINI_MAX_TOKENS,
    }
    if json_output:
        generation_config["response_mime_type"] = "application/json"

    try:
        response = model.generate_content(prompt, generation_config=generation_config)
        counter(f"llm.{counter_prefix}.success")
        return response.text
    except DeadlineExceeded as e:
        counter(f"llm.{counter_prefix}.timeout")
        logger.warning("LLM call (%s) hit deadline: %s", counter_prefix, e)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except ServiceUnavailable as e:
        counter(f"llm.{counter_prefix}.service_unavailable")
        logger.warning("LLM service unavailable, will retry: %s", e)
        raise ConnectionError(f"LLM service unavailable: {e}") from e
    except ResourceExhausted as e:
        counter(f"llm.{counter_prefix}.rate_limited")
        logger.warning("LLM rate limited (429), will retry: %s", e)
        raise OSError(f"LLM rate limited: {e}") from e
    except InternalServerError as e:
        counter(f"llm.{counter_prefix}.internal_error")
        logger.warning("LLM internal error (500), will retry: %s", e)
        raise ConnectionError(f"LLM internal error: {e}") from e
    except Exception as e:
        logger.error("LLM call (%s) failed: %s", counter_prefix, e)
        raise


@lru_cache(maxsize=1)
def get_executor() -> ThreadPoolExecutor:
    """Process-wide pool for remote AI calls (bounded by LLM_MAX_WORKERS)."""
    return ThreadPoolExecutor(max_workers=LLM_MAX_WORKERS, thread_name_prefix="captureq-llm")


def call_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: float = LLM_TIMEOUT_SECONDS,
    **kwargs: Any,
) -> T:
    """
    Run func on the shared pool and wait at most `timeout` seconds.

    Raises:
        TimeoutError: If the call did not finish in time. The worker keeps
            running; its result is discarded.
        Exception: Whatever func raised.
    """
    future = get_executor().submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError as e:
        future.cancel()
        raise TimeoutError(f"Remote call exceeded {timeout:.1f}s") from e


def parse_json_response(response_text: str) -> Any:
    """
    Strip markdown code fences and decode the model's JSON.

    Raises:
        json.JSONDecodeError: If the payload is not valid JSON
    """
    json_text = response_text.strip()
    if json_text.startswith("```"):
        json_text = _FENCE_OPEN.sub("", json_text)
        json_text = _FENCE_CLOSE.sub("", json_text)
    return json.loads(json_text)
