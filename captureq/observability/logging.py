"""Logger factory shared by every captureq module.

One stream handler is attached to the root logger the first time a module asks
for a logger; later calls only re-read the level so tests and the API process
can flip CAPTUREQ_LOG_LEVEL at runtime.
"""

from __future__ import annotations

import logging
import os
from typing import Final

_HANDLER_ATTACHED: bool = False
_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# SDK loggers that flood INFO with per-request chatter
_NOISY_LOGGERS: Final[tuple[str, ...]] = (
    "google.auth",
    "google.api_core",
    "urllib3",
    "httpx",
)


def _resolve_level() -> int:
    level_name = os.getenv("CAPTUREQ_LOG_LEVEL") or os.getenv("LOG_LEVEL", "INFO")
    return getattr(logging, level_name.upper(), logging.INFO)


def _quiet_third_party(level: int) -> None:
    floor = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(floor)


def get_logger(name: str) -> logging.Logger:
    """Return a module logger configured with a single stream handler."""
    global _HANDLER_ATTACHED

    level = _resolve_level()

    if not _HANDLER_ATTACHED:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(level)
        _quiet_third_party(level)
        _HANDLER_ATTACHED = True
    else:
        logging.getLogger().setLevel(level)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
