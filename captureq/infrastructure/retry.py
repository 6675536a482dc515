"""
Circuit breaker for remote AI stages.

Retries with backoff live in captureq.llm.retry (tenacity). The breaker sits
one level above: once a stage keeps failing, callers skip the remote call and
go straight to their deterministic fallback until the reset window passes.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from threading import Lock

from captureq.observability.telemetry import counter, log_event


@dataclass
class CircuitBreaker:
    """
    closed -> open after fail_max failures; open -> half_open once reset_timeout
    passes. half_open admits a single trial call and rejects everyone else
    until that call records its success or failure.
    """

    stage: str
    fail_max: int = 5
    reset_timeout: float = 60.0
    clock: Callable[[], float] = time.monotonic
    _failures: int = field(default=0, init=False)
    _state: str = field(default="closed", init=False)
    _opened_at: float = field(default=0.0, init=False)
    _trial_in_flight: bool = field(default=False, init=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    @property
    def state(self) -> str:
        return self._state

    def allow_request(self) -> bool:
        with self._lock:
            if self._state == "open" and self.clock() - self._opened_at >= self.reset_timeout:
                self._state = "half_open"
                self._failures = 0
                self._trial_in_flight = False

            if self._state == "half_open":
                if not self._trial_in_flight:
                    self._trial_in_flight = True
                    return True
            elif self._state == "closed":
                return True

            counter(f"{self.stage}.circuit_rejected")
            log_event("circuit.open", stage=self.stage, state=self._state)
            return False

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._state = "closed"
            self._trial_in_flight = False

    def record_failure(self) -> None:
        """Count a failure; a failed half-open trial call reopens immediately."""
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            if self._state == "half_open" or self._failures >= self.fail_max:
                self._state = "open"
                self._opened_at = self.clock()
                counter(f"{self.stage}.circuit_opened")
                log_event("circuit.opened", stage=self.stage, failures=self._failures)
