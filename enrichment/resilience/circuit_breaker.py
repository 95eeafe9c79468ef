"""
Per-upstream circuit breakers.

Process-local and not durable: a restart starts every breaker closed, which is
fine because the breaker only saves time on a dependency that is down. Shared
by every in-flight request, so all state changes happen under one lock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

import structlog

from enrichment.observability import metrics as obs_metrics

logger = structlog.get_logger()


@dataclass
class BreakerState:
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False


class CircuitBreakerRegistry:
    """Consecutive-failure breakers keyed by upstream name."""

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._states: dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def is_open(self, upstream: str) -> bool:
        """True while the breaker is open; closes it once the cool-down has elapsed."""
        with self._lock:
            state = self._states.get(upstream)
            if state is None or not state.is_open:
                return False
            if self._clock() - state.last_failure >= self.cooldown_seconds:
                state.is_open = False
                state.failures = 0
                logger.info("circuit_closed_after_cooldown", upstream=upstream)
                obs_metrics.record_breaker_transition(upstream, "closed")
                return False
            return True

    def record_failure(self, upstream: str) -> bool:
        """Count a failure. Returns True if this failure opened the breaker."""
        with self._lock:
            state = self._states.setdefault(upstream, BreakerState())
            state.failures += 1
            state.last_failure = self._clock()
            opened = not state.is_open and state.failures >= self.failure_threshold
            if state.failures >= self.failure_threshold:
                state.is_open = True
            failures = state.failures
        if opened:
            logger.warning("circuit_opened", upstream=upstream, failures=failures)
            obs_metrics.record_breaker_transition(upstream, "open")
        return opened

    def record_success(self, upstream: str) -> None:
        with self._lock:
            state = self._states.get(upstream)
            if state is not None:
                state.failures = 0
                state.is_open = False

    def snapshot(self, upstream: str) -> BreakerState:
        with self._lock:
            return replace(self._states.get(upstream, BreakerState()))

    def reset(self) -> None:
        with self._lock:
            self._states.clear()
