"""Per-model circuit breakers for upstream completion calls.

Each model name gets its own failure counter. After ``threshold``
consecutive failures the model is held open for ``cooldown_seconds``;
once the cooldown passes calls are allowed again with a fresh counter.
Any success closes the breaker immediately, even mid-cooldown.

Example:
    >>> registry = BreakerRegistry(threshold=3, cooldown_seconds=60.0)
    >>> registry.is_call_allowed("gpt-4o")
    True
    >>> for _ in range(3):
    ...     registry.report_failure("gpt-4o")
    >>> registry.is_call_allowed("gpt-4o")
    False
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, replace
from typing import Any, Callable, Dict, Optional
import logging
import threading
import time

logger = logging.getLogger(__name__)


@dataclass
class BreakerState:
    """Failure bookkeeping for one model."""
    consecutive_failures: int = 0
    cooldown_until: Optional[float] = None


class BreakerRegistry:
    """Circuit breaker state for every model this process has called.

    Args:
        threshold: Consecutive failures that open the breaker.
        cooldown_seconds: How long an open breaker rejects calls.
        clock: Time source used for cooldown arithmetic.
    """

    def __init__(
        self,
        threshold: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock
        self._states: Dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def is_call_allowed(self, model: str) -> bool:
        with self._lock:
            state = self._states.get(model)
            if state is None or state.cooldown_until is None:
                return True
            return state.cooldown_until <= self.clock()

    def report_failure(self, model: str) -> None:
        with self._lock:
            state = self._states.setdefault(model, BreakerState())
            state.consecutive_failures += 1
            if state.consecutive_failures >= self.threshold:
                state.cooldown_until = self.clock() + self.cooldown_seconds
                state.consecutive_failures = 0
                logger.warning(
                    f"Breaker open for {model} after {self.threshold} failures; "
                    f"cooling down {self.cooldown_seconds:.0f}s"
                )

    def report_success(self, model: str) -> None:
        with self._lock:
            previous = self._states.get(model)
            if previous is not None and previous.cooldown_until is not None:
                logger.info(f"Breaker for {model} closed by a successful call")
            self._states[model] = BreakerState()

    def state(self, model: str) -> BreakerState:
        """Copy of the current state for ``model`` (closed if never seen)."""
        with self._lock:
            return replace(self._states.get(model, BreakerState()))

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            now = self.clock()
            result = {}
            for model, state in sorted(self._states.items()):
                entry = asdict(state)
                entry["open"] = state.cooldown_until is not None and state.cooldown_until > now
                result[model] = entry
            return result
