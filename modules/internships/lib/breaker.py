"""
Per-source circuit breaker.

    CLOSED --(failure_threshold consecutive failures)--> OPEN
    OPEN --(cooldown_sec elapsed)--> HALF_OPEN   (exactly one trial admitted)
    HALF_OPEN --success--> CLOSED
    HALF_OPEN --failure--> OPEN (fresh cooldown)

Breakers live on a BreakerBoard. The orchestrator makes a fresh board per run
unless the caller hands in a long-lived one.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from .errors import CircuitOpenError

T = TypeVar("T")


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        cooldown_sec: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        self.name = name
        self.failure_threshold = failure_threshold
        self.cooldown_sec = float(cooldown_sec)
        self._clock = clock
        self._lock = threading.Lock()
        self._reset_locked()

    def _reset_locked(self) -> None:
        self._state = BreakerState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False
        self._total_calls = 0
        self._total_failures = 0
        self._short_circuited = 0

    @property
    def state(self) -> BreakerState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    # ---- admission ----

    def allow(self) -> bool:
        """
        True when a call may proceed. In HALF_OPEN only the first caller gets
        True; everyone else is rejected until that trial reports back.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state is BreakerState.CLOSED:
                self._total_calls += 1
                return True
            if self._state is BreakerState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                self._total_calls += 1
                return True
            self._short_circuited += 1
            return False

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._trial_in_flight = False
            self._state = BreakerState.CLOSED
            self._opened_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._total_failures += 1
            self._consecutive_failures += 1
            if self._state is BreakerState.HALF_OPEN or self._consecutive_failures >= self.failure_threshold:
                self._state = BreakerState.OPEN
                self._opened_at = self._clock()
            self._trial_in_flight = False

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        is_failure: Callable[[T], bool] | None = None,
        **kwargs: Any,
    ) -> T:
        """
        Run fn through the breaker. Raising counts as a failure (and re-raises);
        so does a return value for which is_failure(result) is true.

        Raises:
            CircuitOpenError: short-circuited, fn was not called.
        """
        if not self.allow():
            raise CircuitOpenError(self.name)
        try:
            result = fn(*args, **kwargs)
        except BaseException:
            self.record_failure()
            raise
        if is_failure is not None and is_failure(result):
            self.record_failure()
        else:
            self.record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self._reset_locked()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            self._maybe_half_open()
            return {
                "name": self.name,
                "state": self._state.value,
                "consecutive_failures": self._consecutive_failures,
                "total_calls": self._total_calls,
                "total_failures": self._total_failures,
                "short_circuited": self._short_circuited,
                "opened_at": self._opened_at,
            }

    # ---- internals (lock held) ----

    def _maybe_half_open(self) -> None:
        if (
            self._state is BreakerState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.cooldown_sec
        ):
            self._state = BreakerState.HALF_OPEN
            self._trial_in_flight = False


class BreakerBoard:
    """name -> CircuitBreaker, created on first use with the board's settings."""

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_sec: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown_sec = cooldown_sec
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, self.failure_threshold, self.cooldown_sec, self._clock)
                self._breakers[name] = breaker
            return breaker

    def reset(self) -> None:
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            breakers = list(self._breakers.items())
        return {name: b.snapshot() for name, b in breakers}
