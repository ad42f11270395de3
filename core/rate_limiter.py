#!/usr/bin/env python3
"""
Rate Limiting - Sliding window action limiter with circuit breaker.

Impact: Keeps automated sessions under platform action budgets and stops
hammering an external system once it starts failing consistently.
"""

import asyncio
import time
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Deque, Optional, Tuple, TypeVar

from .constants import (
    ACTION_WINDOW_SECONDS,
    CIRCUIT_FAILURE_THRESHOLD,
    CIRCUIT_RESET_TIMEOUT,
)
from .errors import CircuitOpenError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SlidingWindowLimiter:
    """
    Allows at most `max_actions` within any rolling `window_seconds`.

    `check()` never mutates the recorded actions beyond pruning expired ones;
    `record()` registers an action that has been allowed.
    """

    def __init__(
        self,
        max_actions: int,
        window_seconds: float = ACTION_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_actions = max_actions
        self.window_seconds = window_seconds
        self._clock = clock
        self._timestamps: Deque[float] = deque()

    def _prune(self, now: float):
        cutoff = now - self.window_seconds
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def check(self) -> Tuple[bool, float]:
        """
        Check if an action is allowed right now.

        Returns:
            (allowed, wait_seconds) - wait_seconds is how long until a slot opens
        """
        now = self._clock()
        self._prune(now)

        if len(self._timestamps) < self.max_actions:
            return True, 0.0

        oldest = self._timestamps[0]
        return False, max(0.0, oldest + self.window_seconds - now)

    def record(self):
        """Record an allowed action at the current time."""
        self._timestamps.append(self._clock())

    async def acquire(self):
        """Wait until a slot is free, then record the action."""
        while True:
            allowed, wait = self.check()
            if allowed:
                self.record()
                return
            logger.debug(f"[RateLimiter] Window full, waiting {wait:.2f}s")
            await asyncio.sleep(wait)

    def count(self) -> int:
        """Number of actions in the current window."""
        self._prune(self._clock())
        return len(self._timestamps)

    def reset(self):
        """Forget all recorded actions."""
        self._timestamps.clear()


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


class CircuitBreaker:
    """
    Circuit breaker pattern for resilience.

    After failure_threshold consecutive failures, opens the circuit for
    reset_timeout seconds. The first call after the timeout is a trial:
    success closes the circuit, failure reopens it.
    """

    def __init__(
        self,
        failure_threshold: int = CIRCUIT_FAILURE_THRESHOLD,
        reset_timeout: float = CIRCUIT_RESET_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ):
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.name = name
        self._clock = clock
        self.failures = 0
        self.last_failure: Optional[float] = None
        self.state = CircuitState.CLOSED

    def can_execute(self) -> bool:
        """Check if a request can be executed, moving to half-open when due."""
        if self.state == CircuitState.OPEN:
            if self._clock() - (self.last_failure or 0) >= self.reset_timeout:
                self.state = CircuitState.HALF_OPEN
                logger.info(f"[CircuitBreaker:{self.name}] Entering half-open state")
                return True
            return False
        return True

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run `fn` under circuit breaker protection."""
        if not self.can_execute():
            raise CircuitOpenError(context={"circuit": self.name, "failures": self.failures})

        try:
            result = await fn()
        except Exception as e:
            self.record_failure(str(e))
            raise

        self.record_success()
        return result

    def record_success(self):
        """Record successful request."""
        if self.state == CircuitState.HALF_OPEN:
            logger.info(f"[CircuitBreaker:{self.name}] Circuit closed - recovered")
        self.failures = 0
        self.state = CircuitState.CLOSED

    def record_failure(self, error: str):
        """Record failed request."""
        self.failures += 1
        self.last_failure = self._clock()

        if self.state == CircuitState.HALF_OPEN:
            self.state = CircuitState.OPEN
            logger.warning(f"[CircuitBreaker:{self.name}] Failure in half-open, opening circuit: {error}")
        elif self.failures >= self.failure_threshold:
            self.state = CircuitState.OPEN
            logger.warning(f"[CircuitBreaker:{self.name}] Circuit opened after {self.failures} failures")

    def reset(self):
        """Force the circuit closed."""
        self.state = CircuitState.CLOSED
        self.failures = 0
        self.last_failure = None
        logger.info(f"[CircuitBreaker:{self.name}] Reset to closed")

    def get_state(self) -> str:
        """Get current state."""
        return self.state.value
