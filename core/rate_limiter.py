"""Sliding-window rate limits, circuit breakers and priority request queues."""

from __future__ import annotations

import time
from collections import deque
from typing import Deque, Dict, List, Optional

from core.types import (
    CircuitState,
    Clock,
    Priority,
    QueuedRequest,
    SourceConfig,
    SourceName,
)
from utils.logger import get_logger

logger = get_logger(__name__)

MINUTE_SECONDS = 60.0
HOUR_SECONDS = 3600.0
DEFAULT_CIRCUIT_COOLDOWN_SECONDS = 60.0


class RateLimitChecker:
    """Tracks dispatch timestamps per source over 60 s and 3600 s windows.

    ``can_proceed`` is a pure check; callers record a dispatch separately
    with ``record_request`` once the request is actually sent.
    """

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._history: Dict[SourceName, Deque[float]] = {}

    def _timestamps(self, source: SourceName) -> Deque[float]:
        if source not in self._history:
            self._history[source] = deque()
        return self._history[source]

    def prune(self, source: Optional[SourceName] = None) -> int:
        """Drop timestamps older than one hour. Returns how many were dropped."""
        cutoff = self._clock() - HOUR_SECONDS
        sources = [source] if source else list(self._history)
        dropped = 0
        for name in sources:
            timestamps = self._timestamps(name)
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()
                dropped += 1
        return dropped

    def window_counts(self, source: SourceName) -> Dict[str, int]:
        self.prune(source)
        now = self._clock()
        timestamps = self._timestamps(source)
        last_minute = sum(1 for ts in timestamps if ts > now - MINUTE_SECONDS)
        return {"last_minute": last_minute, "last_hour": len(timestamps)}

    def can_proceed(self, source: SourceName, config: SourceConfig) -> bool:
        counts = self.window_counts(source)
        if counts["last_minute"] >= config.max_requests_per_minute:
            return False
        if counts["last_hour"] >= config.max_requests_per_hour:
            return False
        return True

    def seconds_until_available(self, source: SourceName, config: SourceConfig) -> float:
        """How long until both windows have room for one more request."""
        self.prune(source)
        now = self._clock()
        timestamps = list(self._timestamps(source))
        wait = 0.0

        in_minute = [ts for ts in timestamps if ts > now - MINUTE_SECONDS]
        if len(in_minute) >= config.max_requests_per_minute:
            # The oldest entry that must leave the window for a slot to open.
            index = len(in_minute) - config.max_requests_per_minute
            wait = max(wait, in_minute[index] + MINUTE_SECONDS - now)

        if len(timestamps) >= config.max_requests_per_hour:
            index = len(timestamps) - config.max_requests_per_hour
            wait = max(wait, timestamps[index] + HOUR_SECONDS - now)

        return max(wait, 0.0)

    def record_request(self, source: SourceName) -> None:
        self._timestamps(source).append(self._clock())

    def reset(self, source: Optional[SourceName] = None) -> None:
        if source is None:
            self._history.clear()
        else:
            self._history.pop(source, None)


class CircuitBreaker:
    """Per-source circuit breaker.

    closed -> open after ``threshold`` consecutive failures; open -> half-open
    once ``cooldown_seconds`` passed since the last failure; in half-open a
    single trial call is allowed and its outcome closes or re-opens the
    circuit.
    """

    def __init__(
        self,
        source: SourceName,
        threshold: int,
        cooldown_seconds: float = DEFAULT_CIRCUIT_COOLDOWN_SECONDS,
        clock: Clock = time.monotonic,
    ) -> None:
        self.source = source
        self.threshold = threshold
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.last_failure_time: Optional[float] = None
        self.trial_in_flight = False

    def cooldown_elapsed(self) -> bool:
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.cooldown_seconds

    def try_half_open(self) -> bool:
        """Move an open circuit to half-open when the cooldown has passed."""
        if self.state is CircuitState.OPEN and self.cooldown_elapsed():
            self.state = CircuitState.HALF_OPEN
            self.trial_in_flight = False
            logger.info("Circuit for %s is half-open, allowing one trial call", self.source)
            return True
        return False

    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    def can_dispatch(self) -> bool:
        if self.state is CircuitState.CLOSED:
            return True
        if self.state is CircuitState.HALF_OPEN:
            return not self.trial_in_flight
        return False

    def on_dispatch(self) -> None:
        if self.state is CircuitState.HALF_OPEN:
            self.trial_in_flight = True

    def seconds_until_half_open(self) -> float:
        if self.state is not CircuitState.OPEN or self.last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self.last_failure_time
        return max(0.0, self.cooldown_seconds - elapsed)

    def record_success(self) -> bool:
        """Returns True when this success closed a half-open circuit.

        A late success from a call dispatched before the circuit opened
        leaves an open circuit untouched.
        """
        if self.state is CircuitState.OPEN:
            return False

        closed = self.state is CircuitState.HALF_OPEN
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.trial_in_flight = False
        if closed:
            logger.info("Circuit for %s closed after successful trial", self.source)
        return closed

    def record_failure(self) -> bool:
        """Returns True when this failure opened the circuit."""
        self.consecutive_failures += 1
        self.last_failure_time = self._clock()
        was_half_open = self.state is CircuitState.HALF_OPEN
        self.trial_in_flight = False

        if was_half_open or (
            self.state is CircuitState.CLOSED
            and self.consecutive_failures >= self.threshold
        ):
            self.state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened for %s after %d failures",
                self.source,
                self.consecutive_failures,
            )
            return True
        return False

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.consecutive_failures = 0
        self.last_failure_time = None
        self.trial_in_flight = False


class RequestQueue:
    """Priority queue of held requests for one source.

    ``high`` goes after the last queued ``high``, ``normal`` before the first
    ``low`` and ``low`` at the tail, so order is strict by tier and FIFO
    inside a tier.
    """

    def __init__(self, source: SourceName) -> None:
        self.source = source
        self._items: List[QueuedRequest] = []

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def enqueue(self, request: QueuedRequest) -> int:
        """Insert ``request`` at its priority position. Returns the index."""
        if request.priority is Priority.HIGH:
            index = 0
            for position, item in enumerate(self._items):
                if item.priority is Priority.HIGH:
                    index = position + 1
        elif request.priority is Priority.NORMAL:
            index = len(self._items)
            for position, item in enumerate(self._items):
                if item.priority is Priority.LOW:
                    index = position
                    break
        else:
            index = len(self._items)

        self._items.insert(index, request)
        return index

    def next_deadline(self) -> Optional[float]:
        return min((item.deadline for item in self._items), default=None)

    def dequeue_next(self) -> Optional[QueuedRequest]:
        if not self._items:
            return None
        return self._items.pop(0)

    def purge_expired(self, now: float) -> List[QueuedRequest]:
        """Remove and return every item whose deadline has passed."""
        expired = [item for item in self._items if item.deadline <= now]
        if expired:
            self._items = [item for item in self._items if item.deadline > now]
        return expired

    def drain_all(self) -> List[QueuedRequest]:
        items, self._items = self._items, []
        return items

    def snapshot(self, now: float) -> Dict[str, object]:
        by_priority = {priority.value: 0 for priority in Priority}
        for item in self._items:
            by_priority[item.priority.value] += 1
        oldest = min((item.enqueued_at for item in self._items), default=None)
        return {
            "length": len(self._items),
            "by_priority": by_priority,
            "oldest_wait_seconds": round(now - oldest, 3) if oldest is not None else None,
        }
