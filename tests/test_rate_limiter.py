"""Tests for sliding windows, circuit breakers and the priority queue."""

from __future__ import annotations

from typing import List

import pytest

from core.rate_limiter import CircuitBreaker, RateLimitChecker, RequestQueue
from core.types import CircuitState, Priority, QueuedRequest


async def _noop() -> None:
    return None


def _request(request_id: str, priority: Priority, enqueued_at: float = 0.0, timeout: float = 300.0):
    return QueuedRequest(
        id=request_id,
        source="test-source",
        priority=priority,
        enqueued_at=enqueued_at,
        deadline=enqueued_at + timeout,
        operation=_noop,
    )


def _ids(queue: RequestQueue) -> List[str]:
    ids = []
    while queue:
        ids.append(queue.dequeue_next().id)
    return ids


# ---------------------------------------------------------------------------
# RateLimitChecker
# ---------------------------------------------------------------------------


def test_minute_window_blocks_until_oldest_request_leaves(clock, make_config) -> None:
    config = make_config(max_requests_per_minute=2)
    checker = RateLimitChecker(clock=clock)

    checker.record_request("test-source")
    clock.advance(10)
    checker.record_request("test-source")

    assert checker.can_proceed("test-source", config) is False
    assert checker.seconds_until_available("test-source", config) == pytest.approx(50)

    clock.advance(50.5)
    assert checker.can_proceed("test-source", config) is True
    assert checker.seconds_until_available("test-source", config) == 0


def test_hour_window_is_enforced_independently(clock, make_config) -> None:
    config = make_config(max_requests_per_minute=100, max_requests_per_hour=3)
    checker = RateLimitChecker(clock=clock)

    for _ in range(3):
        checker.record_request("test-source")
        clock.advance(120)

    assert checker.window_counts("test-source") == {"last_minute": 0, "last_hour": 3}
    assert checker.can_proceed("test-source", config) is False

    clock.advance(3600)
    assert checker.can_proceed("test-source", config) is True


def test_prune_drops_entries_older_than_an_hour(clock) -> None:
    checker = RateLimitChecker(clock=clock)
    checker.record_request("a")
    checker.record_request("b")
    clock.advance(3601)
    checker.record_request("b")

    assert checker.prune() == 2
    assert checker.window_counts("b")["last_hour"] == 1


# ---------------------------------------------------------------------------
# CircuitBreaker
# ---------------------------------------------------------------------------


def test_breaker_opens_at_threshold(clock) -> None:
    breaker = CircuitBreaker("test-source", threshold=3, clock=clock)

    assert breaker.record_failure() is False
    assert breaker.record_failure() is False
    assert breaker.record_failure() is True
    assert breaker.state is CircuitState.OPEN
    assert breaker.can_dispatch() is False


def test_breaker_half_open_allows_single_trial(clock) -> None:
    breaker = CircuitBreaker("test-source", threshold=1, cooldown_seconds=60, clock=clock)
    breaker.record_failure()

    clock.advance(30)
    assert breaker.try_half_open() is False

    clock.advance(30)
    assert breaker.try_half_open() is True
    assert breaker.state is CircuitState.HALF_OPEN
    assert breaker.can_dispatch() is True

    breaker.on_dispatch()
    assert breaker.can_dispatch() is False

    assert breaker.record_success() is True
    assert breaker.state is CircuitState.CLOSED
    assert breaker.consecutive_failures == 0


def test_breaker_failed_trial_reopens(clock) -> None:
    breaker = CircuitBreaker("test-source", threshold=5, cooldown_seconds=60, clock=clock)
    for _ in range(5):
        breaker.record_failure()
    clock.advance(60)
    breaker.try_half_open()
    breaker.on_dispatch()

    assert breaker.record_failure() is True
    assert breaker.state is CircuitState.OPEN
    assert breaker.cooldown_elapsed() is False


def test_success_in_closed_state_resets_failures(clock) -> None:
    breaker = CircuitBreaker("test-source", threshold=3, clock=clock)
    breaker.record_failure()
    breaker.record_failure()

    assert breaker.record_success() is False
    assert breaker.consecutive_failures == 0


def test_success_while_open_keeps_circuit_open(clock) -> None:
    breaker = CircuitBreaker("test-source", threshold=1, cooldown_seconds=60, clock=clock)
    breaker.record_failure()
    clock.advance(20)

    assert breaker.record_success() is False
    assert breaker.state is CircuitState.OPEN
    assert breaker.consecutive_failures == 1
    assert breaker.seconds_until_half_open() == 40.0


# ---------------------------------------------------------------------------
# RequestQueue
# ---------------------------------------------------------------------------


def test_queue_orders_high_normal_low_fifo_within_tier() -> None:
    queue = RequestQueue("test-source")
    queue.enqueue(_request("low-1", Priority.LOW))
    queue.enqueue(_request("normal-1", Priority.NORMAL))
    queue.enqueue(_request("high-1", Priority.HIGH))
    queue.enqueue(_request("low-2", Priority.LOW))
    queue.enqueue(_request("normal-2", Priority.NORMAL))
    queue.enqueue(_request("high-2", Priority.HIGH))

    assert _ids(queue) == ["high-1", "high-2", "normal-1", "normal-2", "low-1", "low-2"]


def test_queue_enqueue_reports_position() -> None:
    queue = RequestQueue("test-source")
    assert queue.enqueue(_request("n", Priority.NORMAL)) == 0
    assert queue.enqueue(_request("l", Priority.LOW)) == 1
    assert queue.enqueue(_request("h", Priority.HIGH)) == 0
    assert queue.enqueue(_request("n2", Priority.NORMAL)) == 2


def test_purge_expired_keeps_live_items() -> None:
    queue = RequestQueue("test-source")
    queue.enqueue(_request("old", Priority.HIGH, enqueued_at=0.0))
    queue.enqueue(_request("fresh", Priority.NORMAL, enqueued_at=200.0))

    expired = queue.purge_expired(now=301.0)

    assert [item.id for item in expired] == ["old"]
    assert len(queue) == 1
    assert queue.next_deadline() == 500.0
    assert queue.dequeue_next().id == "fresh"
    assert queue.next_deadline() is None


def test_snapshot_counts_by_priority() -> None:
    queue = RequestQueue("test-source")
    queue.enqueue(_request("a", Priority.HIGH, enqueued_at=10.0))
    queue.enqueue(_request("b", Priority.LOW, enqueued_at=20.0))

    snapshot = queue.snapshot(now=30.0)

    assert snapshot["length"] == 2
    assert snapshot["by_priority"] == {"high": 1, "normal": 0, "low": 1}
    assert snapshot["oldest_wait_seconds"] == 20.0
