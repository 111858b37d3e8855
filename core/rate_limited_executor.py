"""
Rate-limited executor shared by every external source.

``RateLimiterService.execute`` is the single gate for outbound calls: it
enforces the emergency stop, the circuit breaker, the sliding-window rate
limits and the concurrency cap, holds excess work in per-source priority
queues and runs each call with a timeout and bounded exponential-backoff
retries while keeping per-source statistics and cost.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Set

from core.exponential_backoff import (
    RETRIABLE_TYPES,
    BackoffPolicy,
    classify_error,
    retry_limit_for,
)
from core.rate_limiter import (
    DEFAULT_CIRCUIT_COOLDOWN_SECONDS,
    CircuitBreaker,
    RateLimitChecker,
    RequestQueue,
)
from core.types import (
    CircuitState,
    Clock,
    EventCallback,
    EventKind,
    Operation,
    PipelineEvent,
    Priority,
    QueuedRequest,
    SleepFunc,
    SourceConfig,
    SourceName,
    SourceStats,
)
from utils.error_handling import (
    CircuitOpenError,
    ConfigurationError,
    EmergencyStopError,
    PipelineError,
    QueueTimeoutError,
    SourceDisabledError,
    SourceTimeoutError,
)
from utils.logger import get_logger, log_pipeline_event

logger = get_logger(__name__)

DEFAULT_QUEUE_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_DAILY_COST = 10.0

MAINTENANCE_TICK_SECONDS = 1.0
WAKEUP_SLACK_SECONDS = 0.01
PRUNE_INTERVAL_SECONDS = 300.0
COST_CHECK_INTERVAL_SECONDS = 60.0
REPORT_INTERVAL_SECONDS = 600.0

_EVENT_LEVELS = {
    EventKind.CIRCUIT_OPENED: "ERROR",
    EventKind.EMERGENCY_STOP: "CRITICAL",
    EventKind.QUEUE_TIMEOUT: "WARNING",
    EventKind.REQUEST_QUEUED: "DEBUG",
}


class RateLimiterService:
    """Mediates every external call through limits, breakers and queues."""

    def __init__(
        self,
        configs: Dict[SourceName, SourceConfig],
        *,
        max_daily_cost: float = DEFAULT_MAX_DAILY_COST,
        queue_timeout_seconds: float = DEFAULT_QUEUE_TIMEOUT_SECONDS,
        circuit_cooldown_seconds: float = DEFAULT_CIRCUIT_COOLDOWN_SECONDS,
        clock: Clock = time.time,
        sleep: SleepFunc = asyncio.sleep,
        backoff: Optional[BackoffPolicy] = None,
    ) -> None:
        self._configs: Dict[SourceName, SourceConfig] = dict(configs)
        self.max_daily_cost = max_daily_cost
        self.queue_timeout_seconds = queue_timeout_seconds
        self._clock = clock
        self._sleep = sleep
        self._backoff = backoff or BackoffPolicy()

        self._rate_checker = RateLimitChecker(clock=clock)
        self._stats: Dict[SourceName, SourceStats] = {}
        self._breakers: Dict[SourceName, CircuitBreaker] = {}
        self._queues: Dict[SourceName, RequestQueue] = {}
        for name, config in self._configs.items():
            self._stats[name] = SourceStats()
            self._breakers[name] = CircuitBreaker(
                name,
                config.circuit_breaker_threshold,
                cooldown_seconds=circuit_cooldown_seconds,
                clock=clock,
            )
            self._queues[name] = RequestQueue(name)

        self._subscribers: List[EventCallback] = []
        self._emergency_stop = False
        self._tasks: Set[asyncio.Task] = set()
        self._maintenance_task: Optional[asyncio.Task] = None
        self._wakeups: Dict[SourceName, asyncio.TimerHandle] = {}

        logger.info(
            "RateLimiterService initialized for %d sources (max daily cost %.2f)",
            len(self._configs),
            self.max_daily_cost,
        )

    # ------------------------------------------------------------------
    # Public execution API
    # ------------------------------------------------------------------
    async def execute(
        self,
        source: SourceName,
        operation: Operation,
        *args: Any,
        priority: Priority = Priority.NORMAL,
    ) -> Any:
        """Run ``operation(*args)`` under the limits of ``source``.

        Raises ``ConfigurationError`` for unknown sources, ``EmergencyStopError``
        while the global stop is active, ``SourceDisabledError`` for disabled
        sources and ``CircuitOpenError`` while the breaker is open. Otherwise
        the call is dispatched immediately or queued, and its final result or
        error is returned to the caller.
        """
        config = self.get_config(source)
        self._check_cost_ceiling()
        if self._emergency_stop:
            raise EmergencyStopError(
                "Emergency stop is active, external calls are suspended",
                source=source,
            )
        if not config.enabled:
            raise SourceDisabledError(f"Source {source} is disabled", source=source)

        breaker = self._breakers[source]
        if breaker.is_open():
            if breaker.try_half_open():
                self._sync_circuit_state(source)
                self._emit(EventKind.CIRCUIT_HALF_OPEN, source, {})
            else:
                raise CircuitOpenError(
                    f"Circuit breaker is open for {source}", source=source
                )

        if self._queues[source] or not self._can_dispatch_now(source, config):
            return await self._enqueue(source, operation, args, priority)

        self._reserve_slot(source)
        return await self._run_reserved(source, operation, args)

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register an event observer. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def _can_dispatch_now(self, source: SourceName, config: SourceConfig) -> bool:
        if not self._breakers[source].can_dispatch():
            return False
        if self._stats[source].current_concurrent >= config.max_concurrent:
            return False
        return self._rate_checker.can_proceed(source, config)

    def _reserve_slot(self, source: SourceName) -> None:
        stats = self._stats[source]
        stats.current_concurrent += 1
        stats.total_requests += 1
        stats.last_request_time = self._clock()
        self._rate_checker.record_request(source)
        self._breakers[source].on_dispatch()

    async def _run_reserved(
        self, source: SourceName, operation: Operation, args: tuple
    ) -> Any:
        try:
            return await self._execute_with_retry(source, operation, args)
        finally:
            self._stats[source].current_concurrent -= 1
            self._process_queue(source)

    async def _execute_with_retry(
        self, source: SourceName, operation: Operation, args: tuple
    ) -> Any:
        config = self._configs[source]
        stats = self._stats[source]
        started = self._clock()
        retry = 0

        while True:
            try:
                result = await asyncio.wait_for(
                    operation(*args), timeout=config.timeout_seconds
                )
            except Exception as error:
                failure = self._normalize_error(source, config, error)
                if self._should_retry(config, failure, retry):
                    delay = self._backoff.calculate_delay(retry)
                    retry += 1
                    stats.retries += 1
                    logger.warning(
                        "%s attempt failed (%s), retry %d/%d in %.2fs",
                        source,
                        failure,
                        retry,
                        config.max_retries,
                        delay,
                    )
                    await self._sleep(delay)
                    await self._wait_for_window(source, config)
                    self._rate_checker.record_request(source)
                    stats.last_request_time = self._clock()
                    continue

                self._record_failure(source, failure)
                if failure is error:
                    raise
                raise failure from error

            duration_ms = (self._clock() - started) * 1000
            self._record_success(source, config, duration_ms)
            return result

    def _normalize_error(
        self, source: SourceName, config: SourceConfig, error: Exception
    ) -> Exception:
        if isinstance(error, asyncio.TimeoutError) and not isinstance(error, PipelineError):
            return SourceTimeoutError(
                f"{source} did not answer within {config.timeout_seconds}s",
                source=source,
            )
        return error

    def _should_retry(self, config: SourceConfig, error: Exception, retry: int) -> bool:
        if self._emergency_stop:
            return False
        if classify_error(error) not in RETRIABLE_TYPES:
            return False
        limit = config.max_retries
        error_limit = retry_limit_for(error)
        if error_limit is not None:
            limit = min(limit, error_limit)
        return retry < limit

    async def _wait_for_window(self, source: SourceName, config: SourceConfig) -> None:
        while True:
            wait = self._rate_checker.seconds_until_available(source, config)
            if wait <= 0:
                return
            logger.debug("%s rate window full, holding retry for %.2fs", source, wait)
            await self._sleep(wait)

    # ------------------------------------------------------------------
    # Outcome bookkeeping
    # ------------------------------------------------------------------
    def _record_success(
        self, source: SourceName, config: SourceConfig, duration_ms: float
    ) -> None:
        stats = self._stats[source]
        stats.successful_requests += 1
        stats.total_cost += config.cost_per_request
        stats.record_latency(duration_ms)

        if self._breakers[source].record_success():
            self._emit(EventKind.CIRCUIT_CLOSED, source, {})
        self._sync_circuit_state(source)

        self._check_cost_ceiling()

    def _record_failure(self, source: SourceName, error: Exception) -> None:
        stats = self._stats[source]
        stats.failed_requests += 1
        stats.last_failure_time = self._clock()

        breaker = self._breakers[source]
        opened = breaker.record_failure()
        self._sync_circuit_state(source)
        logger.error("%s request failed: %s", source, error)

        if opened:
            self._emit(
                EventKind.CIRCUIT_OPENED,
                source,
                {
                    "consecutive_failures": breaker.consecutive_failures,
                    "error": str(error),
                },
            )

    def _sync_circuit_state(self, source: SourceName) -> None:
        breaker = self._breakers[source]
        stats = self._stats[source]
        stats.circuit_state = breaker.state
        stats.consecutive_failures = breaker.consecutive_failures

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------
    async def _enqueue(
        self,
        source: SourceName,
        operation: Operation,
        args: tuple,
        priority: Priority,
    ) -> Any:
        now = self._clock()
        request = QueuedRequest(
            id=uuid.uuid4().hex[:12],
            source=source,
            priority=priority,
            enqueued_at=now,
            deadline=now + self.queue_timeout_seconds,
            operation=operation,
            args=args,
            future=asyncio.get_running_loop().create_future(),
        )
        queue = self._queues[source]
        position = queue.enqueue(request)
        self._stats[source].queue_length = len(queue)
        self._emit(
            EventKind.REQUEST_QUEUED,
            source,
            {
                "request_id": request.id,
                "priority": priority.value,
                "position": position,
                "queue_length": len(queue),
            },
        )

        self._process_queue(source)
        return await request.future

    def _process_queue(self, source: SourceName) -> None:
        """Expire stale items, then dispatch as many as capacity allows."""
        queue = self._queues[source]
        self._expire_queue(source)

        if self._emergency_stop or not queue:
            self._stats[source].queue_length = len(queue)
            self._cancel_wakeup(source)
            return

        config = self._configs[source]
        breaker = self._breakers[source]
        if breaker.try_half_open():
            self._sync_circuit_state(source)
            self._emit(EventKind.CIRCUIT_HALF_OPEN, source, {})

        while queue and config.enabled and self._can_dispatch_now(source, config):
            request = queue.dequeue_next()
            if request.future is None or request.future.done():
                continue
            self._reserve_slot(source)
            task = asyncio.get_running_loop().create_task(self._run_queued(request))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        self._stats[source].queue_length = len(queue)
        self._schedule_wakeup(source)

    def _schedule_wakeup(self, source: SourceName) -> None:
        """Re-run the queue of ``source`` at its next deadline, or earlier
        when the rate window or circuit cooldown frees the head first.

        Completions of in-flight calls drain the queue without a timer.
        """
        self._cancel_wakeup(source)
        queue = self._queues[source]
        deadline = queue.next_deadline()
        if deadline is None:
            return

        config = self._configs[source]
        now = self._clock()
        delay = deadline - now
        window_wait = self._rate_checker.seconds_until_available(source, config)
        if window_wait > 0:
            delay = min(delay, window_wait)
        cooldown_wait = self._breakers[source].seconds_until_half_open()
        if cooldown_wait > 0:
            delay = min(delay, cooldown_wait)

        loop = asyncio.get_running_loop()
        self._wakeups[source] = loop.call_later(
            max(delay, 0.0) + WAKEUP_SLACK_SECONDS, self._on_wakeup, source
        )

    def _on_wakeup(self, source: SourceName) -> None:
        self._wakeups.pop(source, None)
        self._process_queue(source)

    def _cancel_wakeup(self, source: SourceName) -> None:
        handle = self._wakeups.pop(source, None)
        if handle is not None:
            handle.cancel()

    async def _run_queued(self, request: QueuedRequest) -> None:
        future = request.future
        try:
            result = await self._run_reserved(request.source, request.operation, request.args)
        except Exception as error:
            if not future.done():
                future.set_exception(error)
            return
        if not future.done():
            future.set_result(result)

    def _expire_queue(self, source: SourceName) -> int:
        expired = self._queues[source].purge_expired(self._clock())
        for request in expired:
            if request.future is not None and not request.future.done():
                request.future.set_exception(
                    QueueTimeoutError(
                        f"Request {request.id} waited more than "
                        f"{self.queue_timeout_seconds:.0f}s in the {source} queue",
                        source=source,
                    )
                )
            self._emit(
                EventKind.QUEUE_TIMEOUT,
                source,
                {"request_id": request.id, "priority": request.priority.value},
            )
        self._stats[source].queue_length = len(self._queues[source])
        return len(expired)

    def _reject_queued(self, error_factory: Callable[[SourceName], PipelineError]) -> None:
        for source, queue in self._queues.items():
            for request in queue.drain_all():
                if request.future is not None and not request.future.done():
                    request.future.set_exception(error_factory(source))
            self._stats[source].queue_length = 0

    def process_queues(self) -> None:
        """Expire and drain every source queue once."""
        for source in self._queues:
            self._process_queue(source)

    def purge_expired(self) -> int:
        return sum(self._expire_queue(source) for source in self._queues)

    # ------------------------------------------------------------------
    # Cost and emergency stop
    # ------------------------------------------------------------------
    def get_total_cost(self) -> float:
        return sum(stats.total_cost for stats in self._stats.values())

    def _check_cost_ceiling(self) -> None:
        if self._emergency_stop:
            return
        total_cost = self.get_total_cost()
        if total_cost > self.max_daily_cost:
            logger.critical(
                "Total cost %.4f exceeded daily ceiling %.2f, stopping all sources",
                total_cost,
                self.max_daily_cost,
            )
            self._activate_emergency_stop(
                {"total_cost": total_cost, "max_daily_cost": self.max_daily_cost}
            )

    def _activate_emergency_stop(self, data: Dict[str, Any]) -> None:
        self._emergency_stop = True
        self._emit(EventKind.EMERGENCY_STOP, None, data)
        self._reject_queued(
            lambda source: EmergencyStopError(
                "Emergency stop activated while request was queued", source=source
            )
        )

    def is_emergency_active(self) -> bool:
        return self._emergency_stop

    def set_emergency_stop(self, active: bool) -> None:
        if active and not self._emergency_stop:
            logger.warning("Emergency stop activated manually")
            self._activate_emergency_stop({"reason": "manual"})
        elif not active and self._emergency_stop:
            self._emergency_stop = False
            logger.info("Emergency stop cleared")
            self.process_queues()

    # ------------------------------------------------------------------
    # Configuration and statistics
    # ------------------------------------------------------------------
    @property
    def sources(self) -> List[SourceName]:
        return list(self._configs)

    def get_config(self, source: SourceName) -> SourceConfig:
        try:
            return self._configs[source]
        except KeyError:
            raise ConfigurationError(f"Unknown source: {source}", source=source) from None

    def update_config(self, source: SourceName, **changes: Any) -> SourceConfig:
        """Replace the config of ``source`` with ``changes`` applied."""
        current = self.get_config(source)
        try:
            updated = dataclasses.replace(current, **changes)
        except (TypeError, ValueError) as error:
            raise ConfigurationError(
                f"Invalid config update for {source}: {error}", source=source
            ) from error

        self._configs[source] = updated
        self._breakers[source].threshold = updated.circuit_breaker_threshold
        logger.info("Updated %s config: %s", source, changes)
        self._process_queue(source)
        return updated

    def get_stats(self, source: Optional[SourceName] = None) -> Dict[str, Any]:
        if source is not None:
            self.get_config(source)
            return self._stats[source].to_dict()
        return {name: stats.to_dict() for name, stats in self._stats.items()}

    def get_source_stats(self, source: SourceName) -> SourceStats:
        self.get_config(source)
        return self._stats[source]

    def get_queue_status(self) -> Dict[str, Any]:
        now = self._clock()
        return {name: queue.snapshot(now) for name, queue in self._queues.items()}

    def reset_stats(self, source: Optional[SourceName] = None) -> None:
        """Zero counters and close circuits. In-flight and queued work is kept."""
        names = [source] if source is not None else list(self._stats)
        for name in names:
            self.get_config(name)
            old = self._stats[name]
            self._stats[name] = SourceStats(
                current_concurrent=old.current_concurrent,
                queue_length=old.queue_length,
            )
            self._breakers[name].reset()
        logger.info("Statistics reset for %s", source or "all sources")

    def log_stats(self) -> None:
        lines = ["Source statistics report:"]
        for name, stats in self._stats.items():
            lines.append(
                f"  {name}: requests={stats.total_requests} "
                f"ok={stats.successful_requests} fail={stats.failed_requests} "
                f"success_rate={stats.success_rate * 100:.1f}% "
                f"cost={stats.total_cost:.4f} "
                f"avg_ms={stats.avg_response_time_ms:.0f} "
                f"circuit={stats.circuit_state.value} "
                f"queue={stats.queue_length} concurrent={stats.current_concurrent}"
            )
        lines.append(
            f"  total cost: {self.get_total_cost():.4f} / {self.max_daily_cost:.2f}"
        )
        logger.info("\n".join(lines))

    def prune_history(self) -> int:
        return self._rate_checker.prune()

    def rate_window(self, source: SourceName) -> Dict[str, int]:
        self.get_config(source)
        return self._rate_checker.window_counts(source)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------
    def _emit(self, kind: EventKind, source: Optional[SourceName], data: Dict[str, Any]) -> None:
        event = PipelineEvent(kind=kind, source=source, timestamp=self._clock(), data=data)
        log_pipeline_event(kind.value, source, data, level=_EVENT_LEVELS.get(kind, "INFO"))
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed for %s", kind.value)

    # ------------------------------------------------------------------
    # Maintenance loop
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._maintenance_task is None or self._maintenance_task.done():
            self._maintenance_task = asyncio.create_task(self._maintenance_loop())
            logger.info("Rate limiter maintenance loop started")

    async def stop(self) -> None:
        for source in list(self._wakeups):
            self._cancel_wakeup(source)
        task, self._maintenance_task = self._maintenance_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Rate limiter maintenance loop stopped")

    async def _maintenance_loop(self) -> None:
        last_prune = last_cost_check = last_report = self._clock()
        while True:
            await self._sleep(MAINTENANCE_TICK_SECONDS)
            self.process_queues()

            now = self._clock()
            if now - last_prune >= PRUNE_INTERVAL_SECONDS:
                dropped = self.prune_history()
                logger.debug("Pruned %d request timestamps", dropped)
                last_prune = now
            if now - last_cost_check >= COST_CHECK_INTERVAL_SECONDS:
                self._check_cost_ceiling()
                last_cost_check = now
            if now - last_report >= REPORT_INTERVAL_SECONDS:
                self.log_stats()
                last_report = now

    @property
    def circuit_states(self) -> Dict[SourceName, CircuitState]:
        return {name: breaker.state for name, breaker in self._breakers.items()}
