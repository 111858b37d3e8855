"""Shared fixtures: a controllable clock and rate limiter factory."""

from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from core.exponential_backoff import BackoffPolicy
from core.rate_limited_executor import RateLimiterService
from core.types import SourceConfig


class FakeClock:
    """Manually advanced wall clock used in place of ``time.time``."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)


def build_config(**overrides) -> SourceConfig:
    values = dict(
        max_requests_per_minute=100,
        max_requests_per_hour=1000,
        max_concurrent=5,
        timeout_seconds=5.0,
        max_retries=2,
        circuit_breaker_threshold=3,
        cost_per_request=0.0,
    )
    values.update(overrides)
    return SourceConfig(**values)


@pytest.fixture
def make_config() -> Callable[..., SourceConfig]:
    return build_config


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_service(clock: FakeClock) -> Callable[..., RateLimiterService]:
    def factory(
        configs: Optional[Dict[str, SourceConfig]] = None,
        **kwargs,
    ) -> RateLimiterService:
        kwargs.setdefault("backoff", BackoffPolicy(random_func=lambda: 0.0))
        return RateLimiterService(
            configs or {"test-source": build_config()},
            clock=clock,
            sleep=clock.sleep,
            **kwargs,
        )

    return factory
