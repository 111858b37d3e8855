"""
Base data types for the product extraction pipeline.

This module holds the enums, dataclasses and pydantic models shared by the
rate limiter, the source wrappers and the product resolver.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Optional,
    Tuple,
)

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Base type aliases
# ============================================================================

URL = str
SourceName = str
Price = float
Timestamp = float
HTMLContent = str
JSONContent = Dict[str, Any]

Operation = Callable[..., Awaitable[Any]]
Clock = Callable[[], float]
SleepFunc = Callable[[float], Awaitable[None]]


# ============================================================================
# Source names
# ============================================================================

SOURCE_AI_EXTRACTOR = "ai-extractor"
SOURCE_CRAWL_SERVICE = "crawl-service"
SOURCE_HEADLESS_BROWSER = "headless-browser"
SOURCE_CATALOG_API = "catalog-api"
SOURCE_PAGE_FETCH = "page-fetch"


# ============================================================================
# Enums
# ============================================================================


class Priority(str, Enum):
    """Queue priority tiers."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class ExtractionMethod(str, Enum):
    """Which cascade step produced a resolved product."""

    CATALOG_API = "catalog-api"
    CRAWL_METADATA = "crawl-metadata"
    STRUCTURED_DATA = "structured-data"
    AI_EXTRACTION = "ai-extraction"
    AI_SEARCH = "ai-search"
    HEURISTIC = "heuristic"
    MANUAL = "manual"


class EventKind(str, Enum):
    """Observable pipeline events."""

    CIRCUIT_OPENED = "circuit_opened"
    CIRCUIT_HALF_OPEN = "circuit_half_open"
    CIRCUIT_CLOSED = "circuit_closed"
    REQUEST_QUEUED = "request_queued"
    QUEUE_TIMEOUT = "queue_timeout"
    EMERGENCY_STOP = "emergency_stop"


# ============================================================================
# Rate limiting primitives
# ============================================================================


@dataclass(frozen=True)
class SourceConfig:
    """Limits and cost settings for one external source."""

    max_requests_per_minute: int
    max_requests_per_hour: int
    max_concurrent: int
    timeout_seconds: float
    max_retries: int
    circuit_breaker_threshold: int
    cost_per_request: float = 0.0
    enabled: bool = True

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if self.max_requests_per_minute < 1 or self.max_requests_per_hour < 1:
            raise ValueError("request ceilings must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.circuit_breaker_threshold < 1:
            raise ValueError("circuit_breaker_threshold must be at least 1")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")


@dataclass
class SourceStats:
    """Counters for one source, mutated on every execution."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retries: int = 0
    current_concurrent: int = 0
    queue_length: int = 0
    total_cost: float = 0.0
    last_request_time: Optional[Timestamp] = None
    last_failure_time: Optional[Timestamp] = None
    circuit_state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    avg_response_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        finished = self.successful_requests + self.failed_requests
        if finished == 0:
            return 0.0
        return self.successful_requests / finished

    def record_latency(self, duration_ms: float) -> None:
        if self.avg_response_time_ms == 0.0:
            self.avg_response_time_ms = duration_ms
        else:
            self.avg_response_time_ms = (self.avg_response_time_ms + duration_ms) / 2

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "retries": self.retries,
            "current_concurrent": self.current_concurrent,
            "queue_length": self.queue_length,
            "total_cost": round(self.total_cost, 6),
            "last_request_time": self.last_request_time,
            "circuit_state": self.circuit_state.value,
            "consecutive_failures": self.consecutive_failures,
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
            "success_rate": round(self.success_rate, 4),
        }


@dataclass
class QueuedRequest:
    """A pending operation held back because its source was saturated."""

    id: str
    source: SourceName
    priority: Priority
    enqueued_at: Timestamp
    deadline: Timestamp
    operation: Operation
    args: Tuple[Any, ...] = ()
    future: Optional[asyncio.Future] = None


# ============================================================================
# Event reporting primitives
# ============================================================================


@dataclass
class PipelineEvent:
    """Represents an alert emitted by the rate limiter."""

    kind: EventKind
    source: Optional[SourceName]
    timestamp: Timestamp
    data: Dict[str, Any] = field(default_factory=dict)


EventCallback = Callable[["PipelineEvent"], None]


# ============================================================================
# Product models
# ============================================================================


@dataclass
class ProductDraft:
    """Partial product data produced by one cascade step."""

    name: Optional[str] = None
    price: Optional[Price] = None
    original_price: Optional[Price] = None
    image_url: Optional[str] = None
    store: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None

    def merged_with(self, other: "ProductDraft") -> "ProductDraft":
        """Fill fields missing here from ``other``."""
        return ProductDraft(
            name=self.name or other.name,
            price=self.price if self.price else other.price,
            original_price=self.original_price or other.original_price,
            image_url=self.image_url or other.image_url,
            store=self.store or other.store,
            description=self.description or other.description,
            category=self.category or other.category,
            brand=self.brand or other.brand,
        )

    def filled_fields(self) -> int:
        return sum(
            1
            for value in (
                self.name,
                self.price,
                self.image_url,
                self.description,
                self.category,
                self.brand,
            )
            if value
        )


class ResolvedProduct(BaseModel):
    """Final result of resolving a product URL."""

    model_config = ConfigDict(use_enum_values=False)

    url: str
    name: str
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    image_url: Optional[str] = None
    store: str
    description: Optional[str] = None
    category: Optional[str] = None
    brand: Optional[str] = None
    extraction_method: ExtractionMethod
    needs_manual_input: bool = False

    @field_validator("name", "store")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @classmethod
    def from_draft(
        cls,
        draft: ProductDraft,
        *,
        url: str,
        store: str,
        method: ExtractionMethod,
        needs_manual_input: bool = False,
    ) -> "ResolvedProduct":
        return cls(
            url=url,
            name=draft.name or "",
            price=draft.price if draft.price and draft.price > 0 else None,
            original_price=(
                draft.original_price
                if draft.original_price and draft.original_price > 0
                else None
            ),
            image_url=draft.image_url,
            store=draft.store or store,
            description=draft.description,
            category=draft.category,
            brand=draft.brand,
            extraction_method=method,
            needs_manual_input=needs_manual_input,
        )
