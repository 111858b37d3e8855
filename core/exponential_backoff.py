"""
Exponential backoff with jitter and error classification for source retries.

The executor asks ``classify_error`` whether a failure is worth another
attempt and ``BackoffPolicy.calculate_delay`` how long to wait before it.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import httpx

from utils.error_handling import (
    InsufficientCreditsError,
    InvalidCredentialsError,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    PipelineError,
    RateLimitedError,
    SourceTimeoutError,
)
from utils.logger import get_logger

logger = get_logger(__name__)


class ErrorType(Enum):
    """Types of errors for retry decisions."""

    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    HTTP_5XX = "http_5xx"
    INVALID_RESPONSE = "invalid_response"
    AUTHENTICATION = "authentication"
    PAYMENT_REQUIRED = "payment_required"
    NOT_FOUND = "not_found"
    NON_RETRIABLE = "non_retriable"
    UNKNOWN = "unknown"


RETRIABLE_TYPES = frozenset(
    {
        ErrorType.TIMEOUT,
        ErrorType.RATE_LIMIT,
        ErrorType.NETWORK,
        ErrorType.HTTP_5XX,
        ErrorType.INVALID_RESPONSE,
    }
)

_NON_RETRIABLE_KEYWORDS = (
    ("unauthorized", ErrorType.AUTHENTICATION),
    ("forbidden", ErrorType.AUTHENTICATION),
    ("invalid_api_key", ErrorType.AUTHENTICATION),
    ("invalid api key", ErrorType.AUTHENTICATION),
    ("payment_required", ErrorType.PAYMENT_REQUIRED),
    ("payment required", ErrorType.PAYMENT_REQUIRED),
    ("insufficient_credits", ErrorType.PAYMENT_REQUIRED),
    ("insufficient credits", ErrorType.PAYMENT_REQUIRED),
    ("not_found", ErrorType.NOT_FOUND),
    ("not found", ErrorType.NOT_FOUND),
)

_RETRIABLE_KEYWORDS = (
    ("timeout", ErrorType.TIMEOUT),
    ("timed out", ErrorType.TIMEOUT),
    ("rate_limit", ErrorType.RATE_LIMIT),
    ("rate limit", ErrorType.RATE_LIMIT),
    ("429", ErrorType.RATE_LIMIT),
    ("econnreset", ErrorType.NETWORK),
    ("enotfound", ErrorType.NETWORK),
    ("connection", ErrorType.NETWORK),
    ("network", ErrorType.NETWORK),
    ("502", ErrorType.HTTP_5XX),
    ("503", ErrorType.HTTP_5XX),
    ("504", ErrorType.HTTP_5XX),
)

_PIPELINE_ERROR_TYPES = (
    (SourceTimeoutError, ErrorType.TIMEOUT),
    (RateLimitedError, ErrorType.RATE_LIMIT),
    (NetworkError, ErrorType.NETWORK),
    (InvalidResponseError, ErrorType.INVALID_RESPONSE),
    (InvalidCredentialsError, ErrorType.AUTHENTICATION),
    (InsufficientCreditsError, ErrorType.PAYMENT_REQUIRED),
    (NotFoundError, ErrorType.NOT_FOUND),
)


def classify_error(error: BaseException) -> ErrorType:
    """Map an arbitrary exception onto an ``ErrorType``.

    Pipeline errors carry their own classification; timeouts and httpx
    transport failures are recognised by type; anything else falls back to
    keyword matching on the message, non-retriable keywords first.
    """
    if isinstance(error, PipelineError):
        for cls, error_type in _PIPELINE_ERROR_TYPES:
            if isinstance(error, cls):
                return error_type
        return ErrorType.UNKNOWN if error.retriable else ErrorType.NON_RETRIABLE

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorType.TIMEOUT

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status in (401, 403):
            return ErrorType.AUTHENTICATION
        if status == 402:
            return ErrorType.PAYMENT_REQUIRED
        if status == 404:
            return ErrorType.NOT_FOUND
        if status == 429:
            return ErrorType.RATE_LIMIT
        if status >= 500:
            return ErrorType.HTTP_5XX
        return ErrorType.UNKNOWN

    if isinstance(error, httpx.TransportError):
        return ErrorType.NETWORK

    message = f"{type(error).__name__} {error}".lower()
    for keyword, error_type in _NON_RETRIABLE_KEYWORDS:
        if keyword in message:
            return error_type
    for keyword, error_type in _RETRIABLE_KEYWORDS:
        if keyword in message:
            return error_type
    return ErrorType.UNKNOWN


def is_retriable(error: BaseException) -> bool:
    return classify_error(error) in RETRIABLE_TYPES


def retry_limit_for(error: BaseException) -> Optional[int]:
    """Per-error cap on retries, if the error declares one."""
    if isinstance(error, PipelineError):
        return error.retry_limit
    return None


@dataclass
class BackoffPolicy:
    """Exponential backoff: ``min(base * multiplier**retry, max) + jitter``."""

    base_delay: float = 1.0
    max_delay: float = 16.0
    multiplier: float = 2.0
    jitter_ratio: float = 0.3
    random_func: Callable[[], float] = random.random

    def calculate_delay(self, retry: int) -> float:
        """
        Calculate the wait before retry number ``retry``.

        Args:
            retry: Zero-based index of the retry about to happen

        Returns:
            Delay in seconds, never below the un-jittered exponential value
        """
        delay = min(self.base_delay * (self.multiplier**retry), self.max_delay)
        if self.jitter_ratio > 0 and delay > 0:
            delay += delay * self.jitter_ratio * self.random_func()
        logger.debug("Calculated delay for retry %d: %.2fs", retry, delay)
        return delay
