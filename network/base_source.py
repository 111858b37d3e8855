"""Common base for wrappers that call an external source through the rate limiter."""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx

from core.rate_limited_executor import RateLimiterService
from core.types import Operation, Priority
from utils.error_handling import (
    MissingCredentialsError,
    NetworkError,
    PipelineError,
    SourceTimeoutError,
    error_from_status,
)
from utils.logger import get_logger


logger = get_logger(__name__)

_NO_FALLBACK = object()


class SourceWrapper:
    """Routes provider calls through ``RateLimiterService.execute``.

    Subclasses set ``source_name`` and report availability through
    ``_check_availability``; unavailable wrappers fail with
    ``MissingCredentialsError`` before any request is queued.
    """

    source_name: str = ""

    def __init__(
        self,
        rate_limiter: RateLimiterService,
        *,
        fallback: Any = _NO_FALLBACK,
    ) -> None:
        self.rate_limiter = rate_limiter
        self._fallback = fallback
        self.available, self.unavailable_reason = self._check_availability()
        if not self.available:
            logger.info(
                "%s wrapper initialised in disabled state: %s",
                self.source_name,
                self.unavailable_reason,
            )

    def _check_availability(self) -> tuple[bool, Optional[str]]:
        return True, None

    def is_available(self) -> bool:
        return self.available

    async def _call(
        self,
        operation: Operation,
        *args: Any,
        priority: Priority = Priority.NORMAL,
        validate: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """Execute ``operation`` under this source's limits.

        Provider errors are translated to the pipeline taxonomy and
        ``validate`` runs inside the executed operation, so a shape failure
        counts as an attempt and is retried by the executor.
        """
        if not self.available:
            raise MissingCredentialsError(
                self.unavailable_reason or f"{self.source_name} is not configured",
                source=self.source_name,
            )

        async def guarded(*call_args: Any) -> Any:
            try:
                result = await operation(*call_args)
            except httpx.HTTPStatusError as exc:
                raise self.translate_status_error(exc) from exc
            except httpx.TimeoutException as exc:
                raise SourceTimeoutError(
                    f"{self.source_name} request timed out: {exc}", source=self.source_name
                ) from exc
            except httpx.TransportError as exc:
                raise NetworkError(
                    f"{self.source_name} network error: {exc}", source=self.source_name
                ) from exc
            if validate is not None:
                validate(result)
            return result

        try:
            return await self.rate_limiter.execute(
                self.source_name, guarded, *args, priority=priority
            )
        except PipelineError as exc:
            if self._fallback is not _NO_FALLBACK and exc.retriable:
                logger.warning(
                    "%s call failed (%s), returning fallback value", self.source_name, exc
                )
                return self._fallback
            raise

    def translate_status_error(self, exc: httpx.HTTPStatusError) -> PipelineError:
        response = exc.response
        try:
            body = response.text
        except (httpx.ResponseNotRead, UnicodeDecodeError):
            body = ""
        return error_from_status(
            response.status_code,
            f"{self.source_name} returned HTTP {response.status_code}",
            source=self.source_name,
            body=body,
        )
