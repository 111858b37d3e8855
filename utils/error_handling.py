import uuid
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error taxonomy shared by the executor, the wrappers and the resolver."""

    MISSING_CREDENTIALS = "missing_credentials"
    INVALID_CREDENTIALS = "invalid_credentials"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK = "network"
    CIRCUIT_OPEN = "circuit_open"
    QUEUE_TIMEOUT = "queue_timeout"
    INVALID_RESPONSE = "invalid_response"
    EMERGENCY_STOP = "emergency_stop"
    SOURCE_DISABLED = "source_disabled"
    INVALID_URL = "invalid_url"
    UNKNOWN = "unknown"


# Custom Exception Classes
class PipelineError(Exception):
    """Base exception for all pipeline errors"""

    kind: ErrorKind = ErrorKind.UNKNOWN
    retriable: bool = True
    # Maximum number of retries the executor may spend on this kind of error
    retry_limit: Optional[int] = None

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.source = source
        self.status_code = status_code
        self.context = context or {}
        self.request_id = f"{source or 'unknown'}-{uuid.uuid4().hex[:12]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": str(self),
            "source": self.source,
            "status_code": self.status_code,
            "retriable": self.retriable,
            "request_id": self.request_id,
        }


class ConfigurationError(PipelineError):
    """Unknown source or invalid configuration update"""

    retriable = False


class MissingCredentialsError(PipelineError):
    kind = ErrorKind.MISSING_CREDENTIALS
    retriable = False


class InvalidCredentialsError(PipelineError):
    """Unauthorized, forbidden or rejected API key"""

    kind = ErrorKind.INVALID_CREDENTIALS
    retriable = False


class InsufficientCreditsError(PipelineError):
    """Payment required or credits exhausted"""

    kind = ErrorKind.INSUFFICIENT_CREDITS
    retriable = False


class NotFoundError(PipelineError):
    kind = ErrorKind.NOT_FOUND
    retriable = False


class RateLimitedError(PipelineError):
    """The provider itself throttled the request"""

    kind = ErrorKind.RATE_LIMITED


class SourceTimeoutError(PipelineError):
    kind = ErrorKind.TIMEOUT


class NetworkError(PipelineError):
    """Network and connectivity issues, including 5xx gateway errors"""

    kind = ErrorKind.NETWORK


class InvalidResponseError(PipelineError):
    """The provider answered but the payload failed shape validation"""

    kind = ErrorKind.INVALID_RESPONSE
    retry_limit = 1


class CircuitOpenError(PipelineError):
    kind = ErrorKind.CIRCUIT_OPEN
    retriable = False


class QueueTimeoutError(PipelineError):
    """A queued request was not served within its deadline.

    The executor never retries it; the caller may resubmit.
    """

    kind = ErrorKind.QUEUE_TIMEOUT


class EmergencyStopError(PipelineError):
    kind = ErrorKind.EMERGENCY_STOP
    retriable = False


class SourceDisabledError(PipelineError):
    kind = ErrorKind.SOURCE_DISABLED
    retriable = False


class InvalidUrlError(PipelineError, ValueError):
    kind = ErrorKind.INVALID_URL
    retriable = False


def error_from_status(
    status_code: int,
    message: str,
    *,
    source: Optional[str] = None,
    body: str = "",
) -> PipelineError:
    """Map an HTTP status code returned by a provider onto the error taxonomy."""
    lowered = body.lower()
    if status_code == 402 or "insufficient credits" in lowered or "insufficient_credits" in lowered:
        cls = InsufficientCreditsError
    elif status_code in (401, 403):
        cls = InvalidCredentialsError
    elif status_code == 404:
        cls = NotFoundError
    elif status_code == 429:
        cls = RateLimitedError
    elif status_code == 408:
        cls = SourceTimeoutError
    elif status_code >= 500:
        cls = NetworkError
    else:
        cls = InvalidResponseError
    return cls(message, source=source, status_code=status_code)
