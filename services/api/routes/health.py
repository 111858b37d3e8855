"""Health check endpoint."""
from fastapi import APIRouter, Depends

from ..dependencies import get_rate_limiter
from core.rate_limited_executor import RateLimiterService
from core.types import CircuitState


router = APIRouter()


@router.get("/health")
async def health_check(limiter: RateLimiterService = Depends(get_rate_limiter)):
    """
    Health check with source circuit states.

    The service itself is "ok" while it answers; it reports "degraded" when
    the emergency stop is active or any source circuit is not closed.

    Args:
        limiter: Rate limiter service (injected)

    Returns:
        dict: Health status, emergency flag and per-source circuit states

    Example response (healthy):
        ```json
        {
            "status": "ok",
            "emergency_stop": false,
            "circuits": {
                "ai-extractor": "closed",
                "crawl-service": "closed"
            }
        }
        ```

    Example response (degraded):
        ```json
        {
            "status": "degraded",
            "emergency_stop": false,
            "circuits": {
                "ai-extractor": "open",
                "crawl-service": "closed"
            }
        }
        ```
    """
    circuits = limiter.circuit_states
    emergency = limiter.is_emergency_active()
    healthy = not emergency and all(state is CircuitState.CLOSED for state in circuits.values())

    return {
        "status": "ok" if healthy else "degraded",
        "emergency_stop": emergency,
        "circuits": {name: state.value for name, state in circuits.items()},
    }
