"""Source administration endpoints: stats, queues, cost and limits."""
import dataclasses
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_crawl_client, get_rate_limiter, get_source_wrappers, require_admin
from ..models import (
    CostResponse,
    CreditsResponse,
    EmergencyStopRequest,
    SourceAvailability,
    SourceConfigResponse,
    SourceConfigUpdate,
)
from core.rate_limited_executor import RateLimiterService
from network.base_source import SourceWrapper
from network.crawl_client import CrawlServiceClient
from utils.error_handling import ConfigurationError


router = APIRouter()


def _ensure_source(limiter: RateLimiterService, name: str) -> None:
    if name not in limiter.sources:
        raise HTTPException(status_code=404, detail=f"Unknown source: {name}")


@router.get("/sources/stats")
async def get_all_stats(limiter: RateLimiterService = Depends(get_rate_limiter)):
    """
    Statistics for every source.

    Returns:
        dict: Source name to statistics snapshot

    Example response:
        ```json
        {
            "ai-extractor": {
                "total_requests": 12,
                "successful_requests": 11,
                "failed_requests": 1,
                "retries": 2,
                "current_concurrent": 0,
                "queue_length": 0,
                "total_cost": 0.11,
                "last_request_time": 1760000000.0,
                "circuit_state": "closed",
                "consecutive_failures": 0,
                "avg_response_time_ms": 1830.5,
                "success_rate": 0.9167
            }
        }
        ```
    """
    return limiter.get_stats()


@router.get("/sources/stats/{name}")
async def get_source_stats(name: str, limiter: RateLimiterService = Depends(get_rate_limiter)):
    """
    Statistics for one source.

    Raises:
        HTTPException: 404 if the source is unknown
    """
    _ensure_source(limiter, name)
    return limiter.get_stats(name)


@router.get("/sources/queue")
async def get_queue_status(limiter: RateLimiterService = Depends(get_rate_limiter)):
    """
    Queue length per source, broken down by priority.

    Example response:
        ```json
        {
            "crawl-service": {
                "length": 3,
                "by_priority": {"high": 1, "normal": 2, "low": 0},
                "oldest_wait_seconds": 12.4
            }
        }
        ```
    """
    return limiter.get_queue_status()


@router.get("/sources/cost", response_model=CostResponse)
async def get_cost(limiter: RateLimiterService = Depends(get_rate_limiter)):
    """Accumulated cost per source and in total, against the daily ceiling."""
    stats = limiter.get_stats()
    return CostResponse(
        total_cost=round(limiter.get_total_cost(), 6),
        max_daily_cost=limiter.max_daily_cost,
        emergency_stop=limiter.is_emergency_active(),
        by_source={name: data["total_cost"] for name, data in stats.items()},
    )


@router.get("/sources/availability", response_model=Dict[str, SourceAvailability])
async def get_availability(
    limiter: RateLimiterService = Depends(get_rate_limiter),
    wrappers: Dict[str, SourceWrapper] = Depends(get_source_wrappers),
):
    """
    Whether each source wrapper is configured, with its circuit state.

    Example response:
        ```json
        {
            "ai-extractor": {"available": false, "reason": "GEMINI_API_KEY is not set", "circuit_state": "closed"},
            "page-fetch": {"available": true, "reason": null, "circuit_state": "closed"}
        }
        ```
    """
    circuits = limiter.circuit_states
    result = {}
    for name, state in circuits.items():
        wrapper = wrappers.get(name)
        result[name] = SourceAvailability(
            available=wrapper.is_available() if wrapper is not None else False,
            reason=wrapper.unavailable_reason if wrapper is not None else "No wrapper registered",
            circuit_state=state,
        )
    return result


@router.post("/sources/emergency-stop", dependencies=[Depends(require_admin)])
async def set_emergency_stop(
    req: EmergencyStopRequest,
    limiter: RateLimiterService = Depends(get_rate_limiter),
):
    """
    Activate or clear the global emergency stop.

    Activating it rejects every queued request; clearing it resumes queue
    processing.

    Example request:
        ```json
        {"active": true}
        ```

    Example response:
        ```json
        {"emergency_stop": true}
        ```
    """
    limiter.set_emergency_stop(req.active)
    return {"emergency_stop": limiter.is_emergency_active()}


@router.patch(
    "/sources/{name}/config",
    response_model=SourceConfigResponse,
    dependencies=[Depends(require_admin)],
)
async def update_source_config(
    name: str,
    req: SourceConfigUpdate,
    limiter: RateLimiterService = Depends(get_rate_limiter),
):
    """
    Change the limits of one source at runtime.

    Raises:
        HTTPException: 404 if the source is unknown
        HTTPException: 400 if no field is set or the result is invalid
    """
    _ensure_source(limiter, name)
    changes = req.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No configuration fields provided")

    try:
        config = limiter.update_config(name, **changes)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return SourceConfigResponse(source=name, **dataclasses.asdict(config))


@router.post("/sources/reset", dependencies=[Depends(require_admin)])
async def reset_stats(
    source: Optional[str] = None,
    limiter: RateLimiterService = Depends(get_rate_limiter),
):
    """
    Zero statistics and close circuits, for one source or all of them.

    Args:
        source: Optional source name query parameter

    Example response:
        ```json
        {"reset": ["ai-extractor"]}
        ```
    """
    if source is not None:
        _ensure_source(limiter, source)
    limiter.reset_stats(source)
    return {"reset": [source] if source else limiter.sources}


@router.get("/anycrawl/credits", response_model=CreditsResponse)
async def get_crawl_credits(crawl: CrawlServiceClient = Depends(get_crawl_client)):
    """
    Remaining credits of the crawl service account.

    ``remaining_credits`` is null when the service is not configured or the
    credits endpoint could not be read.
    """
    if not crawl.is_available():
        return CreditsResponse(available=False)
    credits = await crawl.check_credits()
    return CreditsResponse(available=True, remaining_credits=credits)
