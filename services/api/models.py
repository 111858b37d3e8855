"""Pydantic models for API request/response schemas."""
from pydantic import BaseModel, Field
from typing import Optional, Dict

from core.types import CircuitState


class EmergencyStopRequest(BaseModel):
    """Toggle the global emergency stop."""
    active: bool = Field(..., description="True halts every source, False resumes")

    class Config:
        json_schema_extra = {"example": {"active": True}}


class SourceConfigUpdate(BaseModel):
    """
    Partial update of one source's limits.

    Only the fields that are set are applied; everything else keeps its
    current value.
    """
    max_requests_per_minute: Optional[int] = Field(default=None, ge=1, description="Sliding 60 s window")
    max_requests_per_hour: Optional[int] = Field(default=None, ge=1, description="Sliding 3600 s window")
    max_concurrent: Optional[int] = Field(default=None, ge=1, description="In-flight request bound")
    timeout_seconds: Optional[float] = Field(default=None, gt=0, description="Per-attempt timeout")
    max_retries: Optional[int] = Field(default=None, ge=0, description="Retries after the first attempt")
    circuit_breaker_threshold: Optional[int] = Field(default=None, ge=1, description="Failures before opening")
    cost_per_request: Optional[float] = Field(default=None, ge=0, description="Cost of one successful call")
    enabled: Optional[bool] = Field(default=None, description="Disable to reject all calls")

    class Config:
        json_schema_extra = {
            "example": {
                "max_requests_per_minute": 20,
                "max_concurrent": 4
            }
        }


class SourceConfigResponse(BaseModel):
    """Effective configuration of one source."""
    source: str
    max_requests_per_minute: int
    max_requests_per_hour: int
    max_concurrent: int
    timeout_seconds: float
    max_retries: int
    circuit_breaker_threshold: int
    cost_per_request: float
    enabled: bool


class CostResponse(BaseModel):
    """Accumulated cost against the daily ceiling."""
    total_cost: float = Field(..., description="Sum of per-source costs")
    max_daily_cost: float = Field(..., description="Ceiling that trips the emergency stop")
    emergency_stop: bool = Field(..., description="Whether the emergency stop is active")
    by_source: Dict[str, float] = Field(default_factory=dict)


class SourceAvailability(BaseModel):
    """Whether a source wrapper can be used at all."""
    available: bool
    reason: Optional[str] = None
    circuit_state: CircuitState


class CreditsResponse(BaseModel):
    """Remaining crawl service credits, ``None`` when unknown."""
    available: bool
    remaining_credits: Optional[int] = None


class ResolveRequest(BaseModel):
    """
    Preview resolution of a product URL.

    With ``accept_partial`` a product without a price is accepted as soon as
    it has a plausible name.
    """
    url: str = Field(..., description="Product page URL")
    accept_partial: bool = Field(default=False, description="Stop at the first named result")

    class Config:
        json_schema_extra = {
            "example": {
                "url": "https://produto.mercadolivre.com.br/MLB-1234567890-fone-bluetooth-_JM",
                "accept_partial": False
            }
        }

