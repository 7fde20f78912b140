"""Pydantic models describing harvest jobs and their tuning knobs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from ..engine.models import PaginationMode


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"


_RELATIVE_WINDOWS = {
    "last_24_hours": timedelta(days=1),
    "last_7_days": timedelta(days=7),
    "last_30_days": timedelta(days=30),
}


class TimeRange(BaseModel):
    """Time window sent with every page request.

    Either a fixed ``start``/``end`` pair in epoch milliseconds or a
    ``relative`` expression resolved at run time.
    """

    start: int | None = None
    end: int | None = None
    relative: str | None = None

    @model_validator(mode="after")
    def _validate_range(self) -> "TimeRange":
        has_fixed = self.start is not None and self.end is not None
        has_relative = self.relative is not None
        if has_fixed and has_relative:
            raise ValueError("Use either start/end or relative, not both")
        if not has_fixed and not has_relative:
            raise ValueError("Time range needs start/end or a relative expression")
        if has_fixed and self.end < self.start:
            raise ValueError("Time range end must be >= start")
        if has_relative and self.relative not in _RELATIVE_WINDOWS:
            raise ValueError(
                f"Unsupported relative window: {self.relative}, "
                f"expected one of {sorted(_RELATIVE_WINDOWS)}"
            )
        return self

    def as_millis(self, reference_time: datetime | None = None) -> tuple[int, int]:
        if self.start is not None and self.end is not None:
            return self.start, self.end
        now = reference_time or datetime.now(timezone.utc)
        start = now - _RELATIVE_WINDOWS[self.relative]
        return int(start.timestamp() * 1000), int(now.timestamp() * 1000)


def _http_url(value: str) -> str:
    if not value.startswith(("http://", "https://")):
        raise ValueError("url must be http(s)")
    return value


def _upper_method(value: Any) -> Any:
    if isinstance(value, str):
        return value.upper()
    return value


class RateLimitConfig(BaseModel):
    """Adaptive token bucket settings (capacity is requests per second)."""

    capacity: float = 10.0
    min_capacity: float = 2.0
    max_cooldown: float = 8.0
    jitter_max: float = 0.05
    recovery_probability: float = Field(default=0.03, ge=0.0, le=1.0)
    deny_base_forbidden: float = 2.0
    deny_base_default: float = 1.5
    cooldown_growth: float = 1.5

    @model_validator(mode="after")
    def _validate_capacity(self) -> "RateLimitConfig":
        if self.min_capacity < 1:
            raise ValueError("min_capacity must be >= 1")
        if self.capacity < self.min_capacity:
            raise ValueError("capacity must be >= min_capacity")
        if self.max_cooldown < 0 or self.jitter_max < 0:
            raise ValueError("max_cooldown and jitter_max must be non-negative")
        return self


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=4, ge=1)
    base_delay: float = Field(default=0.25, ge=0.0)
    growth_factor: float = Field(default=1.5, ge=1.0)
    max_delay: float = Field(default=8.0, ge=0.0)
    jitter: float = Field(default=0.2, ge=0.0)


class PaginationConfig(BaseModel):
    page_size: int = Field(default=50, ge=1)
    max_pages: int = Field(default=10, ge=1)
    mode: PaginationMode = PaginationMode.CURSOR
    page_delay: float = Field(default=0.015, ge=0.0)
    time_range: TimeRange | None = None

    def resolved_time_range(self, reference_time: datetime | None = None) -> tuple[int, int] | None:
        if self.time_range is None:
            return None
        return self.time_range.as_millis(reference_time)


class HarvestConfig(BaseModel):
    """Concurrency, timeouts and the nested limiter / retry / paging knobs."""

    concurrency: int = Field(default=3, ge=1)
    request_timeout: float | None = Field(default=15.0, gt=0)
    run_timeout: float | None = Field(default=None, gt=0)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)


class EndpointConfig(BaseModel):
    """How to turn a PageRequest into one HTTP call and read the answer back."""

    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    source_param: str = "portfolioId"
    cursor_param: str | None = None
    page_param: str | None = "pageNumber"
    page_size_param: str | None = "pageSize"
    start_param: str | None = "startTime"
    end_param: str | None = "endTime"
    records_path: str = "data.list"
    cursor_path: str | None = None
    total_path: str | None = None
    success_path: str | None = None
    success_value: Any = None
    source_in_records: str | None = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _http_url(value)

    @field_validator("method", mode="before")
    @classmethod
    def _coerce_method(cls, value: Any) -> Any:
        return _upper_method(value)


class DiscoveryConfig(BaseModel):
    """Leaderboard-style query whose answers add sources to a job.

    One request is sent per entry of ``variants`` (each merged over
    ``params``), for example one per leaderboard sort order. Each listed item
    yields the first non-empty value among ``id_fields``.
    """

    url: str
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    variants: list[dict[str, Any]] = Field(default_factory=lambda: [{}])
    ids_path: str = "data.list"
    id_fields: list[str] = Field(default_factory=lambda: ["portfolioId", "leadPortfolioId", "id"])
    success_path: str | None = None
    success_value: Any = None

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _http_url(value)

    @field_validator("method", mode="before")
    @classmethod
    def _coerce_method(cls, value: Any) -> Any:
        return _upper_method(value)

    @field_validator("variants", "id_fields")
    @classmethod
    def _non_empty(cls, value: list[Any]) -> list[Any]:
        if not value:
            raise ValueError("must contain at least one entry")
        return value


class DedupConfig(BaseModel):
    identity_fields: list[str] = Field(default_factory=lambda: ["id"])
    recency_field: str = "updateTime"

    @field_validator("identity_fields")
    @classmethod
    def _non_empty(cls, value: list[str]) -> list[str]:
        cleaned = [item.strip() for item in value if item and item.strip()]
        if not cleaned:
            raise ValueError("identity_fields cannot be empty")
        return cleaned


class JobConfig(BaseModel):
    """A named harvest: which sources, which endpoint, how to merge and export."""

    name: str
    sources: list[str] = Field(default_factory=list)
    endpoint: EndpointConfig
    discovery: DiscoveryConfig | None = None
    harvest: HarvestConfig = Field(default_factory=HarvestConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    output_format: Literal["csv", "json"] = "csv"
    output_fields: list[str] | None = None

    @field_validator("sources", mode="before")
    @classmethod
    def _coerce_sources(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            raise ValueError("sources expects a list or a comma separated string")
        return [str(item).strip() for item in value if str(item).strip()]

    @model_validator(mode="after")
    def _validate_job(self) -> "JobConfig":
        if not self.name.strip():
            raise ValueError("name cannot be empty")
        if not self.sources and self.discovery is None:
            raise ValueError("sources cannot be empty without a discovery block")
        return self


class GlobalConfig(BaseModel):
    """Global defaults shared by every job."""

    outputs_dir: Path = Field(default=Path("data/outputs"))
    enable_progress_bar: bool = True
    verbose_logging: bool = False

    @field_validator("outputs_dir", mode="before")
    @classmethod
    def _coerce_dirs(cls, value: Any) -> Path:
        return Path(value)


__all__ = [
    "DedupConfig",
    "DiscoveryConfig",
    "EndpointConfig",
    "GlobalConfig",
    "HarvestConfig",
    "HttpMethod",
    "JobConfig",
    "PaginationConfig",
    "RateLimitConfig",
    "RetryConfig",
    "TimeRange",
]
