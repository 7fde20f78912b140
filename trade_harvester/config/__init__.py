"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    DedupConfig,
    DiscoveryConfig,
    EndpointConfig,
    GlobalConfig,
    HarvestConfig,
    HttpMethod,
    JobConfig,
    PaginationConfig,
    RateLimitConfig,
    RetryConfig,
    TimeRange,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
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
