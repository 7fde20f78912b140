"""Engine components: admit → fetch → paginate → merge."""

from .dedup import Deduplicator, MergedSet, key_from_fields, recency_from_field
from .fetcher import GuardedFetcher
from .models import (
    FatalFailure,
    PageRequest,
    PageResult,
    PaginationMode,
    TerminalReason,
    WalkResult,
)
from .paginator import Paginator
from .rate_limiter import RateLimiter
from .retry import RetryPolicy
from .worker_pool import WorkerPool

__all__ = [
    "Deduplicator",
    "FatalFailure",
    "GuardedFetcher",
    "MergedSet",
    "PageRequest",
    "PageResult",
    "PaginationMode",
    "Paginator",
    "RateLimiter",
    "RetryPolicy",
    "TerminalReason",
    "WalkResult",
    "WorkerPool",
    "key_from_fields",
    "recency_from_field",
]
