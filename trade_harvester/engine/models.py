"""Value objects passed between the limiter, paginator and adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Hashable, Union

Source = Hashable


class FailureKind(str, Enum):
    """Where a failed attempt came from."""

    HTTP = "http"
    NETWORK = "network"
    CONTRACT = "contract"


class AttemptStatus(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable-failure"
    FATAL = "fatal-failure"


class OutcomeKind(str, Enum):
    """Signal fed back into the rate limiter after an attempt."""

    SUCCESS = "success"
    DENIED = "denied"


class PaginationMode(str, Enum):
    CURSOR = "cursor"
    PAGE_NUMBER = "page-number"


class TerminalReason(str, Enum):
    """Why a paginator walk stopped."""

    PAGE_SHORT = "page-short"
    NO_CURSOR = "no-cursor"
    LOOP_DETECTED = "loop-detected"
    MAX_PAGES = "max-pages"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class PageRequest:
    """Parameters for a single page fetch."""

    source: Source
    page_size: int
    cursor: Any = None
    page_number: int = 1
    time_range: tuple[int, int] | None = None


@dataclass(slots=True)
class PageResult:
    """Successful page: raw records plus the upstream's next cursor, if any.

    ``total`` is the record count the upstream claims for the whole source,
    when it reports one.
    """

    records: list[Any]
    next_cursor: Any = None
    total: int | None = None


@dataclass(slots=True)
class FatalFailure:
    """Failed page fetch.

    Adapters return this for any non-success upstream response; the attempt
    loop decides whether the status is retried. Once it reaches the paginator
    it is final.
    """

    status: int | None
    message: str
    kind: FailureKind = FailureKind.HTTP
    attempts: int = 1

    def describe(self) -> str:
        prefix = f"{self.status} " if self.status is not None else ""
        return f"{self.kind.value}: {prefix}{self.message}".strip()


@dataclass(slots=True)
class AttemptOutcome:
    """HTTP-like result of one attempt, as seen by the retry policy."""

    status: int | None = None
    error: BaseException | None = None
    kind: FailureKind = FailureKind.HTTP

    @property
    def ok(self) -> bool:
        return self.error is None and self.status is not None and 200 <= self.status < 300

    @classmethod
    def success(cls, status: int = 200) -> "AttemptOutcome":
        return cls(status=status)

    @classmethod
    def http(cls, status: int | None) -> "AttemptOutcome":
        return cls(status=status, kind=FailureKind.HTTP)

    @classmethod
    def network(cls, error: BaseException) -> "AttemptOutcome":
        return cls(error=error, kind=FailureKind.NETWORK)

    @classmethod
    def contract(cls, error: BaseException) -> "AttemptOutcome":
        return cls(error=error, kind=FailureKind.CONTRACT)


@dataclass(slots=True)
class Attempt:
    """Bookkeeping for one admitted execution of a PageRequest."""

    number: int
    started_at: float
    elapsed: float = 0.0
    status: AttemptStatus = AttemptStatus.SUCCESS
    http_status: int | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class RateLimiterState:
    tokens: float
    capacity: float
    last_refill: float
    cooldown_until: float


@dataclass(slots=True)
class WalkResult:
    """Accumulated outcome of one source's paginator walk."""

    source: Source
    records: list[Any] = field(default_factory=list)
    pages_fetched: int = 0
    terminal_reason: TerminalReason | None = None
    error: FatalFailure | None = None

    @property
    def done(self) -> bool:
        return self.terminal_reason is not None


PageFetchResult = Union[PageResult, FatalFailure]
PageFetchFn = Callable[[PageRequest], Awaitable[PageFetchResult]]


__all__ = [
    "Attempt",
    "AttemptOutcome",
    "AttemptStatus",
    "FailureKind",
    "FatalFailure",
    "OutcomeKind",
    "PageFetchFn",
    "PageFetchResult",
    "PageRequest",
    "PageResult",
    "PaginationMode",
    "RateLimiterState",
    "Source",
    "TerminalReason",
    "WalkResult",
]
