"""Attempt loop funnelling every upstream call through limiter and retry policy."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import httpx
import structlog

from ..errors import ContractError
from .models import (
    Attempt,
    AttemptOutcome,
    AttemptStatus,
    FailureKind,
    FatalFailure,
    OutcomeKind,
    PageFetchFn,
    PageFetchResult,
    PageRequest,
    PageResult,
)
from .rate_limiter import RateLimiter
from .retry import RetryPolicy

NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    asyncio.TimeoutError,
    TimeoutError,
    OSError,
)


class GuardedFetcher:
    """Wrap an adapter page fetch with admission, timeout and retries.

    The wrapped callable performs exactly one upstream request. This class
    calls it once per attempt and always returns either a ``PageResult`` or a
    final ``FatalFailure``; it never raises for upstream problems.
    """

    def __init__(
        self,
        fetch_page: PageFetchFn,
        limiter: RateLimiter,
        retry_policy: RetryPolicy,
        *,
        timeout: float | None = 15.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        clock: Callable[[], float] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self._fetch_page = fetch_page
        self.limiter = limiter
        self.retry_policy = retry_policy
        self.timeout = timeout
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self.logger = logger or structlog.get_logger("trade_harvester.fetcher")
        self.attempts: list[Attempt] = []

    async def __call__(self, request: PageRequest) -> PageFetchResult:
        return await self.fetch(request)

    async def fetch(self, request: PageRequest) -> PageFetchResult:
        self.attempts = []
        number = 0
        while True:
            number += 1
            await self.limiter.admit()
            attempt = Attempt(number=number, started_at=self._clock())
            self.attempts.append(attempt)
            result, outcome = await self._attempt(request)
            attempt.elapsed = self._clock() - attempt.started_at
            attempt.http_status = outcome.status

            if outcome.ok and isinstance(result, PageResult):
                attempt.status = AttemptStatus.SUCCESS
                self.limiter.report_outcome(OutcomeKind.SUCCESS, outcome.status)
                return result

            if outcome.kind is FailureKind.HTTP and self.retry_policy.is_denial(outcome.status):
                self.limiter.report_outcome(OutcomeKind.DENIED, outcome.status, number - 1)

            decision = self.retry_policy.classify(outcome, number)
            attempt.status = decision.status
            attempt.error = self._describe(result, outcome)
            if not decision.retry:
                self.logger.warning(
                    "attempt_fatal",
                    source=request.source,
                    page=request.page_number,
                    attempt=number,
                    status=outcome.status,
                    error=attempt.error,
                )
                return self._as_failure(result, outcome, number)

            self.logger.info(
                "attempt_failed",
                source=request.source,
                page=request.page_number,
                attempt=number,
                status=outcome.status,
                retry_in=round(decision.delay, 3),
                error=attempt.error,
            )
            await self._sleep(decision.delay)

    # ------------------------------------------------------------------
    async def _attempt(
        self, request: PageRequest
    ) -> tuple[PageFetchResult | None, AttemptOutcome]:
        try:
            if self.timeout:
                result = await asyncio.wait_for(self._fetch_page(request), self.timeout)
            else:
                result = await self._fetch_page(request)
        except ContractError as exc:
            return None, AttemptOutcome.contract(exc)
        except NETWORK_ERRORS as exc:
            return None, AttemptOutcome.network(exc)

        if isinstance(result, FatalFailure):
            if result.kind is FailureKind.CONTRACT:
                return result, AttemptOutcome.contract(ContractError(result.message))
            return result, AttemptOutcome.http(result.status)
        if not isinstance(result, PageResult):
            error = ContractError(
                f"fetch function returned {type(result).__name__}, expected PageResult"
            )
            return None, AttemptOutcome.contract(error)
        if not isinstance(result.records, list):
            error = ContractError(
                f"PageResult.records must be a list, got {type(result.records).__name__}"
            )
            return None, AttemptOutcome.contract(error)
        return result, AttemptOutcome.success()

    @staticmethod
    def _describe(result: PageFetchResult | None, outcome: AttemptOutcome) -> str:
        if isinstance(result, FatalFailure):
            return result.message
        if outcome.error is not None:
            return str(outcome.error) or type(outcome.error).__name__
        return f"status {outcome.status}"

    def _as_failure(
        self, result: PageFetchResult | None, outcome: AttemptOutcome, attempts: int
    ) -> FatalFailure:
        if isinstance(result, FatalFailure):
            return FatalFailure(
                status=result.status,
                message=result.message,
                kind=outcome.kind,
                attempts=attempts,
            )
        return FatalFailure(
            status=outcome.status,
            message=self._describe(result, outcome),
            kind=outcome.kind,
            attempts=attempts,
        )


__all__ = ["GuardedFetcher", "NETWORK_ERRORS"]
