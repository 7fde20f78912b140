"""Run orchestrator wiring limiter, retries, pagination, pool and merge together."""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

import structlog

from .config import HarvestConfig
from .engine import (
    Deduplicator,
    GuardedFetcher,
    MergedSet,
    Paginator,
    RateLimiter,
    RetryPolicy,
    TerminalReason,
    WalkResult,
    WorkerPool,
)
from .engine.models import PageFetchFn, RateLimiterState, Source
from .engine.worker_pool import TaskState
from .logging_conf import close_source_logs, source_logger

FetchPageFor = Callable[[Source], PageFetchFn]


@dataclass(frozen=True, slots=True)
class SourceReport:
    """Per-source outcome of a run."""

    source: Source
    pages_fetched: int
    records_fetched: int
    terminal_reason: TerminalReason
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.terminal_reason not in (TerminalReason.ERROR, TerminalReason.CANCELLED)


@dataclass(frozen=True, slots=True)
class RunReport:
    """Merged records of a run plus what happened to every source."""

    merged: MergedSet
    per_source: tuple[SourceReport, ...]
    elapsed: float = 0.0
    limiter_state: RateLimiterState | None = None

    @property
    def records(self) -> list[Any]:
        return self.merged.values()

    @property
    def failures(self) -> list[SourceReport]:
        return [report for report in self.per_source if not report.ok]

    @property
    def records_fetched(self) -> int:
        return sum(report.records_fetched for report in self.per_source)

    def for_source(self, source: Source) -> SourceReport:
        for report in self.per_source:
            if report.source == source:
                return report
        raise KeyError(source)


class FetchOrchestrator:
    """Harvest many sources into one deduplicated record set.

    One :class:`RateLimiter` instance is shared by every source of the run so
    that a denial seen by one source throttles all of them.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        retry_policy: RetryPolicy,
        paginator: Paginator,
        deduplicator: Deduplicator,
        *,
        request_timeout: float | None = 15.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        on_source_done: Callable[[SourceReport], None] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.limiter = limiter
        self.retry_policy = retry_policy
        self.paginator = paginator
        self.deduplicator = deduplicator
        self.request_timeout = request_timeout
        self._sleep = sleep or asyncio.sleep
        self.on_source_done = on_source_done
        self.logger = logger or structlog.get_logger("trade_harvester.orchestrator")

    @classmethod
    def from_config(
        cls,
        harvest: HarvestConfig,
        deduplicator: Deduplicator,
        *,
        rng: random.Random | None = None,
        on_source_done: Callable[[SourceReport], None] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> "FetchOrchestrator":
        limits = harvest.rate_limit
        limiter = RateLimiter(
            limits.capacity,
            limits.min_capacity,
            max_cooldown=limits.max_cooldown,
            jitter_max=limits.jitter_max,
            recovery_probability=limits.recovery_probability,
            deny_base_forbidden=limits.deny_base_forbidden,
            deny_base_default=limits.deny_base_default,
            cooldown_growth=limits.cooldown_growth,
            rng=rng,
        )
        retry = harvest.retry
        retry_policy = RetryPolicy(
            max_attempts=retry.max_attempts,
            base_delay=retry.base_delay,
            growth_factor=retry.growth_factor,
            max_delay=retry.max_delay,
            jitter=retry.jitter,
            rng=rng,
        )
        pagination = harvest.pagination
        paginator = Paginator(
            pagination.page_size,
            mode=pagination.mode,
            time_range=pagination.resolved_time_range(),
            page_delay=pagination.page_delay,
        )
        return cls(
            limiter,
            retry_policy,
            paginator,
            deduplicator,
            request_timeout=harvest.request_timeout,
            on_source_done=on_source_done,
            logger=logger,
        )

    def guard(
        self, fetch_page: PageFetchFn, logger: structlog.BoundLogger | None = None
    ) -> GuardedFetcher:
        """Wrap one adapter call in the run's shared limiter and retry policy."""

        return GuardedFetcher(
            fetch_page,
            self.limiter,
            self.retry_policy,
            timeout=self.request_timeout,
            sleep=self._sleep,
            logger=logger,
        )

    # ------------------------------------------------------------------
    async def run(
        self,
        sources: Iterable[Source],
        concurrency: int,
        fetch_page_for: FetchPageFor,
        max_pages_per_source: int,
        *,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> RunReport:
        """Walk every source and merge the results.

        Per-source failures never escape; they are reported in the returned
        :class:`RunReport` together with any partial records. Only invalid
        arguments raise.
        """

        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if max_pages_per_source < 1:
            raise ValueError("max_pages_per_source must be >= 1")

        started = time.monotonic()
        unique_sources = list(dict.fromkeys(sources))
        walks = {source: WalkResult(source=source) for source in unique_sources}
        self.logger.info(
            "run_started",
            sources=len(unique_sources),
            concurrency=concurrency,
            max_pages=max_pages_per_source,
        )

        async def _walk(source: Source) -> WalkResult:
            walk = walks[source]
            fetch_page = self.guard(fetch_page_for(source), logger=source_logger(source))
            await self.paginator.walk_into(walk, fetch_page, max_pages_per_source)
            self._notify(self._report_for(walk))
            return walk

        pool = WorkerPool(concurrency, logger=self.logger)
        try:
            outcomes = await pool.run(
                unique_sources, _walk, timeout=timeout, cancel_event=cancel_event
            )
        finally:
            close_source_logs(unique_sources)

        reports: list[SourceReport] = []
        for outcome in outcomes:
            walk = walks[outcome.item]
            if outcome.state is TaskState.CANCELLED:
                report = self._report_for(
                    walk, TerminalReason.CANCELLED, "run cancelled before the walk finished"
                )
            elif outcome.state is TaskState.FAILED:
                report = self._report_for(
                    walk, TerminalReason.ERROR, f"{type(outcome.error).__name__}: {outcome.error}"
                )
                self._notify(report)
            else:
                report = self._report_for(walk)
            reports.append(report)

        merged = self.deduplicator.merge(walk.records for walk in walks.values())
        report = RunReport(
            merged=merged.freeze(),
            per_source=tuple(reports),
            elapsed=time.monotonic() - started,
            limiter_state=self.limiter.state,
        )
        self.logger.info(
            "run_finished",
            sources=len(reports),
            failed=len(report.failures),
            records_fetched=report.records_fetched,
            records_merged=len(merged),
            capacity=self.limiter.capacity,
            elapsed=round(report.elapsed, 3),
        )
        return report

    # ------------------------------------------------------------------
    @staticmethod
    def _report_for(
        walk: WalkResult,
        reason: TerminalReason | None = None,
        error: str | None = None,
    ) -> SourceReport:
        if reason is None:
            reason = walk.terminal_reason or TerminalReason.ERROR
        if error is None and walk.error is not None:
            error = walk.error.describe()
        return SourceReport(
            source=walk.source,
            pages_fetched=walk.pages_fetched,
            records_fetched=len(walk.records),
            terminal_reason=reason,
            error=error,
        )

    def _notify(self, report: SourceReport) -> None:
        if self.on_source_done is None:
            return
        try:
            self.on_source_done(report)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("source_callback_failed", source=report.source, error=str(exc))


__all__ = ["FetchOrchestrator", "FetchPageFor", "RunReport", "SourceReport"]
