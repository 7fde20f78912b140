"""Page walker combining every termination heuristic seen in upstream APIs."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from .models import (
    FatalFailure,
    PageFetchFn,
    PageRequest,
    PaginationMode,
    Source,
    TerminalReason,
    WalkResult,
)


def _same_cursor(left: Any, right: Any) -> bool:
    if left is None or right is None:
        return False
    return str(left) == str(right)


class Paginator:
    """Drive sequential page fetches for one source until a stop condition.

    Upstream pagination is cursor based, page-number based, or both, and is
    frequently buggy, so several triggers are checked on every page: a short
    page, a missing cursor, a reported total already reached, a repeated
    cursor, the page ceiling and a fatal fetch failure. Whichever fires
    first ends the walk. A reached total ends it as ``no-cursor``.
    """

    def __init__(
        self,
        page_size: int = 50,
        *,
        mode: PaginationMode = PaginationMode.CURSOR,
        time_range: tuple[int, int] | None = None,
        page_delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self.page_size = page_size
        self.mode = PaginationMode(mode)
        self.time_range = time_range
        self.page_delay = page_delay
        self._sleep = sleep or asyncio.sleep
        self.logger = logger or structlog.get_logger("trade_harvester.paginator")

    async def walk(
        self, source: Source, fetch_page: PageFetchFn, max_pages: int
    ) -> WalkResult:
        result = WalkResult(source=source)
        await self.walk_into(result, fetch_page, max_pages)
        return result

    async def walk_into(
        self, result: WalkResult, fetch_page: PageFetchFn, max_pages: int
    ) -> WalkResult:
        """Walk ``result.source`` appending into a caller-owned result.

        Records gathered so far stay in ``result`` even if the walk is
        cancelled half way.
        """

        if max_pages < 1:
            raise ValueError("max_pages must be >= 1")
        source = result.source
        cursor: Any = None
        last_cursor: Any = None
        page_number = 1
        confirming = False

        while True:
            request = PageRequest(
                source=source,
                page_size=self.page_size,
                cursor=cursor,
                page_number=page_number,
                time_range=self.time_range,
            )
            page = await fetch_page(request)
            if isinstance(page, FatalFailure):
                result.error = page
                return self._finish(result, TerminalReason.ERROR)

            result.records.extend(page.records)
            result.pages_fetched += 1
            self.logger.debug(
                "page_fetched",
                source=source,
                page=page_number,
                items=len(page.records),
                cursor=cursor,
            )

            if len(page.records) < self.page_size:
                return self._finish(result, TerminalReason.PAGE_SHORT)
            if page.total and len(result.records) >= page.total:
                return self._finish(result, TerminalReason.NO_CURSOR)
            if result.pages_fetched >= max_pages:
                return self._finish(result, TerminalReason.MAX_PAGES)

            next_cursor = page.next_cursor
            if next_cursor is None:
                if self.mode is not PaginationMode.PAGE_NUMBER:
                    return self._finish(result, TerminalReason.NO_CURSOR)
                page_number += 1
                confirming = False
            elif _same_cursor(next_cursor, last_cursor):
                if confirming:
                    return self._finish(result, TerminalReason.LOOP_DETECTED)
                # Upstream echoed the cursor; give it one more page to advance.
                confirming = True
                page_number += 1
            else:
                confirming = False
                last_cursor = next_cursor
                cursor = next_cursor
                page_number += 1

            if self.page_delay > 0:
                await self._sleep(self.page_delay)

    def _finish(self, result: WalkResult, reason: TerminalReason) -> WalkResult:
        result.terminal_reason = reason
        self.logger.info(
            "walk_done",
            source=result.source,
            reason=reason.value,
            pages=result.pages_fetched,
            records=len(result.records),
        )
        return result


__all__ = ["Paginator"]
