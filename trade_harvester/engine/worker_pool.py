"""Bounded asyncio worker pool draining a queue of per-source tasks."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

import structlog

T = TypeVar("T")
R = TypeVar("R")


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskOutcome(Generic[T, R]):
    item: T
    state: TaskState = TaskState.PENDING
    value: R | None = None
    error: BaseException | None = None


class WorkerPool:
    """Run ``worker(item)`` for every item with at most ``concurrency`` in flight.

    A fixed set of runner coroutines pull items from a shared queue, so no
    item starts before a runner frees up. Worker exceptions are captured per
    item and never cancel siblings. A deadline or a set ``cancel_event``
    cancels every runner; queued items are then reported as cancelled
    without ever being started.
    """

    def __init__(
        self,
        concurrency: int,
        name: str = "harvest",
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = concurrency
        self.name = name
        self.logger = logger or structlog.get_logger("trade_harvester.worker_pool")

    async def run(
        self,
        items: Iterable[T],
        worker: Callable[[T], Awaitable[R]],
        *,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[TaskOutcome[T, R]]:
        outcomes: list[TaskOutcome[T, R]] = [TaskOutcome(item=item) for item in items]
        if not outcomes:
            return outcomes
        queue: asyncio.Queue[TaskOutcome[T, R]] = asyncio.Queue()
        for outcome in outcomes:
            queue.put_nowait(outcome)

        async def _runner() -> None:
            while True:
                try:
                    outcome = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcome.state = TaskState.RUNNING
                try:
                    outcome.value = await worker(outcome.item)
                except asyncio.CancelledError:
                    outcome.state = TaskState.CANCELLED
                    raise
                except Exception as exc:  # noqa: BLE001
                    outcome.state = TaskState.FAILED
                    outcome.error = exc
                    self.logger.error(
                        "worker_error", pool=self.name, item=str(outcome.item), error=str(exc)
                    )
                else:
                    outcome.state = TaskState.DONE

        runner_count = min(self.concurrency, len(outcomes))
        runners = [
            asyncio.create_task(_runner(), name=f"{self.name}-runner-{index}")
            for index in range(runner_count)
        ]
        watchers: set[asyncio.Task[Any]] = set()
        if cancel_event is not None:
            watchers.add(asyncio.create_task(cancel_event.wait(), name=f"{self.name}-cancel"))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        pending: set[asyncio.Task[Any]] = set(runners)
        interrupted = False
        try:
            while pending:
                remaining = None if deadline is None else deadline - loop.time()
                if remaining is not None and remaining <= 0:
                    interrupted = True
                    self.logger.warning("pool_deadline_reached", pool=self.name)
                    break
                done, _ = await asyncio.wait(
                    pending | watchers,
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
                pending -= done
                if watchers & done:
                    interrupted = True
                    self.logger.warning("pool_cancelled", pool=self.name)
                    break
        finally:
            leftovers = pending | watchers
            for task in leftovers:
                task.cancel()
            if leftovers:
                await asyncio.gather(*leftovers, return_exceptions=True)

        if interrupted:
            for outcome in outcomes:
                if outcome.state in (TaskState.PENDING, TaskState.RUNNING):
                    outcome.state = TaskState.CANCELLED
        return outcomes


__all__ = ["TaskOutcome", "TaskState", "WorkerPool"]
