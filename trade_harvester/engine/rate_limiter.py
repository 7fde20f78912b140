"""Adaptive token-bucket admission control shared by every source of a run."""

from __future__ import annotations

import asyncio
import math
import random
import time
from typing import Awaitable, Callable

import structlog

from .models import OutcomeKind, RateLimiterState

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]

_MIN_POLL = 0.001


class RateLimiter:
    """Token bucket whose capacity shrinks on denial and slowly grows back.

    ``capacity`` is both the bucket size and the refill rate in tokens per
    second. A denial halves it (never below ``min_capacity``) and opens a
    cooldown window during which :meth:`admit` admits nothing. Successes
    occasionally add one unit of capacity back until the configured value is
    reached again.
    """

    def __init__(
        self,
        capacity: float = 10.0,
        min_capacity: float = 2.0,
        *,
        max_cooldown: float = 8.0,
        jitter_max: float = 0.05,
        recovery_probability: float = 0.03,
        deny_base_forbidden: float = 2.0,
        deny_base_default: float = 1.5,
        cooldown_growth: float = 1.5,
        clock: Clock | None = None,
        sleep: Sleeper | None = None,
        rng: random.Random | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        if min_capacity < 1:
            raise ValueError("min_capacity must be >= 1")
        if capacity < min_capacity:
            raise ValueError("capacity must be >= min_capacity")
        self.initial_capacity = float(capacity)
        self.min_capacity = float(min_capacity)
        self.max_cooldown = max_cooldown
        self.jitter_max = jitter_max
        self.recovery_probability = recovery_probability
        self.deny_base_forbidden = deny_base_forbidden
        self.deny_base_default = deny_base_default
        self.cooldown_growth = cooldown_growth
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.Random()
        self.logger = logger or structlog.get_logger("trade_harvester.rate_limiter")

        self._capacity = float(capacity)
        self._tokens = float(capacity)
        self._last_refill = self._clock()
        self._cooldown_until = 0.0

    # ------------------------------------------------------------------
    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def tokens(self) -> float:
        return self._tokens

    @property
    def cooldown_until(self) -> float:
        return self._cooldown_until

    @property
    def state(self) -> RateLimiterState:
        return RateLimiterState(
            tokens=self._tokens,
            capacity=self._capacity,
            last_refill=self._last_refill,
            cooldown_until=self._cooldown_until,
        )

    # ------------------------------------------------------------------
    async def admit(self) -> None:
        """Wait for cooldown and a token, consume it, then sleep a short jitter."""

        while True:
            await self._wait_cooldown()
            now = self._clock()
            self._refill(now)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                break
            await self._sleep(max(_MIN_POLL, (1.0 - self._tokens) / self._capacity))

        if self.jitter_max > 0:
            jitter = self._rng.uniform(0.0, self.jitter_max)
            if jitter:
                await self._sleep(jitter)
        # A denial reported while this caller was jittering still applies to it.
        await self._wait_cooldown()

    def report_outcome(
        self, kind: OutcomeKind, status: int | None = None, attempt: int = 0
    ) -> None:
        if kind is OutcomeKind.DENIED:
            self._on_denied(status, attempt)
        else:
            self._on_success()

    def cooldown_for(self, status: int | None, attempt: int) -> float:
        base = self.deny_base_forbidden if status == 403 else self.deny_base_default
        return min(self.max_cooldown, base * self.cooldown_growth ** max(0, attempt))

    # ------------------------------------------------------------------
    def _refill(self, now: float) -> None:
        elapsed = now - self._last_refill
        if elapsed <= 0:
            return
        self._tokens = min(self._capacity, self._tokens + elapsed * self._capacity)
        self._last_refill = now

    async def _wait_cooldown(self) -> None:
        while True:
            remaining = self._cooldown_until - self._clock()
            if remaining <= 0:
                return
            await self._sleep(remaining)

    def _on_denied(self, status: int | None, attempt: int) -> None:
        now = self._clock()
        self._refill(now)
        reduced = max(self.min_capacity, float(math.floor(self._capacity / 2)))
        if reduced != self._capacity:
            self._capacity = reduced
            self.logger.warning("rate_limit_denied", status=status, capacity=reduced)
        self._tokens = min(self._tokens, self._capacity)
        cooldown = self.cooldown_for(status, attempt)
        self._cooldown_until = max(self._cooldown_until, now + cooldown)
        self.logger.debug("cooldown_started", status=status, seconds=round(cooldown, 3))

    def _on_success(self) -> None:
        if self._capacity >= self.initial_capacity:
            return
        if self._rng.random() < self.recovery_probability:
            self._capacity = min(self.initial_capacity, self._capacity + 1.0)
            self.logger.info("capacity_recovered", capacity=self._capacity)


__all__ = ["Clock", "RateLimiter", "Sleeper"]
