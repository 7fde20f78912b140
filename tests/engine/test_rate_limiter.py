from __future__ import annotations

import asyncio
import random

import pytest

from trade_harvester.engine import RateLimiter
from trade_harvester.engine.models import OutcomeKind


def _limiter(clock, capacity=10, min_capacity=2, **kwargs) -> RateLimiter:
    kwargs.setdefault("jitter_max", 0)
    kwargs.setdefault("recovery_probability", 0)
    return RateLimiter(capacity, min_capacity, clock=clock, sleep=clock.sleep, **kwargs)


def test_rejects_invalid_capacity(clock) -> None:
    with pytest.raises(ValueError):
        _limiter(clock, capacity=4, min_capacity=0)
    with pytest.raises(ValueError):
        _limiter(clock, capacity=1, min_capacity=2)
    with pytest.raises(ValueError):
        _limiter(clock, capacity=3, min_capacity=0.5)


@pytest.mark.asyncio
async def test_admits_after_denials_drive_capacity_to_floor(clock) -> None:
    limiter = _limiter(clock, capacity=3, min_capacity=1)
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    assert limiter.capacity == 1

    for _ in range(3):
        await asyncio.wait_for(limiter.admit(), 1.0)

    assert clock.now - 1000.0 < 5.0


@pytest.mark.asyncio
async def test_full_bucket_admits_without_waiting(clock) -> None:
    limiter = _limiter(clock, capacity=4)
    for _ in range(4):
        await limiter.admit()
    assert clock.now == 1000.0
    assert limiter.tokens == 0

    await limiter.admit()
    assert clock.now == pytest.approx(1000.25)


@pytest.mark.asyncio
async def test_admissions_stay_within_token_budget(clock) -> None:
    limiter = _limiter(clock, capacity=5)
    start = clock.now
    admitted: list[float] = []

    async def _one() -> None:
        await limiter.admit()
        admitted.append(clock.now)

    await asyncio.gather(*(_one() for _ in range(20)))

    assert len(admitted) == 20
    for index, moment in enumerate(sorted(admitted), start=1):
        assert index <= 5 + 5 * (moment - start) + 1e-9


def test_denial_halves_capacity_down_to_floor(clock) -> None:
    limiter = _limiter(clock, capacity=10, min_capacity=2)
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    assert limiter.capacity == 5
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    assert limiter.capacity == 2
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    assert limiter.capacity == 2
    assert limiter.tokens <= limiter.capacity


def test_cooldown_length_depends_on_status_and_attempt(clock) -> None:
    limiter = _limiter(clock)
    assert limiter.cooldown_for(403, 0) == pytest.approx(2.0)
    assert limiter.cooldown_for(429, 0) == pytest.approx(1.5)
    assert limiter.cooldown_for(503, 2) == pytest.approx(1.5 * 1.5**2)
    assert limiter.cooldown_for(429, 20) == 8


@pytest.mark.asyncio
async def test_admit_waits_out_cooldown(clock) -> None:
    limiter = _limiter(clock)
    limiter.report_outcome(OutcomeKind.DENIED, 403, attempt=0)
    assert limiter.cooldown_until == pytest.approx(1002.0)

    await limiter.admit()

    assert clock.now >= limiter.cooldown_until
    assert clock.now == pytest.approx(1002.0)


def test_later_denial_never_shortens_cooldown(clock) -> None:
    limiter = _limiter(clock)
    limiter.report_outcome(OutcomeKind.DENIED, 429, attempt=4)
    long_until = limiter.cooldown_until
    limiter.report_outcome(OutcomeKind.DENIED, 429, attempt=0)
    assert limiter.cooldown_until == long_until


def test_success_recovers_capacity_up_to_initial(clock) -> None:
    limiter = _limiter(clock, capacity=10, min_capacity=2, recovery_probability=1.0)
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    assert limiter.capacity == 5

    for _ in range(10):
        limiter.report_outcome(OutcomeKind.SUCCESS, 200)

    assert limiter.capacity == 10


def test_recovery_is_probabilistic(clock) -> None:
    limiter = _limiter(
        clock, capacity=10, min_capacity=2, recovery_probability=0.03, rng=random.Random(7)
    )
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    for _ in range(5):
        limiter.report_outcome(OutcomeKind.SUCCESS, 200)
    assert 5 <= limiter.capacity <= 10

    never = _limiter(clock, capacity=10, min_capacity=2, recovery_probability=0.0)
    never.report_outcome(OutcomeKind.DENIED, 429)
    for _ in range(100):
        never.report_outcome(OutcomeKind.SUCCESS, 200)
    assert never.capacity == 5


def test_state_snapshot(clock) -> None:
    limiter = _limiter(clock, capacity=6)
    limiter.report_outcome(OutcomeKind.DENIED, 429)
    state = limiter.state
    assert state.capacity == 3
    assert state.tokens == 3
    assert state.cooldown_until == pytest.approx(1001.5)
