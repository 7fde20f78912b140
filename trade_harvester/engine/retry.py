"""Retry classification and geometric backoff for page fetch attempts."""

from __future__ import annotations

import random
from dataclasses import dataclass

from .models import AttemptOutcome, AttemptStatus, FailureKind

DENIAL_STATUSES = frozenset({403, 429})


@dataclass(slots=True)
class RetryDecision:
    retry: bool
    delay: float
    status: AttemptStatus


class RetryPolicy:
    """Decide whether a failed attempt is retried and how long to wait.

    429, 403, any 5xx, network errors and timeouts are retryable until
    ``max_attempts`` attempts have been made. Every other 4xx and every
    contract violation is fatal on the spot.
    """

    def __init__(
        self,
        max_attempts: int = 4,
        base_delay: float = 0.25,
        growth_factor: float = 1.5,
        max_delay: float = 8.0,
        jitter: float = 0.2,
        rng: random.Random | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.growth_factor = growth_factor
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()

    @staticmethod
    def is_denial(status: int | None) -> bool:
        """Statuses that also count as a rate-limit denial upstream."""

        if status is None:
            return False
        return status in DENIAL_STATUSES or status >= 500

    def is_retryable(self, outcome: AttemptOutcome) -> bool:
        if outcome.kind is FailureKind.NETWORK:
            return True
        if outcome.kind is FailureKind.CONTRACT:
            return False
        return self.is_denial(outcome.status)

    def backoff(self, attempt: int) -> float:
        """Delay before the attempt following ``attempt`` (1-based)."""

        delay = min(self.max_delay, self.base_delay * self.growth_factor ** max(0, attempt - 1))
        if self.jitter > 0:
            delay += self._rng.uniform(0.0, self.jitter)
        return delay

    def classify(self, outcome: AttemptOutcome, attempt: int) -> RetryDecision:
        if outcome.ok:
            return RetryDecision(retry=False, delay=0.0, status=AttemptStatus.SUCCESS)
        if not self.is_retryable(outcome) or attempt >= self.max_attempts:
            return RetryDecision(retry=False, delay=0.0, status=AttemptStatus.FATAL)
        return RetryDecision(
            retry=True, delay=self.backoff(attempt), status=AttemptStatus.RETRYABLE
        )


__all__ = ["DENIAL_STATUSES", "RetryDecision", "RetryPolicy"]
