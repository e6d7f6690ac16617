from __future__ import annotations

import random
from typing import Optional

from .config import CrawlConfig


class BackoffStrategy:
    """Exponential backoff with jitter for retry delays.

    Computes sleep duration as base * multiplier^(attempt-1) plus random
    jitter, capped at a configurable maximum."""

    def __init__(
        self,
        base_seconds: float = 0.5,
        max_seconds: float = 10.0,
        multiplier: float = 2.0,
        jitter_ratio: float = 0.1,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._base = base_seconds
        self._max = max_seconds
        self._multiplier = multiplier
        self._jitter_ratio = jitter_ratio
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: CrawlConfig, max_seconds: float = 30.0) -> "BackoffStrategy":
        """Derive the base delay from ``sources.delay`` (milliseconds)."""
        return cls(base_seconds=config.sources.delay / 1000.0, max_seconds=max_seconds)

    def get_sleep(self, attempt: int, error_type: Optional[str] = None) -> float:
        """Calculate the backoff sleep duration in seconds for a given retry attempt.

        Blocked requests (HTTP 403) start one step further along the curve."""
        step = max(attempt - 1, 0)
        if error_type == "BlockedError":
            step += 1
        exp = min(self._max, self._base * (self._multiplier ** step))
        jitter = self._rng.uniform(0, exp * self._jitter_ratio)
        return exp + jitter
