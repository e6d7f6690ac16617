from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Optional, TypeVar

from .backoff import BackoffStrategy

if TYPE_CHECKING:
    from .monitor import PerformanceMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Past failures of a key push its backoff further along, up to this many steps.
MAX_STREAK_STEPS = 5


@dataclass
class RetryKeyStats:
    attempts: int = 0
    successes: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    last_error: Optional[str] = None


class RetryExecutor:
    """Runs one fallible async operation with bounded retries.

    Bookkeeping is kept per key (the orchestrator uses one key per
    context/strategy pair) so a source that keeps failing backs off longer
    on its next call."""

    def __init__(
        self,
        max_retries: int = 3,
        backoff: Optional[BackoffStrategy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        monitor: Optional["PerformanceMonitor"] = None,
    ) -> None:
        self._max_retries = max(0, max_retries)
        self._backoff = backoff or BackoffStrategy()
        self._sleep = sleep
        self._monitor = monitor
        self._stats: Dict[str, RetryKeyStats] = {}

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        key: str,
        can_retry: Optional[Callable[[], bool]] = None,
    ) -> T:
        """Await ``operation()`` until it succeeds or the retry budget is spent.

        The last exception is re-raised once ``max_retries + 1`` attempts
        have failed, or as soon as ``can_retry`` returns False."""
        stats = self._stats.setdefault(key, RetryKeyStats())
        streak = min(stats.consecutive_failures, MAX_STREAK_STEPS)
        attempt = 0
        while True:
            attempt += 1
            stats.attempts += 1
            try:
                result = await operation()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                stats.failures += 1
                stats.consecutive_failures += 1
                stats.last_error = f"{type(exc).__name__}: {exc}"
                if attempt > 1 and self._monitor:
                    self._monitor.record_retry_attempt(False)
                if attempt > self._max_retries:
                    raise
                if can_retry is not None and not can_retry():
                    logger.debug("retry %s abandoned after attempt %d: %s", key, attempt, stats.last_error)
                    raise
                sleep_s = self._backoff.get_sleep(attempt + streak, type(exc).__name__)
                logger.debug(
                    "retry %s attempt %d/%d failed (%s); sleeping %.2fs",
                    key,
                    attempt,
                    self._max_retries + 1,
                    stats.last_error,
                    sleep_s,
                )
                await self._sleep(sleep_s)
                continue

            stats.successes += 1
            stats.consecutive_failures = 0
            if attempt > 1 and self._monitor:
                self._monitor.record_retry_attempt(True)
            return result

    def key_stats(self, key: str) -> RetryKeyStats:
        return replace(self._stats.get(key, RetryKeyStats()))

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._stats.clear()
        else:
            self._stats.pop(key, None)
