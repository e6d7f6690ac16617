from __future__ import annotations

import copy
import logging
import time
from typing import Callable, List, Optional

from .config import ConfigManager
from .metrics import MetricsCollector
from .models import CounterStats, PerformanceStats, SystemState

logger = logging.getLogger(__name__)


class PerformanceMonitor:
    """Batch-level counters and the system state read by the batch scheduler.

    The monitor only records; the decision to resize batches or wait longer
    belongs to the scheduler, which writes its state back through
    update_system_stats()."""

    def __init__(
        self,
        config: ConfigManager,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._metrics = metrics or MetricsCollector()
        self._clock = clock
        self._start_time = self._last_report_time = clock()
        self._stats = self._initial_stats()

    def _initial_stats(self) -> PerformanceStats:
        batch = self._config.batch
        return PerformanceStats(
            system_state=SystemState(
                consecutive_failures=0,
                current_batch_size=batch.initial_size,
                max_consecutive_failures=batch.max_consecutive_failures,
            )
        )

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def start(self) -> None:
        self._start_time = self._clock()
        self._last_report_time = self._start_time
        logger.info("performance monitoring started")

    def record_batch_attempt(self, success: bool, processing_ms: float) -> None:
        self._count(self._stats.batch, success)
        self._stats.time.processing_time_ms += processing_ms

    def record_individual_attempt(self, success: bool, processing_ms: float) -> None:
        self._count(self._stats.individual, success)
        self._stats.time.processing_time_ms += processing_ms

    def record_fallback_attempt(self, success: bool) -> None:
        """A query that needed more than one strategy; success if a later one resolved it."""
        self._count(self._stats.fallback, success)

    def record_retry_attempt(self, success: bool) -> None:
        self._count(self._stats.retry, success)

    def record_optimization_attempt(self, success: bool) -> None:
        self._count(self._stats.optimization, success)

    def record_wait_time(self, wait_ms: float) -> None:
        self._stats.time.wait_time_ms += wait_ms

    @staticmethod
    def _count(counter: CounterStats, success: bool) -> None:
        counter.total_attempts += 1
        if success:
            counter.total_successes += 1

    def update_system_stats(
        self, consecutive_failures: int, current_batch_size: int, max_consecutive_failures: int
    ) -> None:
        state = self._stats.system_state
        state.consecutive_failures = consecutive_failures
        state.current_batch_size = current_batch_size
        state.max_consecutive_failures = max_consecutive_failures

    def get_stats(self) -> PerformanceStats:
        stats = copy.deepcopy(self._stats)
        request = self._metrics.get_metrics()
        stats.success_rate = request.success_rate
        stats.block_rate = request.block_rate
        stats.strategies = self._metrics.strategy_metrics()
        stats.queries = self._metrics.query_metrics()
        return stats

    def check_report_interval(self) -> bool:
        """Log a real-time snapshot when the configured interval has elapsed.

        Returns True when a snapshot was emitted."""
        settings = self._config.performance_monitoring
        if not settings.real_time:
            return False
        now = self._clock()
        if (now - self._last_report_time) * 1000 < settings.report_interval:
            return False
        self._last_report_time = now
        logger.info("%s", self.real_time_snapshot(now))
        return True

    def real_time_snapshot(self, now: Optional[float] = None) -> str:
        now = self._clock() if now is None else now
        stats = self._stats
        elapsed = now - self._start_time
        return "\n".join(
            [
                f"Real-time performance ({elapsed:.1f}s elapsed):",
                f"  - batch success rate: {stats.batch.success_rate:.1f}%",
                f"  - individual success rate: {stats.individual.success_rate:.1f}%",
                f"  - processing efficiency: {stats.time.processing_efficiency:.1f}%",
                f"  - consecutive failures: {stats.system_state.consecutive_failures}",
            ]
        )

    def generate_performance_report(self) -> str:
        stats = self.get_stats()
        lines: List[str] = ["Crawl performance report", "=" * 50]
        for title, counter in (
            ("Batches", stats.batch),
            ("Individual queries", stats.individual),
            ("Fallbacks", stats.fallback),
            ("Retries", stats.retry),
            ("Optimizations", stats.optimization),
        ):
            lines.append("")
            lines.append(f"{title}:")
            lines.append(f"  - attempts: {counter.total_attempts}")
            lines.append(f"  - successes: {counter.total_successes}")
            lines.append(f"  - success rate: {counter.success_rate:.1f}%")

        lines.append("")
        lines.append("Time:")
        lines.append(f"  - processing: {stats.time.processing_time_ms / 1000:.1f}s")
        lines.append(f"  - waiting: {stats.time.wait_time_ms / 1000:.1f}s")
        lines.append(f"  - processing efficiency: {stats.processing_efficiency:.1f}%")

        state = stats.system_state
        lines.append("")
        lines.append("System state:")
        lines.append(f"  - consecutive failures: {state.consecutive_failures}")
        lines.append(f"  - current batch size: {state.current_batch_size}")
        lines.append(f"  - max consecutive failures: {state.max_consecutive_failures}")

        if self._config.performance_monitoring.detailed_stats:
            lines.append("")
            lines.append(self._metrics.generate_performance_report())
        return "\n".join(lines)

    def export_metrics(self) -> str:
        return self._metrics.export_metrics()

    def reset(self) -> None:
        self._stats = self._initial_stats()
        self._metrics.reset()
        self._start_time = self._last_report_time = self._clock()
        logger.info("performance stats reset")
