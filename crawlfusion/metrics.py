from __future__ import annotations

import json
import logging
import time
from collections import deque
from dataclasses import asdict, replace
from datetime import datetime, timezone
from threading import Lock
from typing import Deque, Dict, List, Optional, Union

from .models import AnyRecord, QueryMetrics, RequestMetrics, StrategyMetrics, success_rate

logger = logging.getLogger(__name__)

RESPONSE_WINDOW = 100

_BLOCK_MARKERS = ("403", "Forbidden")


def is_blocked_error(error: Union[BaseException, str, None]) -> bool:
    """True when an error message signals an active rejection by the source."""
    if error is None:
        return False
    message = str(error)
    return any(marker in message for marker in _BLOCK_MARKERS)


class MetricsCollector:
    """Thread-safe collector for per-request crawl metrics.

    Tracks global request counters, a rolling average over the last
    RESPONSE_WINDOW response times, and aggregates per strategy and per
    query key."""

    def __init__(self, clock=time.monotonic, wall_clock=time.time) -> None:
        self._lock = Lock()
        self._clock = clock
        self._wall_clock = wall_clock
        self._init_state()

    def _init_state(self) -> None:
        self._total = 0
        self._succeeded = 0
        self._failed = 0
        self._blocked = 0
        self._response_times: Deque[float] = deque(maxlen=RESPONSE_WINDOW)
        self._last_updated = self._wall_clock()
        self._strategies: Dict[str, StrategyMetrics] = {}
        self._queries: Dict[str, QueryMetrics] = {}

    def record_request_start(self, query_key: str, strategy_name: str) -> float:
        """Count a request and return the start timestamp to pass back on completion."""
        start = self._clock()
        now = self._wall_clock()
        with self._lock:
            self._total += 1
            self._last_updated = now

            query = self._queries.get(query_key)
            if query is None:
                query = self._queries[query_key] = QueryMetrics(query_key=query_key)
            query.total_attempts += 1
            query.last_attempt = now
            if strategy_name not in query.strategies_used:
                query.strategies_used.append(strategy_name)

            strategy = self._strategy(strategy_name)
            strategy.total_attempts += 1
            strategy.last_used = now
        return start

    def record_request_success(
        self, query_key: str, strategy_name: str, start: float, record: Optional[AnyRecord]
    ) -> None:
        elapsed_ms = (self._clock() - start) * 1000
        with self._lock:
            self._succeeded += 1
            self._response_times.append(elapsed_ms)

            query = self._queries.get(query_key)
            if query is not None:
                query.successful_attempts += 1
                confidence = record.confidence if record is not None else 0.0
                n = query.successful_attempts
                query.average_confidence += (confidence - query.average_confidence) / n
                query.last_successful_strategy = strategy_name

            strategy = self._strategy(strategy_name)
            strategy.successful_attempts += 1
            self._close_strategy(strategy, elapsed_ms)
            self._last_updated = self._wall_clock()
        logger.debug("request ok: %s via %s (%.0fms)", query_key, strategy_name, elapsed_ms)

    def record_request_failure(
        self,
        query_key: str,
        strategy_name: str,
        start: float,
        error: Union[BaseException, str, None],
    ) -> None:
        elapsed_ms = (self._clock() - start) * 1000
        with self._lock:
            self._failed += 1
            self._response_times.append(elapsed_ms)
            if is_blocked_error(error):
                self._blocked += 1

            strategy = self._strategy(strategy_name)
            strategy.failed_attempts += 1
            self._close_strategy(strategy, elapsed_ms)
            self._last_updated = self._wall_clock()
        logger.debug("request failed: %s via %s (%.0fms): %s", query_key, strategy_name, elapsed_ms, error)

    def _strategy(self, name: str) -> StrategyMetrics:
        strategy = self._strategies.get(name)
        if strategy is None:
            strategy = self._strategies[name] = StrategyMetrics(strategy_name=name)
        return strategy

    @staticmethod
    def _close_strategy(strategy: StrategyMetrics, elapsed_ms: float) -> None:
        completed = strategy.successful_attempts + strategy.failed_attempts
        strategy.average_execution_ms += (elapsed_ms - strategy.average_execution_ms) / completed
        strategy.success_rate = success_rate(strategy.successful_attempts, completed)

    def get_metrics(self) -> RequestMetrics:
        with self._lock:
            average = sum(self._response_times) / len(self._response_times) if self._response_times else 0.0
            return RequestMetrics(
                total_requests=self._total,
                successful_requests=self._succeeded,
                failed_requests=self._failed,
                blocked_requests=self._blocked,
                average_response_ms=average,
                success_rate=success_rate(self._succeeded, self._total),
                block_rate=success_rate(self._blocked, self._total),
                last_updated=self._last_updated,
            )

    def strategy_metrics(self) -> Dict[str, StrategyMetrics]:
        with self._lock:
            return {name: replace(m) for name, m in self._strategies.items()}

    def query_metrics(self) -> Dict[str, QueryMetrics]:
        with self._lock:
            return {key: replace(m, strategies_used=list(m.strategies_used)) for key, m in self._queries.items()}

    def generate_performance_report(self) -> str:
        metrics = self.get_metrics()
        lines: List[str] = [
            "Request metrics",
            "=" * 50,
            f"Total requests: {metrics.total_requests}",
            f"Successful requests: {metrics.successful_requests}",
            f"Failed requests: {metrics.failed_requests}",
            f"Blocked requests: {metrics.blocked_requests}",
            f"Success rate: {metrics.success_rate:.2f}%",
            f"Block rate: {metrics.block_rate:.2f}%",
            f"Average response time: {metrics.average_response_ms:.0f}ms",
            "",
            "Per strategy:",
            "-" * 30,
        ]
        for strategy in self.strategy_metrics().values():
            lines.append(f"{strategy.strategy_name}:")
            lines.append(f"  attempts: {strategy.total_attempts}, successes: {strategy.successful_attempts}")
            lines.append(f"  success rate: {strategy.success_rate:.2f}%")
            lines.append(f"  average execution time: {strategy.average_execution_ms:.0f}ms")
        return "\n".join(lines)

    def export_metrics(self) -> str:
        """Serialize request, strategy and query metrics as a JSON document."""
        payload = {
            "metrics": asdict(self.get_metrics()),
            "strategy_metrics": [asdict(m) for m in self.strategy_metrics().values()],
            "query_metrics": [asdict(m) for m in self.query_metrics().values()],
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(payload, ensure_ascii=False, indent=2)

    def reset(self) -> None:
        with self._lock:
            self._init_state()
        logger.info("request metrics reset")
