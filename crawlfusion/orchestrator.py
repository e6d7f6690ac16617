from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Iterable, List, Optional, Tuple, Union

from .backoff import BackoffStrategy
from .base import Strategy
from .config import ConfigManager, DelayRange
from .errors import InvalidRecordError
from .metrics import MetricsCollector
from .models import AnyRecord, EquipmentRecord, FallbackResult, Query, Record
from .retry import RetryExecutor
from .validators import is_valid_confidence

logger = logging.getLogger(__name__)

HISTORY_SIZE = 10

NO_AVAILABLE_STRATEGIES = "no_available_strategies"
ALL_STRATEGIES_FAILED = "all_strategies_failed"
INVALID_RECORD = "invalid_record"


class FallbackOrchestrator:
    """Tries strategies in priority order until one yields a valid record.

    Every expected failure is reported through the returned FallbackResult;
    an exception raised by one strategy is attributed to it and the next
    strategy is tried. Safe to run concurrently for different queries on one
    event loop."""

    def __init__(
        self,
        config: ConfigManager,
        strategies: Iterable[Strategy],
        metrics: Optional[MetricsCollector] = None,
        retry: Optional[RetryExecutor] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        registered = tuple(strategies)
        names = [s.name for s in registered]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate strategy names: {', '.join(duplicates)}")

        self._config = config
        self._registered = registered
        # sorted() is stable, so equal priorities keep registration order.
        self._ordered: Tuple[Strategy, ...] = tuple(sorted(registered, key=lambda s: s.priority))
        self._overrides: Dict[str, bool] = {}
        self._history: Dict[str, Deque[FallbackResult]] = {}
        self._metrics = metrics or MetricsCollector()
        self._sleep = sleep
        self._rng = rng or random.Random()
        if retry is None:
            snapshot = config.get_config()
            retry = RetryExecutor(
                max_retries=snapshot.sources.max_retries,
                backoff=BackoffStrategy.from_config(snapshot),
                sleep=sleep,
            )
        self._retry = retry

    @property
    def strategies(self) -> Tuple[Strategy, ...]:
        return self._ordered

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    def available_strategies(self) -> List[Strategy]:
        return [s for s in self._ordered if self._is_available(s)]

    def _is_available(self, strategy: Strategy) -> bool:
        override = self._overrides.get(strategy.name)
        if override is not None:
            return override
        enabled = self._config.get_value("sources.enabled_names")
        if enabled and strategy.name not in enabled:
            return False
        try:
            return bool(strategy.is_available())
        except Exception as exc:  # noqa: BLE001
            logger.warning("availability check failed for %s: %s", strategy.name, exc)
            return False

    async def execute_fallback(self, query: Query, context: str = "default") -> FallbackResult:
        started = time.monotonic()
        candidates = self.available_strategies()
        if not candidates:
            logger.warning("no available strategies for %s", query.name)
            return self._finish(query, None, "", 0, started, NO_AVAILABLE_STRATEGIES)

        fallback = self._config.fallback
        sources = self._config.sources
        anti_detection = self._config.anti_detection
        if not fallback.enabled:
            candidates = candidates[:1]

        key = query.key
        tried = 0
        last_error: Optional[str] = None
        for index, strategy in enumerate(candidates):
            if index > 0 and anti_detection.random_delay:
                await self._random_delay(anti_detection.delay_range)

            tried += 1
            start = self._metrics.record_request_start(key, strategy.name)
            try:
                record = await self._retry.execute(
                    lambda s=strategy: self._call(s, query, sources.timeout),
                    key=f"{context}:{strategy.name}",
                    can_retry=lambda s=strategy: self._is_available(s),
                )
                rejection = self._rejection(strategy, record, fallback.min_confidence)
            except Exception as exc:  # noqa: BLE001
                last_error = f"{type(exc).__name__}: {exc}"
                logger.warning("strategy %s failed for %s: %s", strategy.name, query.name, last_error)
                self._metrics.record_request_failure(key, strategy.name, start, exc)
                continue

            if rejection is not None:
                last_error = str(rejection)
                self._metrics.record_request_failure(key, strategy.name, start, rejection)
                continue

            self._metrics.record_request_success(key, strategy.name, start, record)
            logger.debug("resolved %s via %s after %d strategies", query.name, strategy.name, tried)
            return self._finish(query, record, strategy.name, tried, started, None)

        logger.info("all strategies failed for %s (last error: %s)", query.name, last_error)
        return self._finish(query, None, candidates[tried - 1].name, tried, started, ALL_STRATEGIES_FAILED)

    @staticmethod
    async def _call(strategy: Strategy, query: Query, timeout_ms: int) -> Optional[AnyRecord]:
        return await asyncio.wait_for(strategy.execute(query), timeout=timeout_ms / 1000.0)

    async def _random_delay(self, delay_range: DelayRange) -> None:
        delay_ms = self._rng.uniform(delay_range.min, delay_range.max)
        await self._sleep(delay_ms / 1000.0)

    @staticmethod
    def is_valid_record(record: object, min_confidence: float = 0.1) -> bool:
        if not isinstance(record, (Record, EquipmentRecord)):
            return False
        if not isinstance(record.name, str) or not record.name.strip():
            return False
        if not is_valid_confidence(record.confidence):
            return False
        return record.confidence > min_confidence

    def _rejection(
        self, strategy: Strategy, record: object, min_confidence: float
    ) -> Optional[Union[str, InvalidRecordError]]:
        if self.is_valid_record(record, min_confidence):
            return None
        if record is not None and not isinstance(record, (Record, EquipmentRecord)):
            error = InvalidRecordError(strategy.name, f"returned {type(record).__name__} instead of a record")
            logger.warning("%s", error)
            return error
        return INVALID_RECORD

    def _finish(
        self,
        query: Query,
        record: Optional[AnyRecord],
        strategy_name: str,
        attempts: int,
        started: float,
        error: Optional[str],
    ) -> FallbackResult:
        result = FallbackResult(
            query=query,
            success=record is not None,
            record=record,
            strategy_name=strategy_name,
            attempts_in_this_run=attempts,
            elapsed_ms=int((time.monotonic() - started) * 1000),
            error=error,
        )
        history = self._history.get(query.key)
        if history is None:
            history = self._history[query.key] = deque(maxlen=HISTORY_SIZE)
        history.append(result)
        return result

    def history(self, query: Union[Query, str]) -> List[FallbackResult]:
        key = query.key if isinstance(query, Query) else query
        return list(self._history.get(key, ()))

    def strategy_success_rates(self) -> Dict[str, float]:
        """Success ratio per strategy over every history entry naming it."""
        totals = {s.name: [0, 0] for s in self._registered}
        for entries in self._history.values():
            for result in entries:
                counts = totals.get(result.strategy_name)
                if counts is None:
                    continue
                counts[1] += 1
                if result.success:
                    counts[0] += 1
        return {name: (ok / total if total else 0.0) for name, (ok, total) in totals.items()}

    def reorder_strategies_by_success(self) -> Tuple[Strategy, ...]:
        """Re-rank strategies by historical success, best first.

        Ties keep the current order. The ordering is rebuilt and swapped in,
        never mutated in place."""
        rates = self.strategy_success_rates()
        old_order = [s.name for s in self._ordered]
        self._ordered = tuple(sorted(self._ordered, key=lambda s: -rates[s.name]))
        new_order = [s.name for s in self._ordered]
        if new_order != old_order:
            logger.info(
                json.dumps(
                    {"event": "strategies_reordered", "old": old_order, "new": new_order, "rates": rates},
                    ensure_ascii=False,
                )
            )
        return self._ordered

    def disable_strategy(self, name: str) -> None:
        self._set_override(name, False)

    def enable_strategy(self, name: str) -> None:
        self._set_override(name, True)

    def clear_override(self, name: str) -> None:
        self._check_name(name)
        self._overrides.pop(name, None)

    def _set_override(self, name: str, available: bool) -> None:
        self._check_name(name)
        self._overrides[name] = available
        logger.info("strategy %s %s", name, "enabled" if available else "disabled")

    def _check_name(self, name: str) -> None:
        if name not in {s.name for s in self._registered}:
            raise KeyError(f"unknown strategy: {name}")

    def minimal_record(self, query: Query) -> Record:
        """Placeholder record for a query no strategy could resolve."""
        return Record(
            name=query.name,
            address=query.address,
            source="minimal_fallback",
            confidence=self._config.fallback.fallback_confidence,
        )
