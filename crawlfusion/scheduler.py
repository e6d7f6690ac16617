from __future__ import annotations

import asyncio
import json
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence

from .config import ConfigManager, CrawlConfig, DelayRange
from .fusion import DataFusionEngine
from .models import AnyRecord, FallbackResult, Query, success_rate
from .monitor import PerformanceMonitor
from .orchestrator import FallbackOrchestrator
from .policies import BatchPolicy, BatchState, default_policies

logger = logging.getLogger(__name__)


@dataclass
class BatchRunResult:
    records: List[AnyRecord] = field(default_factory=list)
    results: List[FallbackResult] = field(default_factory=list)
    unresolved: List[Query] = field(default_factory=list)
    total_batches: int = 0
    successful_batches: int = 0
    failed_batches: int = 0
    average_batch_size: float = 0.0
    processing_ms: float = 0.0
    final_batch_size: int = 0


class BatchProcessor:
    """Runs queries through the orchestrator in adaptively sized batches.

    After every batch the configured policies are evaluated in order and the
    first matching one resizes the next batch. Pauses between batches grow
    when the cumulative success rate drops below the low-success threshold."""

    def __init__(
        self,
        config: ConfigManager,
        orchestrator: FallbackOrchestrator,
        fusion: Optional[DataFusionEngine] = None,
        monitor: Optional[PerformanceMonitor] = None,
        policies: Optional[Iterable[BatchPolicy]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._orchestrator = orchestrator
        self._fusion = fusion or DataFusionEngine()
        self._monitor = monitor or PerformanceMonitor(config, orchestrator.metrics)
        self._policies = list(policies) if policies is not None else default_policies(config.get_config())
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._clock = clock
        self._current_size = max(1, config.batch.initial_size)
        self._consecutive_failures = 0

    @property
    def monitor(self) -> PerformanceMonitor:
        return self._monitor

    @property
    def current_batch_size(self) -> int:
        return self._current_size

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def run(self, queries: Sequence[Query], context: str = "default") -> BatchRunResult:
        queries = list(queries)
        config = self._config.get_config()
        self._current_size = max(1, config.batch.initial_size)
        self._consecutive_failures = 0
        self._monitor.start()

        run = BatchRunResult()
        run_start = self._clock()
        processed = 0
        resolved = 0
        total_batch_size = 0

        while processed < len(queries):
            config = self._config.get_config()
            batch = queries[processed:processed + self._current_size]
            processed += len(batch)
            run.total_batches += 1
            logger.info(
                "batch %d: %d queries (%d/%d)", run.total_batches, len(batch), processed, len(queries)
            )

            batch_start = self._clock()
            batch_results = await self._process_batch(batch, config, context)
            batch_ms = (self._clock() - batch_start) * 1000

            run.results.extend(batch_results)
            total_batch_size += len(batch)
            batch_ok = sum(1 for r in batch_results if r.success)
            resolved += batch_ok

            batch_rate = success_rate(batch_ok, len(batch))
            succeeded = batch_rate >= config.success_rate.critical
            self._monitor.record_batch_attempt(succeeded, batch_ms)
            if succeeded:
                run.successful_batches += 1
                self._consecutive_failures = 0
            else:
                run.failed_batches += 1
                self._consecutive_failures += 1
                logger.warning(
                    "batch %d below critical success rate: %.1f%% < %.1f%%",
                    run.total_batches,
                    batch_rate,
                    config.success_rate.critical,
                )

            self._apply_policies(
                BatchState(
                    batch_size=self._current_size,
                    batch_success_rate=batch_rate,
                    batch_succeeded=succeeded,
                    consecutive_failures=self._consecutive_failures,
                )
            )
            self._monitor.update_system_stats(
                self._consecutive_failures, self._current_size, config.batch.max_consecutive_failures
            )
            self._monitor.check_report_interval()

            if processed < len(queries):
                await self._pause(config, success_rate(resolved, processed))

        records: List[AnyRecord] = [r.record for r in run.results if r.success and r.record is not None]
        run.records = self._fusion.merge_records(records)
        run.unresolved = [r.query for r in run.results if not r.success]
        if config.fallback.enabled:
            # Placeholders are appended after fusion so address-less queries survive validation.
            run.records.extend(self._orchestrator.minimal_record(q) for q in run.unresolved)

        run.processing_ms = (self._clock() - run_start) * 1000
        run.average_batch_size = total_batch_size / run.total_batches if run.total_batches else 0.0
        run.final_batch_size = self._current_size
        logger.info(
            "run finished: %d queries, %d resolved, %d batches (%d failed), final batch size %d",
            len(queries),
            resolved,
            run.total_batches,
            run.failed_batches,
            run.final_batch_size,
        )
        return run

    async def _process_batch(self, batch: List[Query], config: CrawlConfig, context: str) -> List[FallbackResult]:
        sources = config.sources
        if sources.parallel and sources.max_concurrent > 1:
            semaphore = asyncio.Semaphore(sources.max_concurrent)

            async def bounded(query: Query) -> FallbackResult:
                async with semaphore:
                    return await self._process_query(query, context)

            return list(await asyncio.gather(*(bounded(q) for q in batch)))

        results = []
        for query in batch:
            results.append(await self._process_query(query, context))
        return results

    async def _process_query(self, query: Query, context: str) -> FallbackResult:
        result = await self._orchestrator.execute_fallback(query, context)
        self._monitor.record_individual_attempt(result.success, result.elapsed_ms)
        if result.attempts_in_this_run > 1:
            self._monitor.record_fallback_attempt(result.success)
        return result

    def _apply_policies(self, state: BatchState) -> None:
        """Evaluate each policy in order and apply the first matching one."""
        for policy in self._policies:
            if not policy.should_apply(state):
                continue
            old_size = self._current_size
            new_size = max(1, policy.apply(state))
            self._current_size = new_size
            if new_size != old_size:
                self._monitor.record_optimization_attempt(True)
            log = {
                "timestamp": time.time(),
                "policy": policy.__class__.__name__,
                "old_size": old_size,
                "new_size": new_size,
                "reason": {
                    "batch_success_rate": round(state.batch_success_rate, 2),
                    "batch_succeeded": state.batch_succeeded,
                    "consecutive_failures": state.consecutive_failures,
                },
            }
            logger.info(json.dumps(log, ensure_ascii=False))
            break

    async def _pause(self, config: CrawlConfig, cumulative_rate: float) -> None:
        wait_ms = self._uniform(config.batch.delay_range)
        if cumulative_rate < config.batch.low_success_threshold:
            extra_ms = self._uniform(config.batch.low_success_delay_range)
            logger.info(
                "cumulative success rate %.1f%% below %.1f%%, waiting an extra %.0fms",
                cumulative_rate,
                config.batch.low_success_threshold,
                extra_ms,
            )
            self._monitor.record_optimization_attempt(True)
            wait_ms += extra_ms
        self._monitor.record_wait_time(wait_ms)
        await self._sleep(wait_ms / 1000.0)

    def _uniform(self, delay_range: DelayRange) -> float:
        return self._rng.uniform(delay_range.min, delay_range.max)
