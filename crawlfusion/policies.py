from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List

from .config import CrawlConfig


@dataclass(frozen=True)
class BatchState:
    """Outcome of the batch just processed, as seen by the batch-size policies."""

    batch_size: int
    batch_success_rate: float
    batch_succeeded: bool
    consecutive_failures: int


class BatchPolicy(ABC):
    """Abstract base class for batch-size policies.

    Each policy evaluates a BatchState and decides whether to resize the
    next batch."""

    @abstractmethod
    def should_apply(self, state: BatchState) -> bool:
        """Return True if this policy should be activated for the given batch."""
        raise NotImplementedError

    @abstractmethod
    def apply(self, state: BatchState) -> int:
        """Return the size to use for the next batch."""
        raise NotImplementedError


class ShrinkBatchPolicy(BatchPolicy):
    """Halves the batch size after too many consecutive failed batches."""

    def __init__(self, max_consecutive_failures: int = 3, min_size: int = 1) -> None:
        self._max_failures = max_consecutive_failures
        self._min_size = max(1, min_size)

    def should_apply(self, state: BatchState) -> bool:
        return not state.batch_succeeded and state.consecutive_failures >= self._max_failures

    def apply(self, state: BatchState) -> int:
        return max(self._min_size, state.batch_size // 2)


class GrowBatchPolicy(BatchPolicy):
    """Grows the batch size by one when a batch meets the target success rate."""

    def __init__(self, target_rate: float = 95.0, max_size: int = 20) -> None:
        self._target_rate = target_rate
        self._max_size = max_size

    def should_apply(self, state: BatchState) -> bool:
        return state.batch_succeeded and state.batch_success_rate >= self._target_rate

    def apply(self, state: BatchState) -> int:
        return min(self._max_size, state.batch_size + 1)


def default_policies(config: CrawlConfig) -> List[BatchPolicy]:
    """Shrink first, then grow; the scheduler applies the first match."""
    return [
        ShrinkBatchPolicy(config.batch.max_consecutive_failures, config.batch.min_size),
        GrowBatchPolicy(config.success_rate.target, config.batch.max_size),
    ]
