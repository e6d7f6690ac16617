from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

_WHITESPACE = re.compile(r"\s+")

# Optional gym fields; coordinates and hours each count as one field for quality scoring.
DETAIL_FIELDS: Tuple[str, ...] = (
    "phone",
    "latitude",
    "longitude",
    "open_hour",
    "close_hour",
    "price",
    "rating",
    "review_count",
    "facilities",
)


def normalize_key_part(value: Optional[str]) -> str:
    """Lower-case a value and drop every whitespace character."""
    if not value:
        return ""
    return _WHITESPACE.sub("", str(value)).lower()


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


@dataclass(frozen=True)
class Query:
    name: str
    address: str = ""

    @property
    def key(self) -> str:
        return f"{normalize_key_part(self.name)}|{normalize_key_part(self.address)}"


@dataclass(frozen=True)
class Record:
    name: str
    address: str
    source: str
    confidence: float
    phone: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    open_hour: Optional[str] = None
    close_hour: Optional[str] = None
    price: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    facilities: Optional[Tuple[str, ...]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = "gym"
        if self.facilities is not None:
            data["facilities"] = list(self.facilities)
        return data


@dataclass(frozen=True)
class EquipmentRecord:
    name: str
    category: str
    source: str
    confidence: float
    gym_id: Optional[str] = None
    quantity: int = 1
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = "equipment"
        return data


AnyRecord = Union[Record, EquipmentRecord]


@dataclass(frozen=True)
class FallbackResult:
    query: Query
    success: bool
    record: Optional[AnyRecord]
    strategy_name: str
    attempts_in_this_run: int
    elapsed_ms: int
    error: Optional[str] = None


@dataclass(frozen=True)
class RequestMetrics:
    total_requests: int
    successful_requests: int
    failed_requests: int
    blocked_requests: int
    average_response_ms: float
    success_rate: float
    block_rate: float
    last_updated: float


@dataclass
class StrategyMetrics:
    strategy_name: str
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    average_execution_ms: float = 0.0
    success_rate: float = 0.0
    last_used: float = 0.0


@dataclass
class QueryMetrics:
    query_key: str
    total_attempts: int = 0
    successful_attempts: int = 0
    strategies_used: List[str] = field(default_factory=list)
    average_confidence: float = 0.0
    last_successful_strategy: str = ""
    last_attempt: float = 0.0


@dataclass
class CounterStats:
    total_attempts: int = 0
    total_successes: int = 0

    @property
    def success_rate(self) -> float:
        return success_rate(self.total_successes, self.total_attempts)


@dataclass
class TimeStats:
    processing_time_ms: float = 0.0
    wait_time_ms: float = 0.0

    @property
    def processing_efficiency(self) -> float:
        total = self.processing_time_ms + self.wait_time_ms
        return (self.processing_time_ms / total) * 100 if total > 0 else 0.0


@dataclass
class SystemState:
    consecutive_failures: int = 0
    current_batch_size: int = 0
    max_consecutive_failures: int = 0


@dataclass
class PerformanceStats:
    batch: CounterStats = field(default_factory=CounterStats)
    individual: CounterStats = field(default_factory=CounterStats)
    fallback: CounterStats = field(default_factory=CounterStats)
    retry: CounterStats = field(default_factory=CounterStats)
    optimization: CounterStats = field(default_factory=CounterStats)
    time: TimeStats = field(default_factory=TimeStats)
    system_state: SystemState = field(default_factory=SystemState)
    success_rate: float = 0.0
    block_rate: float = 0.0
    strategies: Dict[str, StrategyMetrics] = field(default_factory=dict)
    queries: Dict[str, QueryMetrics] = field(default_factory=dict)

    @property
    def processing_efficiency(self) -> float:
        return self.time.processing_efficiency


def success_rate(successes: int, attempts: int) -> float:
    """Percentage of successes; 0 when nothing was attempted."""
    return (successes / attempts) * 100 if attempts > 0 else 0.0
