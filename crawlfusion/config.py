from __future__ import annotations

import copy
import logging
from dataclasses import asdict, dataclass, field, fields, is_dataclass
from typing import Any, Iterable, List, Mapping, Optional, Set, Union

from .errors import ConfigValidationError

logger = logging.getLogger(__name__)


@dataclass
class DelayRange:
    min: int
    max: int


@dataclass
class BatchConfig:
    initial_size: int = 10
    min_size: int = 1
    max_size: int = 20
    max_consecutive_failures: int = 3
    delay_range: DelayRange = field(default_factory=lambda: DelayRange(2000, 5000))
    low_success_delay_range: DelayRange = field(default_factory=lambda: DelayRange(5000, 10000))
    low_success_threshold: float = 80


@dataclass
class SourcesConfig:
    # An empty set enables every registered strategy.
    enabled_names: Set[str] = field(default_factory=set)
    timeout: int = 30000
    delay: int = 1000
    max_retries: int = 3
    parallel: bool = False
    max_concurrent: int = 1


@dataclass
class FallbackConfig:
    enabled: bool = True
    min_confidence: float = 0.1
    fallback_confidence: float = 0.05


@dataclass
class AntiDetectionConfig:
    random_delay: bool = True
    delay_range: DelayRange = field(default_factory=lambda: DelayRange(1000, 3000))
    rotate_identity: bool = True


@dataclass
class SuccessRateConfig:
    target: float = 95
    warning: float = 80
    critical: float = 60


@dataclass
class PerformanceMonitoringConfig:
    detailed_stats: bool = True
    real_time: bool = True
    report_interval: int = 10000


@dataclass
class CrawlConfig:
    """Complete configuration tree. Durations are milliseconds."""

    timeout: int = 30000
    delay: int = 1000
    max_retries: int = 3
    batch: BatchConfig = field(default_factory=BatchConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    anti_detection: AntiDetectionConfig = field(default_factory=AntiDetectionConfig)
    success_rate: SuccessRateConfig = field(default_factory=SuccessRateConfig)
    performance_monitoring: PerformanceMonitoringConfig = field(default_factory=PerformanceMonitoringConfig)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["sources"]["enabled_names"] = sorted(self.sources.enabled_names)
        return data


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: List[str]


ConfigInput = Union[Mapping[str, Any], CrawlConfig]


def merge_config(target: Any, partial: Mapping[str, Any], path: str = "") -> None:
    """Overlay ``partial`` onto a config dataclass in place.

    A mapping merges into a nested section; any other value replaces the
    field. Keys outside the schema raise KeyError, and a section given
    something other than a mapping raises TypeError.
    """
    known = {f.name for f in fields(target)}
    for key, value in partial.items():
        if key not in known:
            raise KeyError(f"unknown config key: {path}{key}")
        current = getattr(target, key)
        if is_dataclass(current):
            if isinstance(value, Mapping):
                merge_config(current, value, f"{path}{key}.")
                continue
            if not isinstance(value, type(current)):
                raise TypeError(f"{path}{key} must be a mapping")
        setattr(target, key, _coerce(current, value, f"{path}{key}"))


def _coerce(current: Any, value: Any, name: str) -> Any:
    if isinstance(current, (set, frozenset)):
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise TypeError(f"{name} must be a list of names")
        return set(value)
    if is_dataclass(value) and not isinstance(value, type):
        return copy.deepcopy(value)
    return value


def _as_mapping(partial: ConfigInput) -> Mapping[str, Any]:
    if isinstance(partial, CrawlConfig):
        return partial.to_dict()
    return partial


def _type_errors(node: Any, path: str = "") -> List[str]:
    errors: List[str] = []
    for f in fields(node):
        value = getattr(node, f.name)
        name = f"{path}{f.name}"
        if f.type in ("int", "float"):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
                errors.append(f"{name} must be a number")
        elif f.type == "bool":
            if not isinstance(value, bool):
                errors.append(f"{name} must be true or false")
        elif is_dataclass(value):
            errors.extend(_type_errors(value, f"{name}."))
    return errors


def check_config(config: CrawlConfig) -> List[str]:
    """Return every rule the given config tree violates.

    Wrongly typed values are reported on their own; range rules are only
    checked once every numeric field holds a number.
    """
    errors = _type_errors(config)
    if errors:
        return errors

    if config.timeout <= 0:
        errors.append("timeout must be greater than 0")
    if config.delay < 0:
        errors.append("delay must be 0 or greater")
    if config.max_retries < 0:
        errors.append("max_retries must be 0 or greater")

    batch = config.batch
    if not 1 <= batch.initial_size <= 50:
        errors.append("batch.initial_size must be within 1-50")
    if batch.min_size < 1:
        errors.append("batch.min_size must be 1 or greater")
    if batch.max_size > 100:
        errors.append("batch.max_size must be 100 or less")
    if batch.min_size > batch.max_size:
        errors.append("batch.min_size must be less than or equal to batch.max_size")
    elif not batch.min_size <= batch.initial_size <= batch.max_size:
        errors.append("batch.initial_size must be within batch.min_size-batch.max_size")
    if batch.max_consecutive_failures < 1:
        errors.append("batch.max_consecutive_failures must be 1 or greater")
    if not 0 <= batch.low_success_threshold <= 100:
        errors.append("batch.low_success_threshold must be within 0-100")

    for name, delay_range in (
        ("batch.delay_range", batch.delay_range),
        ("batch.low_success_delay_range", batch.low_success_delay_range),
        ("anti_detection.delay_range", config.anti_detection.delay_range),
    ):
        if delay_range.min < 0 or delay_range.min > delay_range.max:
            errors.append(f"{name} must satisfy 0 <= min <= max")

    sources = config.sources
    if sources.timeout <= 0:
        errors.append("sources.timeout must be greater than 0")
    if sources.max_retries < 0:
        errors.append("sources.max_retries must be 0 or greater")
    if sources.max_concurrent < 1:
        errors.append("sources.max_concurrent must be 1 or greater")

    for name in ("min_confidence", "fallback_confidence"):
        value = getattr(config.fallback, name)
        if not 0 <= value <= 1:
            errors.append(f"fallback.{name} must be within 0-1")

    for name in ("target", "warning", "critical"):
        value = getattr(config.success_rate, name)
        if not 0 <= value <= 100:
            errors.append(f"success_rate.{name} must be within 0-100")

    if config.performance_monitoring.report_interval <= 0:
        errors.append("performance_monitoring.report_interval must be greater than 0")

    return errors


class ConfigManager:
    """Owns the crawl configuration tree.

    One instance is built at start-up and handed to every component. The
    data path only reads it; writes go through update(), set_value() and
    reset_to_default().
    """

    def __init__(self, initial: Optional[ConfigInput] = None) -> None:
        self._config = CrawlConfig()
        if initial:
            self.update(initial)

    def get_config(self) -> CrawlConfig:
        return copy.deepcopy(self._config)

    def get_value(self, path: str) -> Any:
        """Look up a dot-separated path, e.g. ``batch.delay_range.min``.

        Returns None when any segment does not exist.
        """
        node: Any = self._config
        for part in path.split("."):
            if not is_dataclass(node) or part not in {f.name for f in fields(node)}:
                return None
            node = getattr(node, part)
        return copy.deepcopy(node)

    def set_value(self, path: str, value: Any) -> None:
        *parents, last = path.split(".")
        node: Any = self._config
        for part in parents:
            if not is_dataclass(node) or part not in {f.name for f in fields(node)}:
                raise KeyError(f"unknown config path: {path}")
            node = getattr(node, part)
        if not is_dataclass(node):
            raise KeyError(f"unknown config path: {path}")
        merge_config(node, {last: value}, f"{'.'.join(parents)}." if parents else "")
        logger.info("crawl config value set: %s = %r", path, value)

    def update(self, partial: ConfigInput, strict: bool = False) -> None:
        """Deep-merge a partial configuration.

        By default the merge is committed without validation; callers that
        need atomicity call validate() first or pass ``strict=True``, which
        validates the merged tree and raises ConfigValidationError without
        applying anything. In strict mode unknown keys and wrongly shaped
        sections are reported the same way.
        """
        candidate = copy.deepcopy(self._config)
        if strict:
            result = self._check(candidate, partial)
            if not result.is_valid:
                raise ConfigValidationError(result)
        else:
            merge_config(candidate, _as_mapping(partial))
        self._config = candidate
        logger.info("crawl config updated: %s", ", ".join(sorted(_as_mapping(partial))))

    def validate(self, partial: Optional[ConfigInput] = None) -> ValidationResult:
        """Check ``partial`` merged onto the current tree without applying it."""
        return self._check(copy.deepcopy(self._config), partial)

    @staticmethod
    def _check(candidate: CrawlConfig, partial: Optional[ConfigInput]) -> ValidationResult:
        try:
            if partial:
                merge_config(candidate, _as_mapping(partial))
        except (KeyError, TypeError) as exc:
            return ValidationResult(is_valid=False, errors=[str(exc.args[0])])
        errors = check_config(candidate)
        return ValidationResult(is_valid=not errors, errors=errors)

    def reset_to_default(self) -> None:
        self._config = CrawlConfig()
        logger.info("crawl config reset to defaults")

    @property
    def batch(self) -> BatchConfig:
        return copy.deepcopy(self._config.batch)

    @property
    def sources(self) -> SourcesConfig:
        return copy.deepcopy(self._config.sources)

    @property
    def fallback(self) -> FallbackConfig:
        return copy.deepcopy(self._config.fallback)

    @property
    def anti_detection(self) -> AntiDetectionConfig:
        return copy.deepcopy(self._config.anti_detection)

    @property
    def success_rate(self) -> SuccessRateConfig:
        return copy.deepcopy(self._config.success_rate)

    @property
    def performance_monitoring(self) -> PerformanceMonitoringConfig:
        return copy.deepcopy(self._config.performance_monitoring)

    def summary(self) -> str:
        c = self._config
        enabled = ", ".join(sorted(c.sources.enabled_names)) or "all registered"
        lines = [
            "Crawl configuration:",
            f"  - timeout: {c.timeout}ms",
            f"  - delay: {c.delay}ms",
            f"  - max retries: {c.max_retries}",
            f"  - batch size: {c.batch.initial_size} ({c.batch.min_size}-{c.batch.max_size})",
            f"  - max consecutive failures: {c.batch.max_consecutive_failures}",
            f"  - success rate target: {c.success_rate.target}%",
            f"  - enabled sources: {enabled}",
            f"  - real-time monitoring: {'on' if c.performance_monitoring.real_time else 'off'}",
            f"  - fallback: {'on' if c.fallback.enabled else 'off'}",
        ]
        return "\n".join(lines)
