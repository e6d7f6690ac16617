from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .config import ValidationResult


class CrawlFusionError(Exception):
    """Base class for errors raised by the crawl engine."""


class ConfigValidationError(CrawlFusionError):
    """A strict configuration update was rejected.

    The full ValidationResult is kept on the exception so callers can
    inspect every error instead of only the first one."""

    def __init__(self, result: "ValidationResult") -> None:
        self.result = result
        super().__init__("; ".join(result.errors) or "invalid configuration")

    @property
    def errors(self) -> list[str]:
        return list(self.result.errors)


class StrategyExecutionError(CrawlFusionError):
    """A single strategy failed to produce a record."""

    def __init__(self, strategy: str, message: str, status_code: Optional[int] = None) -> None:
        self.strategy = strategy
        self.status_code = status_code
        super().__init__(f"[{strategy}] {message}")


class BlockedError(StrategyExecutionError):
    """The source actively rejected the request (HTTP 403)."""

    def __init__(self, strategy: str, message: str = "HTTP 403 Forbidden") -> None:
        super().__init__(strategy, message, status_code=403)


class InvalidRecordError(StrategyExecutionError):
    """A strategy returned something that is not a record."""
