from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from .errors import BlockedError, StrategyExecutionError
from .models import AnyRecord, Query


class Strategy(ABC):
    """A named, prioritized data source tried by the orchestrator.

    Lower priority values are tried first. ``execute`` may raise; retries
    are handled by the caller, not by the strategy."""

    def __init__(self, name: str, priority: int) -> None:
        if not name:
            raise ValueError("strategy name is required")
        self.name = name
        self.priority = priority

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def execute(self, query: Query) -> Optional[AnyRecord]:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class FunctionStrategy(Strategy):
    """Adapts a plain coroutine function to the Strategy contract."""

    def __init__(
        self,
        name: str,
        priority: int,
        func: Callable[[Query], Awaitable[Optional[AnyRecord]]],
        available: Optional[Callable[[], bool]] = None,
    ) -> None:
        super().__init__(name, priority)
        self._func = func
        self._available = available

    def is_available(self) -> bool:
        return self._available() if self._available else True

    async def execute(self, query: Query) -> Optional[AnyRecord]:
        return await self._func(query)


class HttpStrategy(Strategy):
    """Template for HTTP-backed sources: validate, fetch, check status, parse.

    Any 2xx status is a success. A 403 raises BlockedError and parks the
    source for ``block_cooldown_secs``; other statuses raise
    StrategyExecutionError carrying the code."""

    def __init__(self, name: str, priority: int, block_cooldown_secs: float = 0.0) -> None:
        super().__init__(name, priority)
        self._block_cooldown = block_cooldown_secs
        self._blocked_until = 0.0

    def is_available(self) -> bool:
        return self._now() >= self._blocked_until

    async def execute(self, query: Query) -> Optional[AnyRecord]:
        self.validate(query)
        response = await self.fetch(query)
        status_code = getattr(response, "status_code", None)
        if status_code == 403:
            self._blocked_until = self._now() + self._block_cooldown
            raise BlockedError(self.name)
        if status_code is None or not 200 <= int(status_code) < 300:
            raise StrategyExecutionError(self.name, f"HTTP {status_code}", status_code=status_code)
        return self.parse(response, query)

    def validate(self, query: Query) -> None:
        if not query.name or not query.name.strip():
            raise ValueError("query.name is required")

    @abstractmethod
    async def fetch(self, query: Query) -> Any:
        ...

    @abstractmethod
    def parse(self, response: Any, query: Query) -> Optional[AnyRecord]:
        ...

    @staticmethod
    def _now() -> float:
        return time.monotonic()
