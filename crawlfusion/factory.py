from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping

from .adapters import JsonApiStrategy
from .base import Strategy


class StrategyFactory:
    """Builds source adapters from configuration mappings.

    Instances are cached by name, so building the same endpoint list twice
    yields the same objects and their block cooldowns are shared. An
    optional ``session`` is handed to every adapter that gets created.
    """

    def __init__(self, session: Any = None) -> None:
        self._session = session
        self._cache: Dict[str, Strategy] = {}

    def create(self, entry: Mapping[str, Any]) -> Strategy:
        name = entry.get("name")
        if not name:
            raise ValueError("endpoint entry requires a name")
        if name in self._cache:
            return self._cache[name]

        options = dict(entry)
        kind = options.pop("type", "json_api")
        options.pop("name")
        priority = int(options.pop("priority", len(self._cache)))

        if kind == "json_api":
            if "url" not in options:
                raise ValueError(f"strategy {name} requires a url")
            strategy: Strategy = JsonApiStrategy(name, priority, session=self._session, **options)
        else:
            raise ValueError(f"Unknown strategy type: {kind}")

        self._cache[name] = strategy
        return strategy

    def create_all(self, entries: Iterable[Mapping[str, Any]]) -> List[Strategy]:
        return [self.create(entry) for entry in entries]
