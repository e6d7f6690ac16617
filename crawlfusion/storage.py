from __future__ import annotations

import json
import logging
import queue
import threading
import time
from abc import ABC, abstractmethod
from typing import Optional

from .models import AnyRecord

logger = logging.getLogger(__name__)


class StorageBase(ABC):
    """Abstract base class for all record sinks.

    Subclasses must implement write() and close() to handle
    persistence of fused records.
    """

    @abstractmethod
    def write(self, record: AnyRecord) -> None:
        """Persist a single record."""

    @abstractmethod
    def close(self) -> None:
        """Flush pending writes and release resources."""


class JsonlStorage(StorageBase):
    """Stores records as JSON Lines (.jsonl) using a background writer thread."""

    def __init__(self, path: str, append: bool = False) -> None:
        self._path = path
        self._mode = "a" if append else "w"
        self._queue: queue.Queue[Optional[AnyRecord]] = queue.Queue()
        self._written = 0
        self._thread = threading.Thread(target=self._writer, daemon=True)
        self._thread.start()

    @property
    def written(self) -> int:
        return self._written

    def write(self, record: AnyRecord) -> None:
        """Enqueue a record for background writing."""
        self._queue.put(record)

    def close(self) -> None:
        """Signal the writer thread to flush and stop."""
        self._queue.put(None)
        self._thread.join(timeout=5)

    def __enter__(self) -> "JsonlStorage":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _writer(self) -> None:
        with open(self._path, self._mode, encoding="utf-8") as f:
            while True:
                item = self._queue.get()
                if item is None:
                    break
                try:
                    line = dict(item.to_dict(), written_at=time.time())
                    f.write(json.dumps(line, ensure_ascii=False) + "\n")
                    f.flush()
                    self._written += 1
                except (TypeError, ValueError) as exc:
                    logger.error("could not serialize %r: %s", item, exc)
