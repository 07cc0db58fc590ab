"""In-process journal, for tests and dry runs. Nothing survives the process."""

from __future__ import annotations

import threading
from typing import Dict, Optional

from .records import ExecutionRecord, _check_key


class MemoryJournal:
    def __init__(self) -> None:
        self._records: Dict[str, ExecutionRecord] = {}
        self._lock = threading.Lock()
        self.writes = 0

    def get(self, node_id: str) -> Optional[ExecutionRecord]:
        with self._lock:
            return self._records.get(node_id)

    def put(self, node_id: str, record: ExecutionRecord) -> None:
        _check_key(node_id, record)
        with self._lock:
            self._records[node_id] = record
            self.writes += 1

    def records(self) -> Dict[str, ExecutionRecord]:
        with self._lock:
            return dict(self._records)

    def delete(self, node_id: str) -> bool:
        with self._lock:
            return self._records.pop(node_id, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def close(self) -> None:
        pass


__all__ = ["MemoryJournal"]
