"""
State journal: durable per-node execution records.

Backends:
- MemoryJournal    (tests)
- JsonFileJournal  (default; one atomic JSON file per deployment)
- SqliteJournal    (WAL-mode SQLite database per deployment)
"""

from .fs import JsonFileJournal
from .memory import MemoryJournal
from .records import ExecutionRecord, Journal, Status
from .sqlite import SqliteJournal

__all__ = [
    "ExecutionRecord",
    "Journal",
    "Status",
    "MemoryJournal",
    "JsonFileJournal",
    "SqliteJournal",
]
