"""
SQLite-backed journal.

One table keyed by node id in ``<deployment dir>/journal.db``. The database is
opened in WAL mode with ``synchronous=FULL`` so a committed `put` survives a
crash; every write is its own transaction.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from ..errors import JournalError
from ..utils import ensure_dir
from .records import ExecutionRecord, _check_key

DB_FILENAME = "journal.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS execution_records (
    node_id     TEXT PRIMARY KEY,
    status      TEXT NOT NULL,
    result      TEXT,
    error       TEXT,
    tx_hash     TEXT,
    fingerprint TEXT,
    attempts    INTEGER NOT NULL DEFAULT 0,
    updated_at  REAL NOT NULL DEFAULT 0
);
"""


class SqliteJournal:
    def __init__(self, directory: Union[str, Path], filename: str = DB_FILENAME):
        self.directory = ensure_dir(directory)
        self.path = self.directory / filename
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(
                self.path.as_posix(),
                check_same_thread=False,  # guarded by self._lock
                isolation_level=None,     # autocommit; explicit transactions below
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=FULL;")
            self._conn.execute("PRAGMA busy_timeout=5000;")
            self._conn.executescript(SCHEMA)
        except sqlite3.Error as exc:
            raise JournalError(f"cannot open journal database: {exc}", str(self.path)) from exc

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN;")
                yield self._conn
                self._conn.execute("COMMIT;")
            except Exception as exc:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK;")
                if isinstance(exc, sqlite3.Error):
                    raise JournalError(f"journal write failed: {exc}", str(self.path)) from exc
                raise

    @staticmethod
    def _from_row(row: sqlite3.Row) -> ExecutionRecord:
        result = row["result"]
        return ExecutionRecord.from_dict(
            {
                "node_id": row["node_id"],
                "status": row["status"],
                "result": json.loads(result) if result is not None else None,
                "error": row["error"],
                "tx_hash": row["tx_hash"],
                "fingerprint": row["fingerprint"],
                "attempts": row["attempts"],
                "updated_at": row["updated_at"],
            }
        )

    def get(self, node_id: str) -> Optional[ExecutionRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM execution_records WHERE node_id = ?", (node_id,)
            ).fetchone()
        return self._from_row(row) if row is not None else None

    def put(self, node_id: str, record: ExecutionRecord) -> None:
        _check_key(node_id, record)
        result = json.dumps(record.result, sort_keys=True) if record.result is not None else None
        with self._transaction() as db:
            db.execute(
                """
                INSERT INTO execution_records
                    (node_id, status, result, error, tx_hash, fingerprint, attempts, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(node_id) DO UPDATE SET
                    status = excluded.status,
                    result = excluded.result,
                    error = excluded.error,
                    tx_hash = excluded.tx_hash,
                    fingerprint = excluded.fingerprint,
                    attempts = excluded.attempts,
                    updated_at = excluded.updated_at
                """,
                (
                    record.node_id,
                    record.status.value,
                    result,
                    record.error,
                    record.tx_hash,
                    record.fingerprint,
                    record.attempts,
                    record.updated_at,
                ),
            )

    def records(self) -> Dict[str, ExecutionRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM execution_records ORDER BY rowid"
            ).fetchall()
        return {row["node_id"]: self._from_row(row) for row in rows}

    def delete(self, node_id: str) -> bool:
        with self._transaction() as db:
            cur = db.execute("DELETE FROM execution_records WHERE node_id = ?", (node_id,))
            return cur.rowcount > 0

    def clear(self) -> None:
        with self._transaction() as db:
            db.execute("DELETE FROM execution_records")

    def close(self) -> None:
        with self._lock:
            self._conn.close()


__all__ = ["SqliteJournal", "DB_FILENAME"]
