"""
JSON-file journal.

Layout (one file per deployment directory):

    <deployments_dir>/<deployment_id>/journal.json
        {"version": 1, "records": {"<node id>": {...}, ...}}

Every `put` rewrites the file through tmp -> fsync -> os.replace, so a reader
(or a crashed writer's successor) sees either the previous or the new
complete journal, never a torn one.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Optional, Union

from ..errors import JournalError
from ..utils import atomic_write_text, ensure_dir
from .records import ExecutionRecord, _check_key

JOURNAL_FILENAME = "journal.json"
JOURNAL_VERSION = 1


class JsonFileJournal:
    def __init__(self, directory: Union[str, Path]):
        self.directory = ensure_dir(directory)
        self.path = self.directory / JOURNAL_FILENAME
        self._lock = threading.Lock()
        self._records: Dict[str, ExecutionRecord] = self._load()

    def _load(self) -> Dict[str, ExecutionRecord]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise JournalError(f"cannot read journal: {exc}", str(self.path)) from exc
        if not isinstance(data, dict) or not isinstance(data.get("records"), dict):
            raise JournalError("journal file has no 'records' object", str(self.path))
        version = data.get("version", JOURNAL_VERSION)
        if version != JOURNAL_VERSION:
            raise JournalError(f"unsupported journal version {version!r}", str(self.path))
        return {
            nid: ExecutionRecord.from_dict({**raw, "node_id": nid})
            for nid, raw in data["records"].items()
        }

    def _flush(self) -> None:
        payload = {
            "version": JOURNAL_VERSION,
            "records": {nid: rec.to_dict() for nid, rec in self._records.items()},
        }
        try:
            atomic_write_text(self.path, json.dumps(payload, indent=2, sort_keys=True) + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise JournalError(f"cannot write journal: {exc}", str(self.path)) from exc

    def get(self, node_id: str) -> Optional[ExecutionRecord]:
        with self._lock:
            return self._records.get(node_id)

    def put(self, node_id: str, record: ExecutionRecord) -> None:
        _check_key(node_id, record)
        with self._lock:
            previous = self._records.get(node_id)
            self._records[node_id] = record
            try:
                self._flush()
            except JournalError:
                # keep memory in step with disk
                if previous is None:
                    self._records.pop(node_id, None)
                else:
                    self._records[node_id] = previous
                raise

    def records(self) -> Dict[str, ExecutionRecord]:
        with self._lock:
            return dict(self._records)

    def delete(self, node_id: str) -> bool:
        with self._lock:
            if self._records.pop(node_id, None) is None:
                return False
            self._flush()
            return True

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._flush()

    def close(self) -> None:
        pass


__all__ = ["JsonFileJournal", "JOURNAL_FILENAME"]
