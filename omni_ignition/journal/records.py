"""
Execution records and the journal interface.

One record per node id. The engine is the only writer and writes a record
*before* the action it describes (attempts bump before submit, tx hash right
after submit), so whatever a crash leaves behind is enough to decide on the
next run whether a node is done, in flight, or needs attention.

Status lifecycle:

    pending -> submitted -> confirmed
        \\          \\
         `-> failed  `-> failed

A `pending` record with ``attempts > 0`` and no ``tx_hash`` means a previous
run crashed between bumping the attempt counter and learning the tx hash.
Whether that transaction reached the network is unknown; the engine refuses to
guess and reports the node as pending until it is wiped.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol

from ..errors import JournalError


class Status(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def _now() -> float:
    return round(time.time(), 3)


@dataclass(frozen=True)
class ExecutionRecord:
    node_id: str
    status: Status = Status.PENDING
    # Contract address (deploy / contractAt) or receipt summary dict (call)
    result: Any = None
    error: Optional[str] = None
    tx_hash: Optional[str] = None
    fingerprint: Optional[str] = None
    attempts: int = 0
    updated_at: float = 0.0

    @property
    def is_ambiguous(self) -> bool:
        return self.status is Status.PENDING and self.attempts > 0 and not self.tx_hash

    def evolve(self, **changes: Any) -> "ExecutionRecord":
        """Copy with `changes` applied and `updated_at` refreshed."""
        changes.setdefault("updated_at", _now())
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionRecord":
        try:
            return cls(
                node_id=str(data["node_id"]),
                status=Status(data.get("status", Status.PENDING.value)),
                result=data.get("result"),
                error=data.get("error"),
                tx_hash=data.get("tx_hash"),
                fingerprint=data.get("fingerprint"),
                attempts=int(data.get("attempts", 0)),
                updated_at=float(data.get("updated_at", 0.0)),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise JournalError(f"malformed execution record {dict(data)!r}: {exc}") from exc


def _check_key(node_id: str, record: ExecutionRecord) -> None:
    if node_id != record.node_id:
        raise JournalError(f"record for {record.node_id!r} stored under key {node_id!r}")


class Journal(Protocol):
    """Durable map node id -> ExecutionRecord. `put` returns only once persisted."""

    def get(self, node_id: str) -> Optional[ExecutionRecord]: ...

    def put(self, node_id: str, record: ExecutionRecord) -> None: ...

    def records(self) -> Dict[str, ExecutionRecord]: ...

    def delete(self, node_id: str) -> bool: ...

    def clear(self) -> None: ...

    def close(self) -> None: ...


__all__ = ["Status", "ExecutionRecord", "Journal"]
