"""
Typed error classes for omni-ignition.

Pre-execution errors (raised while building or planning, before any network
call) derive from `ModuleDefinitionError` or stand alone as
`UnknownArtifact` / `CyclicDependencyError` / `ReconciliationError`.
Execution errors are `UnresolvedDependencyError` (per node) and the aggregate
`DeploymentFailed` / `DeploymentCancelled` surfaced to the caller. Everything
derives from `IgnitionError` so callers can catch the whole family.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

__all__ = [
    "IgnitionError",
    "UnknownArtifact",
    "ModuleDefinitionError",
    "DanglingReferenceError",
    "CyclicDependencyError",
    "ReconciliationError",
    "UnresolvedDependencyError",
    "DeploymentFailed",
    "DeploymentCancelled",
    "JournalError",
    "NetworkError",
    "RpcTransportError",
    "RpcResponseError",
]


class IgnitionError(Exception):
    """Base class for all omni-ignition errors."""


@dataclass(eq=False)
class UnknownArtifact(IgnitionError):
    """Raised when no compiled artifact exists for a contract name."""

    contract_id: str
    searched: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f" (searched {self.searched})" if self.searched else ""
        return f"UnknownArtifact: no compiled artifact for {self.contract_id!r}{where}"


@dataclass(eq=False)
class ModuleDefinitionError(IgnitionError):
    """The module definition is structurally invalid."""

    message: str
    module: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        prefix = f"[{self.module}] " if self.module else ""
        return f"{prefix}{self.message}"


@dataclass(eq=False)
class DanglingReferenceError(ModuleDefinitionError):
    """
    An argument, call target or `after` entry names a node that no intent in the
    module declares (or names the intent itself).
    """

    name: str = ""
    referenced_by: Optional[str] = None

    def __str__(self) -> str:
        by = f" (referenced by {self.referenced_by})" if self.referenced_by else ""
        prefix = f"[{self.module}] " if self.module else ""
        return f"{prefix}DanglingReferenceError: {self.name!r}{by}: {self.message}"


@dataclass(eq=False)
class CyclicDependencyError(IgnitionError):
    """The dependency graph contains at least one cycle."""

    node_ids: List[str]

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        return "CyclicDependencyError: cycle among " + ", ".join(self.node_ids)


@dataclass(eq=False)
class ReconciliationError(IgnitionError):
    """
    The journal holds confirmed or in-flight state for nodes whose definition
    changed since it was recorded.
    """

    node_ids: List[str]

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        return (
            "ReconciliationError: module changed for already executed nodes: "
            + ", ".join(self.node_ids)
        )


@dataclass(eq=False)
class UnresolvedDependencyError(IgnitionError):
    """A node's argument could not be resolved from confirmed journal state."""

    node_id: str
    dependency: str
    reason: str = "dependency is not confirmed"

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        return f"UnresolvedDependencyError: {self.node_id} needs {self.dependency}: {self.reason}"


@dataclass(eq=False)
class DeploymentFailed(IgnitionError):
    """
    Aggregate error for a run that stopped at `batch_index`.

    Fields:
      - failed: ids that ended Failed in the terminating batch (declaration order)
      - errors: node id -> recorded error message
      - pending: ids left Submitted-but-unconfirmed or in an ambiguous state
      - unresolved: not-yet-run node id -> UnresolvedDependencyError
    """

    batch_index: int
    failed: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    pending: List[str] = field(default_factory=list)
    unresolved: Dict[str, UnresolvedDependencyError] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        bits = [f"DeploymentFailed at batch {self.batch_index}"]
        if self.failed:
            bits.append(
                "failed: "
                + "; ".join(f"{nid} ({self.errors.get(nid, 'unknown error')})" for nid in self.failed)
            )
        if self.pending:
            bits.append("pending: " + ", ".join(self.pending))
        if self.unresolved:
            bits.append("blocked: " + ", ".join(self.unresolved))
        return " | ".join(bits)


@dataclass(eq=False)
class DeploymentCancelled(IgnitionError):
    """The run was cancelled; `skipped` nodes were never dispatched."""

    batch_index: int
    skipped: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        s = f"DeploymentCancelled at batch {self.batch_index}"
        if self.skipped:
            s += " | skipped: " + ", ".join(self.skipped)
        if self.pending:
            s += " | pending: " + ", ".join(self.pending)
        return s


@dataclass(eq=False)
class JournalError(IgnitionError):
    """The persisted journal could not be read or written."""

    message: str
    path: Optional[str] = None

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f" ({self.path})" if self.path else ""
        return f"JournalError{where}: {self.message}"


class NetworkError(IgnitionError):
    """Base class for network collaborator errors."""


class RpcTransportError(NetworkError):
    """Network/HTTP transport-level error."""


class RpcResponseError(NetworkError):
    """JSON-RPC error object returned from the node."""

    def __init__(self, code: int, message: str, data: object = None, method: Optional[str] = None):
        super().__init__(f"RPC[{method or '-'}] error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data
        self.method = method
