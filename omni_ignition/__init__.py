"""
omni-ignition: declarative, resumable smart-contract deployments.

    from omni_ignition import build_module, build_graph, plan, ExecutionEngine

A module (intents) becomes a dependency graph, the graph becomes ordered
batches, and the engine executes the batches against a network while a
journal records every node so an interrupted run can resume.
"""

from .artifacts import Artifact, DirectoryArtifactResolver, StaticArtifactResolver
from .deploy import deploy, load_parameters, open_journal, write_deployed_addresses
from .engine import DeploymentResult, ExecutionEngine
from .errors import (
    CyclicDependencyError,
    DanglingReferenceError,
    DeploymentCancelled,
    DeploymentFailed,
    IgnitionError,
    JournalError,
    ModuleDefinitionError,
    ReconciliationError,
    UnknownArtifact,
    UnresolvedDependencyError,
)
from .graph import Graph, build_graph
from .journal import ExecutionRecord, JsonFileJournal, MemoryJournal, SqliteJournal, Status
from .module import Module, ModuleBuilder, build_module, load_module
from .network import InMemoryNetwork, JsonRpcNetwork, Receipt, TransactionRequest
from .planner import ExecutionPlan, plan
from .version import __version__

__all__ = [
    "__version__",
    "Artifact",
    "StaticArtifactResolver",
    "DirectoryArtifactResolver",
    "Module",
    "ModuleBuilder",
    "build_module",
    "load_module",
    "Graph",
    "build_graph",
    "ExecutionPlan",
    "plan",
    "ExecutionEngine",
    "DeploymentResult",
    "ExecutionRecord",
    "Status",
    "MemoryJournal",
    "JsonFileJournal",
    "SqliteJournal",
    "InMemoryNetwork",
    "JsonRpcNetwork",
    "Receipt",
    "TransactionRequest",
    "deploy",
    "open_journal",
    "load_parameters",
    "write_deployed_addresses",
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
]
