"""
omni_ignition.graph
===================

Dependency graph construction (phase two of module building).

`build_graph(module, resolver, parameters)` turns the collected intents into
nodes with deterministic ids and wires an edge producer -> consumer for:

- every FutureRef found (recursively) in constructor / call arguments,
- the target of every call,
- every `after=` entry.

Node ids are ``"<Module>#<local name>"``: the declared name for deploy and
contract-at intents, ``"<Target>.<method>"`` for calls (``_1``, ``_2``, ...
appended for repeated calls, by declaration position) unless the call carries
an explicit ``id``. Ids only depend on the module text, so re-running an
unchanged module lines up with the journal written by a previous run.

The builder never talks to the network. It consults the artifact resolver to
fail fast on unknown contract names and fingerprints every node (definition +
bytecode hash) so the engine can detect a changed module on resume.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple, Union

from .artifacts import ArtifactResolver
from .errors import DanglingReferenceError, ModuleDefinitionError
from .module import (
    AccountRef,
    CallIntent,
    ContractAtIntent,
    DeployIntent,
    FutureRef,
    Module,
    ParameterRef,
    default_call_name,
)
from .utils import sha3_256_hex


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NodeRef:
    """A resolved reference to the output (address) of node `node_id`."""

    node_id: str


@dataclass(frozen=True)
class DeployNode:
    id: str
    name: str
    contract_id: str
    args: Tuple[Any, ...] = ()
    index: int = 0
    fingerprint: str = ""
    kind: str = field(default="deploy", init=False)


@dataclass(frozen=True)
class CallNode:
    id: str
    name: str
    target_id: str
    method: str
    args: Tuple[Any, ...] = ()
    index: int = 0
    fingerprint: str = ""
    kind: str = field(default="call", init=False)


@dataclass(frozen=True)
class ContractAtNode:
    id: str
    name: str
    contract_id: str
    address: str
    index: int = 0
    fingerprint: str = ""
    kind: str = field(default="contractAt", init=False)


Node = Union[DeployNode, CallNode, ContractAtNode]


# ---------------------------------------------------------------------------
# Graph
# ---------------------------------------------------------------------------


class Graph:
    """Nodes in declaration order plus producer -> consumer edges."""

    def __init__(self, module: str):
        self.module = module
        self.nodes: Dict[str, Node] = {}
        self._succ: Dict[str, Set[str]] = {}
        self._pred: Dict[str, Set[str]] = {}

    def add_node(self, node: Node) -> None:
        if node.id in self.nodes:
            raise ModuleDefinitionError(f"duplicate node id {node.id!r}", self.module)
        self.nodes[node.id] = node
        self._succ.setdefault(node.id, set())
        self._pred.setdefault(node.id, set())

    def add_edge(self, producer: str, consumer: str) -> None:
        for nid in (producer, consumer):
            if nid not in self.nodes:
                raise KeyError(f"unknown node {nid!r}")
        self._succ[producer].add(consumer)
        self._pred[consumer].add(producer)

    def dependencies(self, node_id: str) -> Set[str]:
        return set(self._pred[node_id])

    def dependents(self, node_id: str) -> Set[str]:
        return set(self._succ[node_id])

    def edges(self) -> List[Tuple[str, str]]:
        return [(src, dst) for src in self.nodes for dst in sorted(self._succ[src])]

    def transitive_dependents(self, node_ids: Iterable[str]) -> Set[str]:
        """Every node reachable from `node_ids` (excluding the start nodes themselves)."""
        seen: Set[str] = set()
        stack = list(node_ids)
        while stack:
            for nxt in self._succ.get(stack.pop(), ()):
                if nxt not in seen:
                    seen.add(nxt)
                    stack.append(nxt)
        return seen

    def __contains__(self, node_id: object) -> bool:
        return node_id in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(self.nodes.values())


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


def _jsonable(value: Any) -> Any:
    if isinstance(value, NodeRef):
        return {"$node": value.node_id}
    if isinstance(value, AccountRef):
        return {"$account": value.index}
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, float) and not math.isfinite(value):
        raise ModuleDefinitionError(f"non-finite number {value!r} is not a valid argument")
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def fingerprint(definition: Mapping[str, Any]) -> str:
    return sha3_256_hex(_jsonable(definition))


@dataclass
class _Declared:
    local: str
    node_id: str
    intent: Union[DeployIntent, CallIntent, ContractAtIntent]
    index: int


class _GraphBuilder:
    def __init__(
        self,
        module: Module,
        resolver: ArtifactResolver,
        parameters: Optional[Mapping[str, Any]],
    ):
        self.module = module
        self.resolver = resolver
        self.parameters = dict(parameters or {})
        self.graph = Graph(module.name)
        self.declared: Dict[str, _Declared] = {}

    def _node_id(self, local: str) -> str:
        return f"{self.module.name}#{local}"

    # -- phase one: names -------------------------------------------------

    def collect(self) -> None:
        call_counts: Dict[Tuple[str, str], int] = {}
        for index, intent in enumerate(self.module.intents):
            if isinstance(intent, CallIntent):
                if intent.id:
                    local = intent.id
                else:
                    key = (intent.target.name, intent.method)
                    occurrence = call_counts.get(key, 0)
                    call_counts[key] = occurrence + 1
                    local = default_call_name(intent.target.name, intent.method, occurrence)
            else:
                local = intent.name
            if not local or "#" in local:
                raise ModuleDefinitionError(f"invalid intent name {local!r}", self.module.name)
            if local in self.declared:
                raise ModuleDefinitionError(
                    f"duplicate intent name {local!r}; pass an explicit id", self.module.name
                )
            self.declared[local] = _Declared(local, self._node_id(local), intent, index)

    # -- phase two: references ---------------------------------------------

    def _lookup(self, name: str, consumer: _Declared, *, needs_address: bool) -> _Declared:
        if name == consumer.local:
            raise DanglingReferenceError(
                message="an intent cannot reference itself",
                module=self.module.name,
                name=name,
                referenced_by=consumer.node_id,
            )
        producer = self.declared.get(name)
        if producer is None:
            raise DanglingReferenceError(
                message="no intent with this name is declared in the module",
                module=self.module.name,
                name=name,
                referenced_by=consumer.node_id,
            )
        if needs_address and isinstance(producer.intent, CallIntent):
            raise ModuleDefinitionError(
                f"{consumer.node_id} uses call {producer.node_id} as a value; calls produce no address",
                self.module.name,
            )
        return producer

    def _resolve_arg(self, value: Any, consumer: _Declared, deps: Set[str]) -> Any:
        if isinstance(value, FutureRef):
            producer = self._lookup(value.name, consumer, needs_address=True)
            deps.add(producer.node_id)
            return NodeRef(producer.node_id)
        if isinstance(value, ParameterRef):
            if value.name in self.parameters:
                return self.parameters[value.name]
            if value.has_default:
                return value.default
            raise ModuleDefinitionError(
                f"missing value for parameter {value.name!r} (used by {consumer.node_id})",
                self.module.name,
            )
        if isinstance(value, AccountRef):
            return value
        if isinstance(value, (list, tuple)):
            resolved = [self._resolve_arg(v, consumer, deps) for v in value]
            return tuple(resolved) if isinstance(value, tuple) else resolved
        if isinstance(value, Mapping):
            return {k: self._resolve_arg(v, consumer, deps) for k, v in value.items()}
        return value

    def _after(self, decl: _Declared, deps: Set[str]) -> None:
        for ref in decl.intent.after:  # type: ignore[union-attr]
            deps.add(self._lookup(ref.name, decl, needs_address=False).node_id)

    def resolve(self) -> Graph:
        edges: List[Tuple[str, Set[str]]] = []
        for decl in self.declared.values():
            intent = decl.intent
            deps: Set[str] = set()

            if isinstance(intent, DeployIntent):
                artifact = self.resolver.resolve(intent.contract_id)
                args = tuple(self._resolve_arg(a, decl, deps) for a in intent.args)
                self._after(decl, deps)
                node = DeployNode(
                    id=decl.node_id,
                    name=decl.local,
                    contract_id=intent.contract_id,
                    args=args,
                    index=decl.index,
                    fingerprint=fingerprint(
                        {
                            "kind": "deploy",
                            "contract": intent.contract_id,
                            "bytecode": artifact.bytecode_hash,
                            "args": args,
                        }
                    ),
                )

            elif isinstance(intent, CallIntent):
                target = self._lookup(intent.target.name, decl, needs_address=True)
                deps.add(target.node_id)
                target_artifact = self.resolver.resolve(target.intent.contract_id)  # type: ignore[union-attr]
                if target_artifact.abi and not target_artifact.has_function(intent.method):
                    raise ModuleDefinitionError(
                        f"{decl.node_id}: contract {target_artifact.contract_id!r} has no function {intent.method!r}",
                        self.module.name,
                    )
                args = tuple(self._resolve_arg(a, decl, deps) for a in intent.args)
                self._after(decl, deps)
                node = CallNode(
                    id=decl.node_id,
                    name=decl.local,
                    target_id=target.node_id,
                    method=intent.method,
                    args=args,
                    index=decl.index,
                    fingerprint=fingerprint(
                        {"kind": "call", "target": target.node_id, "method": intent.method, "args": args}
                    ),
                )

            else:
                self.resolver.resolve(intent.contract_id)
                address = self._resolve_arg(intent.address, decl, deps)
                if deps or not isinstance(address, str) or not address:
                    raise ModuleDefinitionError(
                        f"{decl.node_id}: contractAt needs a literal or parameter address, got {intent.address!r}",
                        self.module.name,
                    )
                node = ContractAtNode(
                    id=decl.node_id,
                    name=decl.local,
                    contract_id=intent.contract_id,
                    address=address,
                    index=decl.index,
                    fingerprint=fingerprint(
                        {"kind": "contractAt", "contract": intent.contract_id, "address": address}
                    ),
                )

            self.graph.add_node(node)
            edges.append((decl.node_id, deps))

        for consumer, producers in edges:
            for producer in producers:
                self.graph.add_edge(producer, consumer)
        return self.graph


def build_graph(
    module: Module,
    resolver: ArtifactResolver,
    parameters: Optional[Mapping[str, Any]] = None,
) -> Graph:
    """
    Build the dependency graph for `module`.

    Raises ModuleDefinitionError / DanglingReferenceError for invalid modules and
    UnknownArtifact for contract names the resolver does not know. Cycles are
    left in the graph; the planner rejects them.
    """
    builder = _GraphBuilder(module, resolver, parameters)
    builder.collect()
    return builder.resolve()


__all__ = [
    "NodeRef",
    "DeployNode",
    "CallNode",
    "ContractAtNode",
    "Node",
    "Graph",
    "fingerprint",
    "build_graph",
]
