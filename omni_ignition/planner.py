"""
Execution planning: layer the dependency graph into ordered batches.

Batch k holds every node whose dependencies all live in batches < k (Kahn's
algorithm, one layer at a time). Inside a batch nodes are ordered by their
declaration position in the module, so the plan for a given module is always
the same.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple

from .errors import CyclicDependencyError
from .graph import Graph


@dataclass(frozen=True)
class ExecutionPlan:
    batches: Tuple[Tuple[str, ...], ...]
    graph: Optional[Graph] = field(default=None, compare=False, repr=False)

    def __iter__(self) -> Iterator[Tuple[str, ...]]:
        return iter(self.batches)

    def __len__(self) -> int:
        return len(self.batches)

    @property
    def node_ids(self) -> List[str]:
        return [nid for batch in self.batches for nid in batch]

    def batch_of(self, node_id: str) -> int:
        for i, batch in enumerate(self.batches):
            if node_id in batch:
                return i
        raise KeyError(node_id)

    def to_list(self) -> List[List[str]]:
        return [list(b) for b in self.batches]


def _cycle_members(graph: Graph, remaining: Set[str]) -> List[str]:
    # Kahn leaves cycle members plus everything downstream of them. A node is
    # on a cycle iff its strongly connected component has more than one
    # member or it depends on itself (iterative Tarjan over `remaining`).
    index: Dict[str, int] = {}
    low: Dict[str, int] = {}
    stack: List[str] = []
    on_stack: Set[str] = set()
    members: Set[str] = set()

    def successors(nid: str) -> List[str]:
        return sorted(graph.dependents(nid) & remaining)

    for root in sorted(remaining):
        if root in index:
            continue
        work = [(root, iter(successors(root)))]
        index[root] = low[root] = len(index)
        stack.append(root)
        on_stack.add(root)
        while work:
            nid, it = work[-1]
            for succ in it:
                if succ not in index:
                    index[succ] = low[succ] = len(index)
                    stack.append(succ)
                    on_stack.add(succ)
                    work.append((succ, iter(successors(succ))))
                    break
                if succ in on_stack:
                    low[nid] = min(low[nid], index[succ])
            else:
                work.pop()
                if work:
                    parent = work[-1][0]
                    low[parent] = min(low[parent], low[nid])
                if low[nid] == index[nid]:
                    component = []
                    while True:
                        top = stack.pop()
                        on_stack.discard(top)
                        component.append(top)
                        if top == nid:
                            break
                    if len(component) > 1 or nid in graph.dependencies(nid):
                        members.update(component)
    return sorted(members, key=lambda n: graph.nodes[n].index)


def plan(graph: Graph) -> ExecutionPlan:
    """
    Produce the batch plan for `graph`.

    Raises CyclicDependencyError naming the nodes on the cycle(s) if the graph
    is not acyclic.
    """
    indegree: Dict[str, int] = {nid: len(graph.dependencies(nid)) for nid in graph.nodes}
    order = {nid: node.index for nid, node in graph.nodes.items()}

    ready = sorted((nid for nid, deg in indegree.items() if deg == 0), key=order.__getitem__)
    batches: List[Tuple[str, ...]] = []
    placed = 0
    while ready:
        batches.append(tuple(ready))
        placed += len(ready)
        nxt: List[str] = []
        for nid in ready:
            for succ in graph.dependents(nid):
                indegree[succ] -= 1
                if indegree[succ] == 0:
                    nxt.append(succ)
        ready = sorted(nxt, key=order.__getitem__)

    if placed != len(graph.nodes):
        remaining = {nid for nid, deg in indegree.items() if deg > 0}
        raise CyclicDependencyError(_cycle_members(graph, remaining))

    return ExecutionPlan(tuple(batches), graph)


__all__ = ["ExecutionPlan", "plan"]
