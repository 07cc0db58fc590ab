"""
omni_ignition.engine
====================

Batch-by-batch execution of a plan against a network, with every state
transition written to the journal before the engine moves on.

Per node (all nodes of a batch run concurrently, bounded by a semaphore):

    confirmed                      -> skip
    submitted + tx hash            -> await the existing receipt, never resubmit
    pending, attempts > 0, no hash -> ambiguous: report pending, wait for `wipe`
    otherwise                      -> resolve args from confirmed records,
                                      bump attempts, submit, record tx hash,
                                      await receipt (bounded)

A transport error while submitting leaves the record Pending with its attempt
counted and no hash (ambiguous); any other submission error marks it Failed.

ContractAt nodes confirm with their fixed address and send nothing.

The whole batch is joined before anything else happens. If a node of the batch
ended failed, pending (receipt timed out) or blocked (arguments unresolved),
the run stops with `DeploymentFailed`; every later node depending on those
gets an `UnresolvedDependencyError` in the report and is never submitted.
Confirmed records are always left in place, so re-running the same module
against the same journal resumes where this run stopped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional

from .artifacts import ArtifactResolver
from .errors import (
    DeploymentCancelled,
    DeploymentFailed,
    NetworkError,
    ReconciliationError,
    RpcTransportError,
    UnresolvedDependencyError,
)
from .graph import CallNode, ContractAtNode, DeployNode, Graph, Node, NodeRef
from .journal import ExecutionRecord, Journal, Status
from .logging import get_logger
from .module import AccountRef
from .network import Network, TransactionRequest
from .planner import ExecutionPlan

log = get_logger(__name__)

# Node outcomes after a batch
CONFIRMED = "confirmed"
FAILED = "failed"
PENDING = "pending"
BLOCKED = "blocked"
SKIPPED = "skipped"


class DeploymentResult(Mapping[str, str]):
    """
    Declared name -> address for every confirmed deploy / contractAt node.

    `by_node_id` carries the same addresses under full node ids
    ("Module#Name"), the keys used in ``deployed_addresses.json``.
    """

    def __init__(self, addresses: Mapping[str, str], by_node_id: Mapping[str, str]):
        self._addresses = dict(addresses)
        self.by_node_id: Dict[str, str] = dict(by_node_id)

    @classmethod
    def from_journal(cls, graph: Graph, journal: Journal) -> "DeploymentResult":
        addresses: Dict[str, str] = {}
        by_node_id: Dict[str, str] = {}
        for node in graph:
            if isinstance(node, CallNode):
                continue
            rec = journal.get(node.id)
            if rec is not None and rec.status is Status.CONFIRMED and isinstance(rec.result, str):
                addresses[node.name] = rec.result
                by_node_id[node.id] = rec.result
        return cls(addresses, by_node_id)

    def __getitem__(self, name: str) -> str:
        return self._addresses[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._addresses)

    def __len__(self) -> int:
        return len(self._addresses)

    def __repr__(self) -> str:
        return f"DeploymentResult({self._addresses!r})"


@dataclass
class _Outcome:
    node_id: str
    state: str
    error: Optional[str] = None
    unresolved: Optional[UnresolvedDependencyError] = None


class ExecutionEngine:
    def __init__(
        self,
        network: Network,
        journal: Journal,
        resolver: ArtifactResolver,
        *,
        confirm_timeout_s: float = 120.0,
        max_concurrency: int = 4,
        sender_index: int = 0,
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.network = network
        self.journal = journal
        self.resolver = resolver
        self.confirm_timeout_s = confirm_timeout_s
        self.max_concurrency = max_concurrency
        self.sender_index = sender_index
        self._cancelled = False
        self._accounts: Optional[List[str]] = None
        self._accounts_lock: Optional[asyncio.Lock] = None

    # ---------- control ----------

    def cancel(self) -> None:
        """Stop dispatching new nodes; in-flight nodes keep awaiting their receipts."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # ---------- journal preparation ----------

    def reconcile(self, plan: ExecutionPlan) -> None:
        """
        Check journal records against the plan's fingerprints and create a
        Pending record for every node that has none. Touches no network.
        """
        graph = _graph_of(plan)
        changed: List[str] = []
        for nid in plan.node_ids:
            rec = self.journal.get(nid)
            if rec is None or not rec.fingerprint:
                continue
            if rec.fingerprint == graph.nodes[nid].fingerprint:
                continue
            if rec.status in (Status.CONFIRMED, Status.SUBMITTED) or rec.is_ambiguous:
                changed.append(nid)
        if changed:
            raise ReconciliationError(changed)

        for nid in plan.node_ids:
            node = graph.nodes[nid]
            rec = self.journal.get(nid)
            if rec is None:
                self.journal.put(nid, ExecutionRecord(node_id=nid, fingerprint=node.fingerprint).evolve())
            elif rec.fingerprint != node.fingerprint:
                # pending / failed node whose definition changed: retried with the new one
                self.journal.put(nid, rec.evolve(fingerprint=node.fingerprint))

    # ---------- run ----------

    async def run(self, plan: ExecutionPlan) -> DeploymentResult:
        graph = _graph_of(plan)
        self.reconcile(plan)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        for batch_index, batch in enumerate(plan):
            if self._cancelled:
                raise DeploymentCancelled(batch_index, skipped=self._unconfirmed(plan, batch_index))

            log.info("batch_started", batch=batch_index, size=len(batch), nodes=list(batch))
            results = await asyncio.gather(
                *(self._run_node(graph, graph.nodes[nid], semaphore) for nid in batch),
                return_exceptions=True,
            )
            outcomes: List[_Outcome] = []
            for res in results:
                if isinstance(res, BaseException):
                    raise res
                outcomes.append(res)

            failed = [o.node_id for o in outcomes if o.state == FAILED]
            pending = [o.node_id for o in outcomes if o.state == PENDING]
            blocked = {o.node_id: o.unresolved for o in outcomes if o.state == BLOCKED}
            skipped = [o.node_id for o in outcomes if o.state == SKIPPED]

            if failed or pending or blocked:
                unresolved: Dict[str, UnresolvedDependencyError] = {
                    nid: exc for nid, exc in blocked.items() if exc is not None
                }
                unresolved.update(self._blocked_dependents(graph, failed + pending + list(blocked)))
                err = DeploymentFailed(
                    batch_index=batch_index,
                    failed=failed,
                    errors={o.node_id: o.error or "unknown error" for o in outcomes if o.state == FAILED},
                    pending=pending,
                    unresolved=unresolved,
                )
                log.error(
                    "deployment_failed",
                    batch=batch_index,
                    failed=failed,
                    pending=pending,
                    blocked=list(unresolved),
                )
                raise err

            if skipped:
                raise DeploymentCancelled(
                    batch_index,
                    skipped=skipped + self._unconfirmed(plan, batch_index + 1),
                )

        result = DeploymentResult.from_journal(graph, self.journal)
        log.info("deployment_complete", module=graph.module, contracts=len(result))
        return result

    def _unconfirmed(self, plan: ExecutionPlan, from_batch: int) -> List[str]:
        out: List[str] = []
        for batch in plan.batches[from_batch:]:
            for nid in batch:
                rec = self.journal.get(nid)
                if rec is None or rec.status is not Status.CONFIRMED:
                    out.append(nid)
        return out

    def _blocked_dependents(self, graph: Graph, stuck: List[str]) -> Dict[str, UnresolvedDependencyError]:
        out: Dict[str, UnresolvedDependencyError] = {}
        stuck_set = set(stuck)
        downstream = graph.transitive_dependents(stuck)
        for nid in sorted(downstream, key=lambda n: graph.nodes[n].index):
            culprits = sorted(
                graph.dependencies(nid) & (stuck_set | downstream),
                key=lambda n: graph.nodes[n].index,
            )
            dep = culprits[0]
            rec = self.journal.get(dep)
            status = rec.status.value if rec is not None else "missing"
            out[nid] = UnresolvedDependencyError(nid, dep, reason=f"dependency is {status}")
        return out

    # ---------- per node ----------

    async def _run_node(self, graph: Graph, node: Node, semaphore: asyncio.Semaphore) -> _Outcome:
        rec = self.journal.get(node.id)
        assert rec is not None  # created by reconcile()

        if rec.status is Status.CONFIRMED:
            log.info("node_skipped", node=node.id, reason="already confirmed")
            return _Outcome(node.id, CONFIRMED)

        if rec.status is Status.SUBMITTED and rec.tx_hash:
            async with semaphore:
                log.info("node_reconciling", node=node.id, tx_hash=rec.tx_hash)
                return await self._await_receipt(node, rec)

        if rec.is_ambiguous:
            msg = "a previous submission may have reached the network; wipe the record to retry"
            log.warning("node_pending", node=node.id, reason="ambiguous", attempts=rec.attempts)
            return _Outcome(node.id, PENDING, error=msg)

        if self._cancelled:
            return _Outcome(node.id, SKIPPED)

        if isinstance(node, ContractAtNode):
            self.journal.put(
                node.id, rec.evolve(status=Status.CONFIRMED, result=node.address, error=None, tx_hash=None)
            )
            log.info("node_confirmed", node=node.id, address=node.address, kind=node.kind)
            return _Outcome(node.id, CONFIRMED)

        try:
            request = await self._build_request(graph, node)
        except UnresolvedDependencyError as exc:
            log.warning("node_blocked", node=node.id, dependency=exc.dependency, reason=exc.reason)
            return _Outcome(node.id, BLOCKED, error=str(exc), unresolved=exc)

        async with semaphore:
            if self._cancelled:
                return _Outcome(node.id, SKIPPED)

            # Journal the attempt before anything can reach the network
            rec = rec.evolve(
                status=Status.PENDING, attempts=rec.attempts + 1, tx_hash=None, result=None, error=None
            )
            self.journal.put(node.id, rec)
            try:
                tx_hash = await self.network.submit(request)
            except RpcTransportError as exc:
                # The node may have accepted it before the connection broke
                log.warning("node_pending", node=node.id, reason="submission outcome unknown", error=str(exc))
                return _Outcome(node.id, PENDING, error=f"submission outcome unknown: {exc}")
            except Exception as exc:
                error = f"submission failed: {exc}"
                self.journal.put(node.id, rec.evolve(status=Status.FAILED, error=error))
                log.error("node_failed", node=node.id, error=error, attempts=rec.attempts)
                return _Outcome(node.id, FAILED, error=error)

            rec = rec.evolve(status=Status.SUBMITTED, tx_hash=tx_hash)
            self.journal.put(node.id, rec)
            log.info("node_submitted", node=node.id, tx_hash=tx_hash, attempts=rec.attempts)
            return await self._await_receipt(node, rec)

    async def _await_receipt(self, node: Node, rec: ExecutionRecord) -> _Outcome:
        assert rec.tx_hash
        try:
            receipt = await self.network.await_receipt(rec.tx_hash, self.confirm_timeout_s)
        except NetworkError as exc:
            log.warning("node_pending", node=node.id, tx_hash=rec.tx_hash, reason=str(exc))
            return _Outcome(node.id, PENDING, error=f"receipt unavailable: {exc}")

        if receipt is None:
            log.warning(
                "node_pending", node=node.id, tx_hash=rec.tx_hash, reason="receipt timeout",
                timeout_s=self.confirm_timeout_s,
            )
            return _Outcome(node.id, PENDING, error="receipt not available before timeout")

        if not receipt.success:
            error = f"reverted: {receipt.revert_reason or 'no reason given'}"
            self.journal.put(node.id, rec.evolve(status=Status.FAILED, error=error))
            log.error("node_failed", node=node.id, tx_hash=rec.tx_hash, error=error)
            return _Outcome(node.id, FAILED, error=error)

        result: Any
        if isinstance(node, DeployNode):
            if not receipt.contract_address:
                error = "receipt carries no contract address"
                self.journal.put(node.id, rec.evolve(status=Status.FAILED, error=error))
                log.error("node_failed", node=node.id, tx_hash=rec.tx_hash, error=error)
                return _Outcome(node.id, FAILED, error=error)
            result = receipt.contract_address
        else:
            result = receipt.summary()

        self.journal.put(node.id, rec.evolve(status=Status.CONFIRMED, result=result, error=None))
        log.info(
            "node_confirmed", node=node.id, tx_hash=rec.tx_hash, kind=node.kind,
            address=result if isinstance(node, DeployNode) else None,
        )
        return _Outcome(node.id, CONFIRMED)

    # ---------- argument resolution ----------

    async def _get_accounts(self) -> List[str]:
        if self._accounts is None:
            if self._accounts_lock is None:
                self._accounts_lock = asyncio.Lock()
            async with self._accounts_lock:
                if self._accounts is None:
                    self._accounts = list(await self.network.accounts())
        return self._accounts

    def _confirmed_address(self, node_id: str, dependency: str) -> str:
        rec = self.journal.get(dependency)
        if rec is None or rec.status is not Status.CONFIRMED:
            status = rec.status.value if rec is not None else "missing"
            raise UnresolvedDependencyError(node_id, dependency, reason=f"dependency is {status}")
        if not isinstance(rec.result, str):
            raise UnresolvedDependencyError(node_id, dependency, reason="dependency produced no address")
        return rec.result

    def _resolve(self, node_id: str, value: Any, accounts: List[str]) -> Any:
        if isinstance(value, NodeRef):
            return self._confirmed_address(node_id, value.node_id)
        if isinstance(value, AccountRef):
            if value.index >= len(accounts):
                raise UnresolvedDependencyError(
                    node_id,
                    f"account[{value.index}]",
                    reason=f"account index out of range ({len(accounts)} accounts available)",
                )
            return accounts[value.index]
        if isinstance(value, (list, tuple)):
            return [self._resolve(node_id, v, accounts) for v in value]
        if isinstance(value, Mapping):
            return {k: self._resolve(node_id, v, accounts) for k, v in value.items()}
        return value

    async def _build_request(self, graph: Graph, node: Node) -> TransactionRequest:
        accounts = await self._get_accounts()
        if self.sender_index >= len(accounts):
            raise UnresolvedDependencyError(
                node.id, f"account[{self.sender_index}]", reason="no deployer account available"
            )
        sender = accounts[self.sender_index]

        if isinstance(node, DeployNode):
            artifact = self.resolver.resolve(node.contract_id)
            return TransactionRequest(
                node_id=node.id,
                kind="deploy",
                sender=sender,
                contract_id=node.contract_id,
                abi=tuple(artifact.abi),
                bytecode=artifact.bytecode,
                args=tuple(self._resolve(node.id, a, accounts) for a in node.args),
            )

        assert isinstance(node, CallNode)
        target = graph.nodes[node.target_id]
        to = self._confirmed_address(node.id, node.target_id)
        artifact = self.resolver.resolve(target.contract_id)  # type: ignore[union-attr]
        return TransactionRequest(
            node_id=node.id,
            kind="call",
            sender=sender,
            contract_id=artifact.contract_id,
            abi=tuple(artifact.abi),
            to=to,
            method=node.method,
            args=tuple(self._resolve(node.id, a, accounts) for a in node.args),
        )


def _graph_of(plan: ExecutionPlan) -> Graph:
    if plan.graph is None:
        raise ValueError("execution plan carries no graph; build it with omni_ignition.planner.plan()")
    return plan.graph


__all__ = ["DeploymentResult", "ExecutionEngine"]
