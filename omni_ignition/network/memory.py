"""
Deterministic in-process network.

Used for `--network memory` dry runs and throughout the tests. Addresses and
transaction hashes are derived from sha3 over (sender, nonce), so the same
sequence of submissions always yields the same addresses.

Fault injection, keyed by node id:

    net.revert("Mod#B", "Ownable: caller is not the owner")  # receipt success=False
    net.stall("Mod#C")                                       # receipt never arrives
    net.fail_submit("Mod#D", RuntimeError("boom"))           # submit() raises

`submissions` records every accepted TransactionRequest in order.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Set

from ..errors import NetworkError
from ..utils import sha3_256_hex
from .base import Receipt, TransactionRequest


def _address(*parts: object) -> str:
    digest = sha3_256_hex(":".join(str(p) for p in parts))
    return "0x" + digest[-40:]


class InMemoryNetwork:
    def __init__(self, *, num_accounts: int = 3, latency_s: float = 0.0):
        self._accounts = [_address("account", i) for i in range(num_accounts)]
        self.latency_s = latency_s
        self.submissions: List[TransactionRequest] = []
        self.receipts: Dict[str, Receipt] = {}
        self._nonces: Dict[str, int] = {}
        self._reverts: Dict[str, str] = {}
        self._stalled: Set[str] = set()
        self._submit_errors: Dict[str, Exception] = {}
        self._stalled_hashes: Dict[str, Receipt] = {}
        self._block = 0
        self._in_flight = 0
        self.max_in_flight = 0

    # ---------- fault injection ----------

    def revert(self, node_id: str, reason: str = "execution reverted") -> None:
        self._reverts[node_id] = reason

    def stall(self, node_id: str) -> None:
        self._stalled.add(node_id)

    def fail_submit(self, node_id: str, exc: Optional[Exception] = None) -> None:
        self._submit_errors[node_id] = exc or NetworkError(f"submit rejected for {node_id}")

    def heal(self, node_id: Optional[str] = None) -> None:
        """Drop injected faults (for one node, or all) and release stalled receipts."""
        if node_id is None:
            self._reverts.clear()
            self._stalled.clear()
            self._submit_errors.clear()
            self.receipts.update(self._stalled_hashes)
            self._stalled_hashes.clear()
            return
        self._reverts.pop(node_id, None)
        self._stalled.discard(node_id)
        self._submit_errors.pop(node_id, None)
        for tx_hash, rcpt in list(self._stalled_hashes.items()):
            if rcpt.logs and rcpt.logs[0].get("nodeId") == node_id:
                self.receipts[tx_hash] = self._stalled_hashes.pop(tx_hash)

    def submissions_for(self, node_id: str) -> List[TransactionRequest]:
        return [s for s in self.submissions if s.node_id == node_id]

    # ---------- Network protocol ----------

    async def accounts(self) -> List[str]:
        return list(self._accounts)

    async def submit(self, request: TransactionRequest) -> str:
        self._in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if self.latency_s:
                await asyncio.sleep(self.latency_s)
            exc = self._submit_errors.get(request.node_id)
            if exc is not None:
                raise exc

            nonce = self._nonces.get(request.sender, 0)
            self._nonces[request.sender] = nonce + 1
            self._block += 1
            tx_hash = sha3_256_hex(f"tx:{request.sender}:{nonce}")
            self.submissions.append(request)

            reason = self._reverts.get(request.node_id)
            success = reason is None
            contract_address = None
            if success and request.kind == "deploy":
                contract_address = _address("contract", request.sender, nonce)
            receipt = Receipt(
                tx_hash=tx_hash,
                success=success,
                contract_address=contract_address,
                revert_reason=reason,
                block_number=self._block,
                gas_used=21000 if request.kind == "call" else 500000,
                logs=[{"nodeId": request.node_id}],
            )
            if request.node_id in self._stalled:
                self._stalled_hashes[tx_hash] = receipt
            else:
                self.receipts[tx_hash] = receipt
            return tx_hash
        finally:
            self._in_flight -= 1

    async def await_receipt(self, tx_hash: str, timeout_s: float) -> Optional[Receipt]:
        rcpt = self.receipts.get(tx_hash)
        if rcpt is not None:
            return rcpt
        if tx_hash in self._stalled_hashes:
            # Stalled: the receipt never shows up within any timeout
            await asyncio.sleep(0)
            return None
        raise NetworkError(f"unknown transaction {tx_hash}")


__all__ = ["InMemoryNetwork"]
