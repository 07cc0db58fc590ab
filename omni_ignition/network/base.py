"""
Network collaborator interface.

The engine only needs three things from a chain: the list of signing accounts,
a way to submit a transaction and learn its hash, and a bounded wait for the
receipt. Everything else (signing, nonces, ABI encoding, gas) belongs to the
node or signer behind the implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple


@dataclass(frozen=True)
class TransactionRequest:
    """
    A fully resolved transaction: every argument is a concrete value.

    kind "deploy": `bytecode` + constructor `args`; `to` is None.
    kind "call":   `to` is the target address, `method` + `args` the invocation.
    """

    node_id: str
    kind: str
    sender: str
    contract_id: str
    abi: Tuple[Dict[str, Any], ...] = ()
    bytecode: Optional[str] = None
    to: Optional[str] = None
    method: Optional[str] = None
    args: Tuple[Any, ...] = ()


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    success: bool
    contract_address: Optional[str] = None
    revert_reason: Optional[str] = None
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    logs: List[Dict[str, Any]] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        """JSON-friendly subset recorded in the journal for call nodes."""
        return {
            "txHash": self.tx_hash,
            "status": "success" if self.success else "reverted",
            "blockNumber": self.block_number,
            "gasUsed": self.gas_used,
        }


class Network(Protocol):
    async def accounts(self) -> List[str]: ...

    async def submit(self, request: TransactionRequest) -> str:
        """Send `request`; return the tx hash once the node accepted it."""
        ...

    async def await_receipt(self, tx_hash: str, timeout_s: float) -> Optional[Receipt]:
        """Wait up to `timeout_s` for the receipt; None when it did not arrive in time."""
        ...


__all__ = ["TransactionRequest", "Receipt", "Network"]
