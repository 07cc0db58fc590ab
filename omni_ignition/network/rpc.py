"""
JSON-RPC network over HTTP(S).

Talks to a node (or signing relay) that holds the deployer keys, in the style
of ``eth_sendTransaction``: the node signs, assigns the nonce and ABI-encodes
the constructor / call arguments from the ABI fragment we send along.

Transport:
- httpx.AsyncClient with a per-request timeout
- retries with exponential backoff on transport errors and HTTP 502/503/504
- submission is never retried: a timed-out send may still have reached the
  node, and sending it again could execute the node twice. Transport errors
  on send (RpcTransportError) leave the node ambiguous in the journal; a JSON-RPC
  error object (RpcResponseError) is a definite rejection and marks it Failed.

Method names are configurable (`RpcMethods`) for nodes that expose the same
calls under a different namespace.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ..errors import RpcResponseError, RpcTransportError
from ..logging import get_logger
from .base import Receipt, TransactionRequest

log = get_logger(__name__)


@dataclass(frozen=True)
class RpcMethods:
    accounts: str = "eth_accounts"
    send_transaction: str = "eth_sendTransaction"
    get_receipt: str = "eth_getTransactionReceipt"


@dataclass
class JsonRpcConfig:
    url: str
    timeout_s: float = 10.0
    max_retries: int = 3
    backoff_base_s: float = 0.25  # exponential backoff starting delay
    poll_interval_s: float = 1.0
    headers: Optional[Dict[str, str]] = None
    methods: RpcMethods = field(default_factory=RpcMethods)


def _should_retry(status: Optional[int]) -> bool:
    return status in (502, 503, 504)


def _build_headers(extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    hdrs = {
        "content-type": "application/json",
        "accept": "application/json",
    }
    if extra:
        hdrs.update(extra)
    return hdrs


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    s = str(value).strip().lower()
    return int(s, 16) if s.startswith("0x") else int(s)


def _abi_fragment(request: TransactionRequest) -> List[Dict[str, Any]]:
    if request.kind == "deploy":
        return [item for item in request.abi if item.get("type") == "constructor"]
    return [
        item
        for item in request.abi
        if item.get("type") == "function" and item.get("name") == request.method
    ]


def encode_transaction(request: TransactionRequest) -> Dict[str, Any]:
    """Build the transaction object sent as the single param of the send method."""
    tx: Dict[str, Any] = {"from": request.sender, "abi": _abi_fragment(request), "args": list(request.args)}
    if request.kind == "deploy":
        tx["data"] = request.bytecode or "0x"
    else:
        tx["to"] = request.to
        tx["method"] = request.method
    return tx


def parse_receipt(tx_hash: str, raw: Dict[str, Any]) -> Receipt:
    status = raw.get("status")
    if isinstance(status, str):
        success = _as_int(status) == 1
    elif status is None:
        success = True
    else:
        success = bool(status)
    return Receipt(
        tx_hash=raw.get("transactionHash") or tx_hash,
        success=success,
        contract_address=raw.get("contractAddress"),
        revert_reason=raw.get("revertReason") or (None if success else "transaction reverted"),
        block_number=_as_int(raw.get("blockNumber")),
        gas_used=_as_int(raw.get("gasUsed")),
        logs=list(raw.get("logs") or []),
    )


class JsonRpcNetwork:
    """Async JSON-RPC implementation of the Network protocol."""

    def __init__(self, config: JsonRpcConfig, *, client: Optional[httpx.AsyncClient] = None):
        self._cfg = config
        self._id = 0
        self._client = client
        self._owns_client = client is None

    # ---------- lifecycle ----------

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._cfg.timeout_s,
                headers=_build_headers(self._cfg.headers),
            )
            self._owns_client = True

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "JsonRpcNetwork":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ---------- core transport ----------

    async def _call(self, method: str, params: Optional[List[Any]] = None, *, retry: bool = True) -> Any:
        """
        Perform a single JSON-RPC call, retrying transient failures when `retry`.
        """
        if self._client is None:
            await self.start()

        assert self._client is not None  # for type-checkers

        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params or []}
        max_retries = self._cfg.max_retries if retry else 0

        attempt = 0
        while True:
            attempt += 1
            try:
                resp = await self._client.post(self._cfg.url, json=payload)
                status = resp.status_code
                if status == 200:
                    try:
                        data = resp.json()
                    except json.JSONDecodeError as exc:
                        raise RpcResponseError(-32700, f"invalid JSON response: {exc}", method=method) from exc
                    if data.get("error") is not None:
                        err = data["error"]
                        raise RpcResponseError(
                            err.get("code", -32000), err.get("message", "Unknown error"), err.get("data"), method
                        )
                    return data.get("result")
                if _should_retry(status):
                    raise RpcTransportError(f"HTTP {status}: {resp.text[:256]!r}")
                # Non-retriable status
                raise RpcResponseError(status, f"HTTP {status}: {resp.text[:256]!r}", method=method)
            except (httpx.TimeoutException, httpx.TransportError, RpcTransportError) as exc:
                if attempt > max_retries:
                    raise RpcTransportError(f"RPC {method} failed after {attempt} attempts: {exc}") from exc
                delay = self._cfg.backoff_base_s * (2 ** (attempt - 1))
                log.debug("rpc_retry", method=method, attempt=attempt, delay_s=delay, error=str(exc))
                await asyncio.sleep(delay)

    # ---------- Network protocol ----------

    async def accounts(self) -> List[str]:
        result = await self._call(self._cfg.methods.accounts)
        return [str(a) for a in (result or [])]

    async def submit(self, request: TransactionRequest) -> str:
        tx_hash = await self._call(
            self._cfg.methods.send_transaction, [encode_transaction(request)], retry=False
        )
        if not isinstance(tx_hash, str) or not tx_hash:
            raise RpcResponseError(-32000, f"node returned no transaction hash: {tx_hash!r}",
                                   method=self._cfg.methods.send_transaction)
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        raw = await self._call(self._cfg.methods.get_receipt, [tx_hash])
        return parse_receipt(tx_hash, raw) if raw else None

    async def await_receipt(self, tx_hash: str, timeout_s: float) -> Optional[Receipt]:
        """
        Poll for the receipt until found or `timeout_s` elapses (None on timeout).
        """
        deadline = time.monotonic() + timeout_s
        while True:
            rcpt = await self.get_receipt(tx_hash)
            if rcpt is not None:
                return rcpt
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            await asyncio.sleep(min(self._cfg.poll_interval_s, remaining))


__all__ = [
    "RpcMethods",
    "JsonRpcConfig",
    "JsonRpcNetwork",
    "encode_transaction",
    "parse_receipt",
]
