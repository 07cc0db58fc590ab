"""Network collaborators: the protocol, a JSON-RPC client and an in-memory chain."""

from .base import Network, Receipt, TransactionRequest
from .memory import InMemoryNetwork
from .rpc import JsonRpcConfig, JsonRpcNetwork, RpcMethods

__all__ = [
    "Network",
    "Receipt",
    "TransactionRequest",
    "InMemoryNetwork",
    "JsonRpcConfig",
    "JsonRpcNetwork",
    "RpcMethods",
]
