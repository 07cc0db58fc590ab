from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List

import pytest

from omni_ignition.artifacts import Artifact, StaticArtifactResolver
from omni_ignition.config import get_settings
from omni_ignition.graph import build_graph
from omni_ignition.journal import MemoryJournal
from omni_ignition.module import Module
from omni_ignition.network import InMemoryNetwork
from omni_ignition.planner import ExecutionPlan, plan

REPO_ROOT = Path(__file__).resolve().parents[1]
EXAMPLES_DIR = REPO_ROOT / "examples"


def _fn(name: str, inputs: int = 1) -> Dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": f"arg{i}", "type": "address"} for i in range(inputs)],
        "outputs": [],
        "stateMutability": "nonpayable",
    }


# ABI fragments for the contracts used across the tests. An empty ABI means
# "unknown shape" and skips the method check in the graph builder.
_ABIS: Dict[str, List[Dict[str, Any]]] = {
    "Manager": [_fn("setOwner")],
    "EventRegistry": [_fn("setJPYMAddress"), _fn("setPlatformWallet")],
    "Token": [_fn("mint", 2), _fn("approve", 2)],
}


def make_artifact(name: str) -> Artifact:
    return Artifact(
        contract_id=name,
        abi=list(_ABIS.get(name, [])),
        bytecode="0x6080" + name.encode().hex(),
    )


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Keep the developer's environment and `.env` out of the tests."""
    for key in ("NETWORK", "RPC_URL", "CHAIN_ID", "ARTIFACTS_DIR", "DEPLOYMENTS_DIR", "JOURNAL_BACKEND"):
        monkeypatch.delenv(f"IGNITION_{key}", raising=False)
    monkeypatch.setenv("IGNITION_LOG_LEVEL", "WARNING")
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def resolver_for() -> Callable[..., StaticArtifactResolver]:
    """Factory: resolver_for("A", "B") -> resolver knowing contracts A and B."""

    def _make(*names: str) -> StaticArtifactResolver:
        return StaticArtifactResolver({n: make_artifact(n) for n in names})

    return _make


@pytest.fixture
def resolver() -> StaticArtifactResolver:
    names = [
        "Id", "Manager", "A", "B", "C", "D", "Token",
        "MizuPassIdentity", "StealthAddressManager", "MockJPYM", "EventRegistry",
    ]
    return StaticArtifactResolver({n: make_artifact(n) for n in names})


@pytest.fixture
def examples_dir() -> Path:
    return EXAMPLES_DIR


@pytest.fixture
def network() -> InMemoryNetwork:
    return InMemoryNetwork()


@pytest.fixture
def journal() -> MemoryJournal:
    return MemoryJournal()


@pytest.fixture
def planned(resolver: StaticArtifactResolver) -> Callable[..., ExecutionPlan]:
    """Factory: planned(module, parameters=None) -> ExecutionPlan (graph attached)."""

    def _plan(module: Module, parameters: Dict[str, Any] | None = None) -> ExecutionPlan:
        return plan(build_graph(module, resolver, parameters))

    return _plan
