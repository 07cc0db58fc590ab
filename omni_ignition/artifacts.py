"""
omni_ignition.artifacts
=======================

Resolve a contract name to its compiled interface (ABI + bytecode).

Resolvers are pure lookups: the graph builder queries them to validate that
every referenced contract exists, the engine queries them again when it builds
a transaction. Two implementations ship:

- StaticArtifactResolver: an in-memory mapping (tests, generated artifacts).
- DirectoryArtifactResolver: reads Hardhat-style build output

      artifacts/contracts/EventRegistry.sol/EventRegistry.json
          {"contractName": "EventRegistry", "abi": [...], "bytecode": "0x..."}

  Debug companions (``*.dbg.json``) are ignored. The directory is indexed
  lazily on first lookup and parsed files are cached.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

from .errors import UnknownArtifact
from .utils import sha3_256_hex

JsonDict = Dict[str, Any]


@dataclass(frozen=True)
class Artifact:
    contract_id: str
    abi: List[JsonDict] = field(default_factory=list)
    bytecode: str = "0x"
    # Known on-chain address for already deployed components (optional)
    address: Optional[str] = None

    @property
    def bytecode_hash(self) -> str:
        return sha3_256_hex(self.bytecode.lower())

    def has_function(self, name: str) -> bool:
        return any(
            item.get("type") == "function" and item.get("name") == name for item in self.abi
        )


class ArtifactResolver(Protocol):
    """Minimal interface expected by the graph builder and the engine."""

    def resolve(self, contract_id: str) -> Artifact: ...


def _coerce_artifact(contract_id: str, raw: Union[Artifact, Mapping[str, Any]]) -> Artifact:
    if isinstance(raw, Artifact):
        return raw
    bytecode = raw.get("bytecode") or "0x"
    if isinstance(bytecode, Mapping):
        # solc standard-json shape: {"object": "..."}
        bytecode = bytecode.get("object") or "0x"
    bytecode = str(bytecode)
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return Artifact(
        contract_id=str(raw.get("contractName") or contract_id),
        abi=list(raw.get("abi") or []),
        bytecode=bytecode,
        address=raw.get("address"),
    )


class StaticArtifactResolver:
    """Resolver over an in-memory mapping of contract name -> artifact."""

    def __init__(self, artifacts: Optional[Mapping[str, Union[Artifact, Mapping[str, Any]]]] = None):
        self._artifacts: Dict[str, Artifact] = {
            name: _coerce_artifact(name, raw) for name, raw in (artifacts or {}).items()
        }

    def add(self, artifact: Artifact) -> None:
        self._artifacts[artifact.contract_id] = artifact

    def resolve(self, contract_id: str) -> Artifact:
        try:
            return self._artifacts[contract_id]
        except KeyError:
            raise UnknownArtifact(contract_id) from None

    def __contains__(self, contract_id: object) -> bool:
        return contract_id in self._artifacts


class DirectoryArtifactResolver:
    """Resolver over a Hardhat ``artifacts/`` directory tree."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._index: Optional[Dict[str, Path]] = None
        self._cache: Dict[str, Artifact] = {}

    def _build_index(self) -> Dict[str, Path]:
        index: Dict[str, Path] = {}
        if not self.root.is_dir():
            return index
        for path in sorted(self.root.rglob("*.json")):
            if path.name.endswith(".dbg.json") or "build-info" in path.parts:
                continue
            # First match wins; fully qualified names ("contracts/X.sol:X") also resolve
            index.setdefault(path.stem, path)
            rel_sol = path.parent.relative_to(self.root).as_posix()
            index.setdefault(f"{rel_sol}:{path.stem}", path)
        return index

    def resolve(self, contract_id: str) -> Artifact:
        cached = self._cache.get(contract_id)
        if cached is not None:
            return cached
        if self._index is None:
            self._index = self._build_index()
        path = self._index.get(contract_id)
        if path is None:
            raise UnknownArtifact(contract_id, searched=str(self.root))
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise UnknownArtifact(contract_id, searched=f"{path}: {exc}") from exc
        if not isinstance(raw, dict) or "abi" not in raw:
            raise UnknownArtifact(contract_id, searched=f"{path}: not a contract artifact")
        artifact = _coerce_artifact(contract_id, raw)
        self._cache[contract_id] = artifact
        return artifact


__all__ = [
    "Artifact",
    "ArtifactResolver",
    "StaticArtifactResolver",
    "DirectoryArtifactResolver",
]
