from __future__ import annotations

import json
from pathlib import Path

import pytest

from omni_ignition.artifacts import Artifact, DirectoryArtifactResolver, StaticArtifactResolver
from omni_ignition.errors import UnknownArtifact


def _write_artifact(root: Path, name: str, **extra) -> Path:
    path = root / "contracts" / f"{name}.sol" / f"{name}.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    body = {"contractName": name, "abi": [], "bytecode": "0x60806040"}
    body.update(extra)
    path.write_text(json.dumps(body), encoding="utf-8")
    return path


def test_static_resolver_returns_artifact_and_raises_for_unknown():
    r = StaticArtifactResolver({"Token": {"abi": [], "bytecode": "6080"}})
    art = r.resolve("Token")
    assert art.contract_id == "Token"
    assert art.bytecode == "0x6080"  # prefix added
    assert "Token" in r and "Nope" not in r

    with pytest.raises(UnknownArtifact) as ei:
        r.resolve("Nope")
    assert ei.value.contract_id == "Nope"
    assert "Nope" in str(ei.value)


def test_static_resolver_add():
    r = StaticArtifactResolver()
    r.add(Artifact("Late", bytecode="0x01"))
    assert r.resolve("Late").bytecode == "0x01"


def test_bytecode_hash_is_stable_and_case_insensitive():
    a = Artifact("X", bytecode="0xABCD")
    b = Artifact("X", bytecode="0xabcd")
    assert a.bytecode_hash == b.bytecode_hash
    assert a.bytecode_hash.startswith("0x") and len(a.bytecode_hash) == 66


def test_has_function_only_matches_functions():
    a = Artifact(
        "R",
        abi=[
            {"type": "function", "name": "setOwner", "inputs": []},
            {"type": "event", "name": "OwnerSet", "inputs": []},
        ],
    )
    assert a.has_function("setOwner")
    assert not a.has_function("OwnerSet")


def test_directory_resolver_reads_hardhat_layout(tmp_path: Path):
    _write_artifact(tmp_path, "EventRegistry", abi=[{"type": "function", "name": "setPlatformWallet"}])
    # debug companions and build-info are not artifacts
    dbg = tmp_path / "contracts" / "EventRegistry.sol" / "EventRegistry.dbg.json"
    dbg.write_text(json.dumps({"_format": "hh-sol-dbg-1", "buildInfo": "x"}), encoding="utf-8")
    (tmp_path / "build-info").mkdir()
    (tmp_path / "build-info" / "abc.json").write_text("{}", encoding="utf-8")

    r = DirectoryArtifactResolver(tmp_path)
    art = r.resolve("EventRegistry")
    assert art.has_function("setPlatformWallet")
    assert art.bytecode == "0x60806040"
    # fully qualified name resolves to the same file
    assert r.resolve("contracts/EventRegistry.sol:EventRegistry").bytecode == art.bytecode
    # cached instance
    assert r.resolve("EventRegistry") is art

    with pytest.raises(UnknownArtifact):
        r.resolve("EventRegistry.dbg")
    with pytest.raises(UnknownArtifact):
        r.resolve("abc")


def test_directory_resolver_accepts_solc_bytecode_object(tmp_path: Path):
    _write_artifact(tmp_path, "Token", bytecode={"object": "6001"})
    assert DirectoryArtifactResolver(tmp_path).resolve("Token").bytecode == "0x6001"


def test_directory_resolver_unknown_names_search_root(tmp_path: Path):
    r = DirectoryArtifactResolver(tmp_path / "missing")
    with pytest.raises(UnknownArtifact) as ei:
        r.resolve("Anything")
    assert str(tmp_path / "missing") in str(ei.value)


def test_directory_resolver_rejects_non_artifact_json(tmp_path: Path):
    path = tmp_path / "contracts" / "Broken.sol" / "Broken.json"
    path.parent.mkdir(parents=True)
    path.write_text("[1, 2, 3]", encoding="utf-8")
    with pytest.raises(UnknownArtifact):
        DirectoryArtifactResolver(tmp_path).resolve("Broken")


def test_example_artifacts_resolve(examples_dir: Path):
    r = DirectoryArtifactResolver(examples_dir / "artifacts")
    for name in ("MizuPassIdentity", "StealthAddressManager", "MockJPYM", "EventRegistry"):
        assert r.resolve(name).contract_id == name
    assert r.resolve("EventRegistry").has_function("setJPYMAddress")
