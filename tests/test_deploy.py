from __future__ import annotations

import json
from pathlib import Path

import pytest

from omni_ignition.artifacts import DirectoryArtifactResolver
from omni_ignition.config import Settings
from omni_ignition.deploy import (
    deploy,
    load_parameters,
    make_network,
    open_journal,
    write_deployed_addresses,
)
from omni_ignition.engine import DeploymentResult, ExecutionEngine
from omni_ignition.errors import DeploymentCancelled, ModuleDefinitionError, ReconciliationError
from omni_ignition.journal import JsonFileJournal, SqliteJournal, Status
from omni_ignition.module import build_module, load_module
from omni_ignition.network import InMemoryNetwork, JsonRpcNetwork


@pytest.fixture
def example_resolver(examples_dir: Path) -> DirectoryArtifactResolver:
    return DirectoryArtifactResolver(examples_dir / "artifacts")


@pytest.mark.asyncio
async def test_mizupass_end_to_end_and_resume(examples_dir, example_resolver, tmp_path: Path):
    module = load_module(examples_dir / "mizupass.module.json")
    network = InMemoryNetwork()

    journal = JsonFileJournal(tmp_path / "chain-31337")
    result = await deploy(module, resolver=example_resolver, network=network, journal=journal)
    journal.close()

    assert set(result) == {"MizuPassIdentity", "StealthAddressManager", "MockJPYM", "EventRegistry"}
    registry_tx = network.submissions_for("MizuPassModule#EventRegistry")[0]
    assert registry_tx.args == (result["MizuPassIdentity"],)
    wallet_tx = network.submissions_for("MizuPassModule#EventRegistry.setPlatformWallet")[0]
    assert wallet_tx.to == result["EventRegistry"]
    assert wallet_tx.args == ("0xfd1AF2826012385a84A8E9BE8a1586293FB3980B",)
    assert len(network.submissions) == 6

    # a second process reading the same journal has nothing left to do
    reopened = JsonFileJournal(tmp_path / "chain-31337")
    again = await deploy(module, resolver=example_resolver, network=network, journal=reopened)
    assert dict(again) == dict(result)
    assert len(network.submissions) == 6
    assert all(rec.status is Status.CONFIRMED for rec in reopened.records().values())


@pytest.mark.asyncio
async def test_changed_parameter_of_confirmed_call_is_refused(examples_dir, example_resolver, journal, network):
    module = load_module(examples_dir / "mizupass.module.json")
    await deploy(module, resolver=example_resolver, network=network, journal=journal)

    with pytest.raises(ReconciliationError) as ei:
        await deploy(
            module,
            resolver=example_resolver,
            network=network,
            journal=journal,
            parameters={"platformWallet": "0x" + "00" * 20},
        )
    assert ei.value.node_ids == ["MizuPassModule#EventRegistry.setPlatformWallet"]
    assert len(network.submissions) == 6


@pytest.mark.asyncio
async def test_deploy_with_engine_handle_can_cancel(resolver, network, journal):
    engine = ExecutionEngine(network, journal, resolver)
    engine.cancel()
    with pytest.raises(DeploymentCancelled):
        await deploy(build_module("M", lambda m: m.contract("A")), resolver=resolver, network=network,
                     journal=journal, engine=engine)
    assert network.submissions == []


def test_load_parameters(tmp_path: Path, examples_dir: Path):
    params = load_parameters(examples_dir / "parameters.json", "MizuPassModule")
    assert params == {"platformWallet": "0xfd1AF2826012385a84A8E9BE8a1586293FB3980B"}
    assert load_parameters(examples_dir / "parameters.json", "OtherModule") == {}

    with pytest.raises(ModuleDefinitionError, match="not found"):
        load_parameters(tmp_path / "missing.json", "M")

    bad = tmp_path / "bad.json"
    bad.write_text("[1]", encoding="utf-8")
    with pytest.raises(ModuleDefinitionError):
        load_parameters(bad, "M")

    bad.write_text(json.dumps({"M": [1, 2]}), encoding="utf-8")
    with pytest.raises(ModuleDefinitionError):
        load_parameters(bad, "M")


def test_write_deployed_addresses(tmp_path: Path):
    result = DeploymentResult({"B": "0x2", "A": "0x1"}, {"M#B": "0x2", "M#A": "0x1"})
    out = write_deployed_addresses(tmp_path / "dep" / "deployed_addresses.json", result)
    assert json.loads(out.read_text(encoding="utf-8")) == {"M#A": "0x1", "M#B": "0x2"}
    assert out.read_text(encoding="utf-8").index("M#A") < out.read_text(encoding="utf-8").index("M#B")


def test_open_journal_picks_backend(tmp_path: Path):
    settings = Settings(deployments_dir=tmp_path)
    j = open_journal(settings)
    assert isinstance(j, JsonFileJournal)
    j.close()
    assert (tmp_path / "chain-31337").is_dir()

    s = open_journal(settings.with_overrides(journal_backend="sqlite"), "staging")
    try:
        assert isinstance(s, SqliteJournal)
        assert (tmp_path / "staging" / "journal.db").is_file()
    finally:
        s.close()


@pytest.mark.asyncio
async def test_make_network():
    assert isinstance(make_network(Settings()), InMemoryNetwork)
    net = make_network(Settings(network="devnet", rpc_url="https://rpc.example.org"))
    assert isinstance(net, JsonRpcNetwork)
    await net.close()
