from __future__ import annotations

import json
from pathlib import Path

import pytest

from omni_ignition.errors import ModuleDefinitionError
from omni_ignition.module import (
    AccountRef,
    CallIntent,
    ContractAtIntent,
    DeployIntent,
    FutureRef,
    Module,
    ParameterRef,
    build_module,
    load_module,
    module_from_dict,
    parse_arg,
)


def test_builder_collects_intents_and_hands_out_tokens():
    tokens = {}

    def define(m):
        tokens["id"] = m.contract("Id")
        tokens["mgr"] = m.contract("Manager", [tokens["id"]])
        tokens["call"] = m.call(tokens["mgr"], "setOwner", [m.get_account(0)])
        tokens["ext"] = m.contract_at("Token", "0x" + "11" * 20, id="ExistingToken")

    mod = build_module("M", define)
    assert [type(i) for i in mod.intents] == [DeployIntent, DeployIntent, CallIntent, ContractAtIntent]
    assert tokens["id"] == FutureRef("Id")
    assert tokens["call"] == FutureRef("Manager.setOwner")
    assert tokens["ext"] == FutureRef("ExistingToken")
    assert mod.intents[1].args == (FutureRef("Id"),)
    assert mod.intents[2].args == (AccountRef(0),)


def test_repeated_calls_get_suffixed_tokens():
    out = []

    def define(m):
        t = m.contract("Token")
        out.append(m.call(t, "mint", ["0x1", 1]))
        out.append(m.call(t, "mint", ["0x2", 2]))
        out.append(m.call(t, "mint", ["0x3", 3], id="thirdMint"))
        out.append(m.call(t, "mint", ["0x4", 4]))

    build_module("M", define)
    assert out == [
        FutureRef("Token.mint"),
        FutureRef("Token.mint_1"),
        FutureRef("thirdMint"),
        FutureRef("Token.mint_2"),
    ]


def test_builder_accepts_names_for_targets_and_after():
    def define(m):
        m.contract("A")
        m.contract("B", after=["A"])
        m.call("B", "init")

    mod = build_module("M", define)
    assert mod.intents[1].after == (FutureRef("A"),)
    assert mod.intents[2].target == FutureRef("B")


def test_builder_rejects_negative_account():
    with pytest.raises(ModuleDefinitionError):
        build_module("M", lambda m: m.get_account(-1))


@pytest.mark.parametrize("name", ["", "Bad#Name"])
def test_module_name_validation(name):
    with pytest.raises(ModuleDefinitionError):
        Module(name=name, intents=())


def test_parameter_tokens_track_defaults():
    assert not ParameterRef("x").has_default
    assert ParameterRef("x", None).has_default


def test_parse_arg_recognises_reference_objects():
    assert parse_arg({"toNode": "Id"}) == FutureRef("Id")
    assert parse_arg({"account": 2}) == AccountRef(2)
    assert parse_arg({"parameter": "fee"}) == ParameterRef("fee")
    assert parse_arg({"parameter": "fee", "default": 5}) == ParameterRef("fee", 5)
    # nested refs inside literals
    nested = parse_arg([1, {"owners": [{"toNode": "A"}, {"account": 0}]}])
    assert nested == [1, {"owners": [FutureRef("A"), AccountRef(0)]}]
    # plain objects stay literal
    assert parse_arg({"toNode": "A", "extra": 1}) == {"toNode": "A", "extra": 1}


@pytest.mark.parametrize("bad", [-1, "0", True, 1.5])
def test_parse_arg_rejects_bad_account_index(bad):
    with pytest.raises(ModuleDefinitionError):
        parse_arg({"account": bad})


def test_module_from_dict_builds_all_intent_kinds():
    mod = module_from_dict(
        {
            "name": "M",
            "intents": [
                {"kind": "deploy", "name": "Id", "contractId": "Id"},
                {"kind": "deploy", "contractId": "Manager", "args": [{"toNode": "Id"}], "after": ["Id"]},
                {"kind": "call", "target": {"toNode": "Manager"}, "method": "setOwner", "args": [{"account": 0}]},
                {"kind": "call", "target": "Manager", "method": "setOwner", "id": "again"},
                {"kind": "contractAt", "name": "Usdc", "contractId": "Token", "address": {"parameter": "usdc"}},
            ],
        }
    )
    deploy_mgr = mod.intents[1]
    assert isinstance(deploy_mgr, DeployIntent)
    assert deploy_mgr.name == "Manager"  # defaults to the contract id
    assert deploy_mgr.after == (FutureRef("Id"),)
    assert mod.intents[2].target == FutureRef("Manager")
    assert mod.intents[3].id == "again"
    assert mod.intents[4].address == ParameterRef("usdc")


def test_module_from_dict_accepts_capitalised_kinds():
    mod = module_from_dict(
        {
            "name": "M",
            "intents": [
                {"kind": "Deploy", "name": "A", "contractId": "A"},
                {"kind": "Call", "target": {"toNode": "A"}, "method": "init"},
                {"kind": "ContractAt", "name": "T", "contractId": "Token", "address": "0x1"},
            ],
        }
    )
    assert [i.kind for i in mod.intents] == ["deploy", "call", "contractAt"]


@pytest.mark.parametrize(
    "data",
    [
        {"intents": []},  # no name
        {"name": "M", "intents": [{"kind": "destroy", "contractId": "X"}]},
        {"name": "M", "intents": [{"kind": "deploy"}]},
        {"name": "M", "intents": [{"kind": "deploy", "contractId": "X", "bogus": 1}]},
        {"name": "M", "intents": [{"kind": "call", "method": "x"}]},
    ],
)
def test_module_from_dict_rejects_invalid_documents(data):
    with pytest.raises(ModuleDefinitionError):
        module_from_dict(data)


def test_load_module_errors(tmp_path: Path):
    with pytest.raises(ModuleDefinitionError, match="not found"):
        load_module(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ModuleDefinitionError, match="not valid JSON"):
        load_module(bad)

    arr = tmp_path / "arr.json"
    arr.write_text(json.dumps([1, 2]), encoding="utf-8")
    with pytest.raises(ModuleDefinitionError, match="JSON object"):
        load_module(arr)


def test_example_json_module_loads(examples_dir: Path):
    mod = load_module(examples_dir / "mizupass.module.json")
    assert mod.name == "MizuPassModule"
    kinds = [i.kind for i in mod.intents]
    assert kinds == ["deploy", "deploy", "deploy", "deploy", "call", "call"]
    registry = mod.intents[3]
    assert registry.args == (FutureRef("MizuPassIdentity"),)


@pytest.mark.parametrize("text", ["NaN", "Infinity", "-Infinity"])
def test_non_finite_numbers_are_rejected(tmp_path: Path, text: str):
    mod = tmp_path / "nan.json"
    mod.write_text(
        '{"name": "M", "intents": [{"kind": "deploy", "contractId": "A", "args": [{"fee": %s}]}]}' % text,
        encoding="utf-8",
    )
    with pytest.raises(ModuleDefinitionError, match="non-finite"):
        load_module(mod)
