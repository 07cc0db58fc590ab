from __future__ import annotations

import pytest

from omni_ignition.deploy import deploy
from omni_ignition.errors import DanglingReferenceError, ModuleDefinitionError, UnknownArtifact
from omni_ignition.graph import CallNode, ContractAtNode, DeployNode, NodeRef, build_graph
from omni_ignition.module import AccountRef, FutureRef, build_module, module_from_dict


def _id_manager(m):
    ident = m.contract("Id")
    mgr = m.contract("Manager", [ident])
    m.call(mgr, "setOwner", [m.get_account(0)])


def test_node_ids_and_edges(resolver):
    g = build_graph(build_module("M", _id_manager), resolver)
    assert list(g.nodes) == ["M#Id", "M#Manager", "M#Manager.setOwner"]
    assert isinstance(g.nodes["M#Id"], DeployNode)
    call = g.nodes["M#Manager.setOwner"]
    assert isinstance(call, CallNode)
    assert call.target_id == "M#Manager"
    assert call.args == (AccountRef(0),)
    assert g.nodes["M#Manager"].args == (NodeRef("M#Id"),)
    assert g.edges() == [("M#Id", "M#Manager"), ("M#Manager", "M#Manager.setOwner")]
    assert g.dependencies("M#Manager.setOwner") == {"M#Manager"}
    assert g.transitive_dependents(["M#Id"]) == {"M#Manager", "M#Manager.setOwner"}


def test_ids_are_deterministic_across_builds(resolver):
    a = build_graph(build_module("M", _id_manager), resolver)
    b = build_graph(build_module("M", _id_manager), resolver)
    assert list(a.nodes) == list(b.nodes)
    assert [n.fingerprint for n in a] == [n.fingerprint for n in b]


def test_nested_and_forward_references(resolver):
    def define(m):
        c = m.contract("C")
        # "B" inside the dict is a plain string literal, not a reference
        m.contract("A", [{"peers": [c, "B"]}, ["literal", {"x": 1}]])
        # B is referenced before it is declared
        m.call("A", "init", [[FutureRef("B")]], after=["C"])
        m.contract("B")

    g = build_graph(build_module("M", define), resolver)
    assert g.dependencies("M#A") == {"M#C"}
    assert g.nodes["M#A"].args == ({"peers": [NodeRef("M#C"), "B"]}, ["literal", {"x": 1}])
    assert g.dependencies("M#A.init") == {"M#A", "M#B", "M#C"}
    assert g.nodes["M#A.init"].args == ([NodeRef("M#B")],)


def test_dangling_reference_names_the_missing_component(resolver):
    mod = module_from_dict(
        {
            "name": "M",
            "intents": [
                {"kind": "deploy", "name": "Registry", "contractId": "A", "args": [{"toNode": "Identity"}]}
            ],
        }
    )
    with pytest.raises(DanglingReferenceError) as ei:
        build_graph(mod, resolver)
    assert ei.value.name == "Identity"
    assert ei.value.referenced_by == "M#Registry"
    assert "Identity" in str(ei.value)


@pytest.mark.asyncio
async def test_dangling_reference_makes_zero_network_calls(resolver, network, journal):
    def define(m):
        m.contract("A")
        m.call("Ghost", "poke")

    with pytest.raises(DanglingReferenceError) as ei:
        await deploy(build_module("M", define), resolver=resolver, network=network, journal=journal)
    assert ei.value.name == "Ghost"
    assert network.submissions == []
    assert journal.records() == {}


def test_self_reference_is_dangling(resolver):
    with pytest.raises(DanglingReferenceError):
        build_graph(build_module("M", lambda m: m.contract("A", [FutureRef("A")])), resolver)
    with pytest.raises(DanglingReferenceError):
        build_graph(build_module("M", lambda m: m.contract("A", after=["A"])), resolver)


def test_call_output_cannot_be_used_as_an_address(resolver):
    def define(m):
        mgr = m.contract("Manager")
        set_owner = m.call(mgr, "setOwner", ["0x" + "00" * 20])
        m.contract("A", [set_owner])

    with pytest.raises(ModuleDefinitionError, match="calls produce no address"):
        build_graph(build_module("M", define), resolver)


def test_call_can_order_after_another_call(resolver):
    def define(m):
        mgr = m.contract("Manager")
        first = m.call(mgr, "setOwner", ["0x1"])
        m.call(mgr, "setOwner", ["0x2"], after=[first])

    g = build_graph(build_module("M", define), resolver)
    assert g.dependencies("M#Manager.setOwner_1") == {"M#Manager", "M#Manager.setOwner"}


def test_duplicate_names_are_rejected(resolver):
    def define(m):
        m.contract("A")
        m.contract("A")

    with pytest.raises(ModuleDefinitionError, match="duplicate"):
        build_graph(build_module("M", define), resolver)


def test_unknown_artifact_fails_fast(resolver):
    with pytest.raises(UnknownArtifact) as ei:
        build_graph(build_module("M", lambda m: m.contract("NotCompiled")), resolver)
    assert ei.value.contract_id == "NotCompiled"


def test_unknown_method_is_rejected_when_abi_is_known(resolver):
    def define(m):
        m.call(m.contract("Manager"), "renounce")

    with pytest.raises(ModuleDefinitionError, match="renounce"):
        build_graph(build_module("M", define), resolver)


def test_parameters_are_substituted(resolver):
    def define(m):
        m.contract("A", [m.get_parameter("fee"), m.get_parameter("cap", 100)])

    g = build_graph(build_module("M", define), resolver, {"fee": 7})
    assert g.nodes["M#A"].args == (7, 100)

    with pytest.raises(ModuleDefinitionError, match="fee"):
        build_graph(build_module("M", define), resolver)


def test_contract_at_nodes(resolver):
    def define(m):
        usdc = m.contract_at("Token", m.get_parameter("usdc"), id="Usdc")
        m.contract("A", [usdc])

    g = build_graph(build_module("M", define), resolver, {"usdc": "0x" + "ab" * 20})
    node = g.nodes["M#Usdc"]
    assert isinstance(node, ContractAtNode)
    assert node.address == "0x" + "ab" * 20
    assert g.dependencies("M#A") == {"M#Usdc"}

    with pytest.raises(ModuleDefinitionError, match="contractAt"):
        build_graph(
            build_module("M", lambda m: m.contract_at("Token", m.contract("A"), id="T")),
            resolver,
        )


def test_fingerprint_tracks_definition_and_bytecode(resolver):
    base = build_graph(build_module("M", lambda m: m.contract("A", [1])), resolver)
    other_args = build_graph(build_module("M", lambda m: m.contract("A", [2])), resolver)
    assert base.nodes["M#A"].fingerprint != other_args.nodes["M#A"].fingerprint

    from omni_ignition.artifacts import Artifact, StaticArtifactResolver

    rebuilt = StaticArtifactResolver({"A": Artifact("A", bytecode="0xdeadbeef")})
    new_code = build_graph(build_module("M", lambda m: m.contract("A", [1])), rebuilt)
    assert base.nodes["M#A"].fingerprint != new_code.nodes["M#A"].fingerprint


def test_non_finite_builder_and_parameter_values_are_rejected(resolver):
    with pytest.raises(ModuleDefinitionError, match="non-finite"):
        build_graph(build_module("M", lambda m: m.contract("A", [float("inf")])), resolver)
    with pytest.raises(ModuleDefinitionError, match="non-finite"):
        build_graph(
            build_module("M", lambda m: m.contract("A", [m.get_parameter("fee")])),
            resolver,
            {"fee": float("nan")},
        )
