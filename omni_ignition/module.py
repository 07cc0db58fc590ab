"""
omni_ignition.module
====================

Declarative deployment modules.

A module is an ordered list of intents:

- DeployIntent      deploy contract `contract_id` under `name` with constructor args
- CallIntent        call `method` on the contract produced by `target`
- ContractAtIntent  bind `name` to an already deployed contract at a fixed address

Arguments are literals (JSON-like values; lists and dicts may nest references)
or reference tokens:

- FutureRef(name)          the address produced by another intent
- AccountRef(index)        one of the network's accounts
- ParameterRef(name, ...)  a deployment parameter, substituted at graph build

Declaration collects tokens only; nothing is resolved until
`omni_ignition.graph.build_graph` runs, so a FutureRef may name an intent that
is declared later in the module.

Two ways to write a module
--------------------------
Python (builder):

    def _define(m):
        identity = m.contract("MizuPassIdentity")
        registry = m.contract("EventRegistry", [identity])
        m.call(registry, "setPlatformWallet", [m.get_parameter("wallet")])

    module = build_module("MizuPassModule", _define)

JSON (see `load_module`):

    {"name": "MizuPassModule",
     "intents": [
        {"kind": "deploy", "name": "MizuPassIdentity", "contractId": "MizuPassIdentity"},
        {"kind": "deploy", "name": "EventRegistry", "contractId": "EventRegistry",
         "args": [{"toNode": "MizuPassIdentity"}]},
        {"kind": "call", "target": {"toNode": "EventRegistry"},
         "method": "setPlatformWallet", "args": [{"parameter": "wallet"}]}
     ]}
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ModuleDefinitionError

_MISSING: Any = object()


# ---------------------------------------------------------------------------
# Reference tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FutureRef:
    """Deferred reference to the output of the intent declared as `name`."""

    name: str


@dataclass(frozen=True)
class AccountRef:
    index: int


@dataclass(frozen=True)
class ParameterRef:
    name: str
    default: Any = _MISSING

    @property
    def has_default(self) -> bool:
        return self.default is not _MISSING


Ref = Union[FutureRef, AccountRef, ParameterRef]


# ---------------------------------------------------------------------------
# Intents
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeployIntent:
    name: str
    contract_id: str
    args: Tuple[Any, ...] = ()
    after: Tuple[FutureRef, ...] = ()
    kind: str = field(default="deploy", init=False)


@dataclass(frozen=True)
class CallIntent:
    target: FutureRef
    method: str
    args: Tuple[Any, ...] = ()
    id: Optional[str] = None
    after: Tuple[FutureRef, ...] = ()
    kind: str = field(default="call", init=False)


@dataclass(frozen=True)
class ContractAtIntent:
    name: str
    contract_id: str
    address: Any
    kind: str = field(default="contractAt", init=False)


Intent = Union[DeployIntent, CallIntent, ContractAtIntent]


@dataclass(frozen=True)
class Module:
    name: str
    intents: Tuple[Intent, ...]

    def __post_init__(self) -> None:
        if not self.name or "#" in self.name:
            raise ModuleDefinitionError(f"invalid module name {self.name!r}")


# ---------------------------------------------------------------------------
# Builder (phase one: collect intents, hand out reference tokens)
# ---------------------------------------------------------------------------


def default_call_name(target_name: str, method: str, occurrence: int) -> str:
    """Local name of the `occurrence`-th (0-based) un-named call of `method` on a target."""
    base = f"{target_name}.{method}"
    return base if occurrence == 0 else f"{base}_{occurrence}"


def _as_future(value: Any, what: str, module: str) -> FutureRef:
    if isinstance(value, FutureRef):
        return value
    if isinstance(value, str):
        return FutureRef(value)
    raise ModuleDefinitionError(f"{what} must be a future or a name, got {value!r}", module)


class ModuleBuilder:
    """Collects intents for `build_module`; each method returns a FutureRef."""

    def __init__(self, name: str):
        self.name = name
        self._intents: List[Intent] = []
        self._call_counts: Dict[Tuple[str, str], int] = {}

    def contract(
        self,
        contract_id: str,
        args: Sequence[Any] = (),
        *,
        id: Optional[str] = None,
        after: Sequence[Any] = (),
    ) -> FutureRef:
        name = id or contract_id
        self._intents.append(
            DeployIntent(
                name=name,
                contract_id=contract_id,
                args=tuple(args),
                after=tuple(_as_future(a, "after entry", self.name) for a in after),
            )
        )
        return FutureRef(name)

    def call(
        self,
        target: Any,
        method: str,
        args: Sequence[Any] = (),
        *,
        id: Optional[str] = None,
        after: Sequence[Any] = (),
    ) -> FutureRef:
        target_ref = _as_future(target, "call target", self.name)
        intent = CallIntent(
            target=target_ref,
            method=method,
            args=tuple(args),
            id=id,
            after=tuple(_as_future(a, "after entry", self.name) for a in after),
        )
        self._intents.append(intent)
        if id:
            return FutureRef(id)
        key = (target_ref.name, method)
        occurrence = self._call_counts.get(key, 0)
        self._call_counts[key] = occurrence + 1
        return FutureRef(default_call_name(target_ref.name, method, occurrence))

    def contract_at(self, contract_id: str, address: Any, *, id: Optional[str] = None) -> FutureRef:
        name = id or contract_id
        self._intents.append(ContractAtIntent(name=name, contract_id=contract_id, address=address))
        return FutureRef(name)

    def get_account(self, index: int) -> AccountRef:
        if int(index) < 0:
            raise ModuleDefinitionError(f"account index must be >= 0, got {index}", self.name)
        return AccountRef(int(index))

    def get_parameter(self, name: str, default: Any = _MISSING) -> ParameterRef:
        return ParameterRef(name, default)

    def build(self) -> Module:
        return Module(name=self.name, intents=tuple(self._intents))


def build_module(name: str, define: Callable[[ModuleBuilder], Any]) -> Module:
    """Run `define` against a fresh builder and return the collected module."""
    m = ModuleBuilder(name)
    define(m)
    return m.build()


# ---------------------------------------------------------------------------
# JSON module files
# ---------------------------------------------------------------------------


class _RefModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    to_node: str = Field(..., alias="toNode")


class _DeploySpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    kind: Literal["deploy"]
    name: Optional[str] = None
    contract_id: str = Field(..., alias="contractId")
    args: List[Any] = Field(default_factory=list)
    after: List[str] = Field(default_factory=list)


class _CallSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    kind: Literal["call"]
    target: Union[_RefModel, str]
    method: str
    args: List[Any] = Field(default_factory=list)
    id: Optional[str] = None
    after: List[str] = Field(default_factory=list)


class _ContractAtSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    kind: Literal["contractAt"]
    name: Optional[str] = None
    contract_id: str = Field(..., alias="contractId")
    address: Any


_IntentSpec = Annotated[
    Union[_DeploySpec, _CallSpec, _ContractAtSpec], Field(discriminator="kind")
]


class _ModuleSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    description: Optional[str] = None
    intents: List[_IntentSpec] = Field(default_factory=list)


def parse_arg(value: Any) -> Any:
    """
    Turn a JSON argument into a literal or reference token.

    `{"toNode": n}`, `{"account": i}` and `{"parameter": p[, "default": v]}`
    are references; any other object or list is a literal walked recursively.
    """
    if isinstance(value, dict):
        keys = set(value)
        if keys == {"toNode"}:
            return FutureRef(str(value["toNode"]))
        if keys == {"account"}:
            idx = value["account"]
            if not isinstance(idx, int) or isinstance(idx, bool) or idx < 0:
                raise ModuleDefinitionError(f"account index must be a non-negative integer, got {idx!r}")
            return AccountRef(idx)
        if keys in ({"parameter"}, {"parameter", "default"}):
            return ParameterRef(str(value["parameter"]), value.get("default", _MISSING))
        return {k: parse_arg(v) for k, v in value.items()}
    if isinstance(value, list):
        return [parse_arg(v) for v in value]
    if isinstance(value, float) and not math.isfinite(value):
        raise ModuleDefinitionError(f"non-finite number {value!r} is not a valid argument")
    return value


_KINDS = {"deploy": "deploy", "call": "call", "contractat": "contractAt"}


def _normalise_kinds(data: Any) -> Any:
    # "Deploy" / "Call" / "ContractAt" are accepted as well
    if not isinstance(data, Mapping) or not isinstance(data.get("intents"), list):
        return data
    intents = []
    for item in data["intents"]:
        if isinstance(item, Mapping) and isinstance(item.get("kind"), str):
            item = {**item, "kind": _KINDS.get(item["kind"].lower(), item["kind"])}
        intents.append(item)
    return {**data, "intents": intents}


def module_from_dict(data: Mapping[str, Any]) -> Module:
    """Validate a decoded JSON module and convert it into a Module."""
    try:
        doc = _ModuleSpec.model_validate(_normalise_kinds(data))
    except ValidationError as exc:
        raise ModuleDefinitionError(f"invalid module definition: {exc}") from exc

    intents: List[Intent] = []
    for item in doc.intents:
        if isinstance(item, _DeploySpec):
            intents.append(
                DeployIntent(
                    name=item.name or item.contract_id,
                    contract_id=item.contract_id,
                    args=tuple(parse_arg(a) for a in item.args),
                    after=tuple(FutureRef(a) for a in item.after),
                )
            )
        elif isinstance(item, _CallSpec):
            target = item.target.to_node if isinstance(item.target, _RefModel) else item.target
            intents.append(
                CallIntent(
                    target=FutureRef(target),
                    method=item.method,
                    args=tuple(parse_arg(a) for a in item.args),
                    id=item.id,
                    after=tuple(FutureRef(a) for a in item.after),
                )
            )
        else:
            intents.append(
                ContractAtIntent(
                    name=item.name or item.contract_id,
                    contract_id=item.contract_id,
                    address=parse_arg(item.address),
                )
            )
    return Module(name=doc.name, intents=tuple(intents))


def load_module(path: Union[str, Path]) -> Module:
    """Load a JSON module file."""
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ModuleDefinitionError(f"module file not found: {p}") from None
    except ValueError as exc:
        raise ModuleDefinitionError(f"module file {p} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ModuleDefinitionError(f"module file {p} must contain a JSON object")
    return module_from_dict(data)


__all__ = [
    "FutureRef",
    "AccountRef",
    "ParameterRef",
    "Ref",
    "DeployIntent",
    "CallIntent",
    "ContractAtIntent",
    "Intent",
    "Module",
    "ModuleBuilder",
    "default_call_name",
    "build_module",
    "parse_arg",
    "module_from_dict",
    "load_module",
]
