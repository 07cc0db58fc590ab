"""
High-level deployment runner.

Glues the pieces together the way the CLI (and most callers) use them:

    module   = load_module("ignition/modules/mizupass.module.json")
    resolver = DirectoryArtifactResolver("artifacts")
    journal  = open_journal(settings, "chain-31337")
    result   = await deploy(module, resolver=resolver, network=net, journal=journal)
    write_deployed_addresses(journal_dir / "deployed_addresses.json", result)

Each deployment id owns a directory under ``settings.deployments_dir``
holding the journal and ``deployed_addresses.json``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .artifacts import ArtifactResolver
from .config import Settings
from .engine import DeploymentResult, ExecutionEngine
from .errors import ModuleDefinitionError
from .graph import build_graph
from .journal import Journal, JsonFileJournal, SqliteJournal
from .logging import bind_deployment_context, clear_deployment_context, get_logger
from .module import Module
from .network import JsonRpcConfig, JsonRpcNetwork, InMemoryNetwork, Network
from .planner import plan
from .utils import atomic_write_text

log = get_logger(__name__)

DEPLOYED_ADDRESSES_FILENAME = "deployed_addresses.json"


async def deploy(
    module: Module,
    *,
    resolver: ArtifactResolver,
    network: Network,
    journal: Journal,
    parameters: Optional[Mapping[str, Any]] = None,
    confirm_timeout_s: float = 120.0,
    max_concurrency: int = 4,
    engine: Optional[ExecutionEngine] = None,
) -> DeploymentResult:
    """
    Build, plan and execute `module`.

    All validation (dangling references, unknown artifacts, cycles, changed
    nodes already on chain) happens before the first network call. Pass an
    `engine` to keep a handle for `engine.cancel()`.
    """
    graph = build_graph(module, resolver, parameters)
    execution_plan = plan(graph)
    if engine is None:
        engine = ExecutionEngine(
            network,
            journal,
            resolver,
            confirm_timeout_s=confirm_timeout_s,
            max_concurrency=max_concurrency,
        )
    bind_deployment_context(module=module.name)
    try:
        log.info("deployment_started", nodes=len(graph), batches=len(execution_plan))
        return await engine.run(execution_plan)
    finally:
        clear_deployment_context("module")


def open_journal(settings: Settings, deployment_id: Optional[str] = None) -> Journal:
    """Open (creating if needed) the journal for `deployment_id` with the configured backend."""
    directory = settings.deployment_dir(deployment_id)
    if settings.journal_backend == "sqlite":
        return SqliteJournal(directory)
    return JsonFileJournal(directory)


def make_network(settings: Settings) -> Union[InMemoryNetwork, JsonRpcNetwork]:
    if settings.is_memory_network:
        return InMemoryNetwork()
    return JsonRpcNetwork(
        JsonRpcConfig(
            url=settings.rpc_url,
            timeout_s=settings.request_timeout_s,
            max_retries=settings.max_retries,
            backoff_base_s=settings.backoff_base_s,
            poll_interval_s=settings.poll_interval_s,
        )
    )


def write_deployed_addresses(path: Union[str, Path], result: DeploymentResult) -> Path:
    """Atomically write ``{"Module#Name": "0x..."}`` for every deployed contract."""
    text = json.dumps(result.by_node_id, indent=2, sort_keys=True) + "\n"
    return atomic_write_text(path, text)


def load_parameters(path: Union[str, Path], module_name: str) -> Dict[str, Any]:
    """
    Read a parameters file ``{"<Module>": {"name": value, ...}}`` and return the
    entry for `module_name` (empty when the module has none).
    """
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise ModuleDefinitionError(f"parameters file not found: {p}", module_name) from None
    except ValueError as exc:
        raise ModuleDefinitionError(f"parameters file {p} is not valid JSON: {exc}", module_name) from exc
    if not isinstance(data, dict):
        raise ModuleDefinitionError(f"parameters file {p} must contain a JSON object", module_name)
    params = data.get(module_name, {})
    if not isinstance(params, dict):
        raise ModuleDefinitionError(f"parameters for {module_name!r} must be an object", module_name)
    return params


__all__ = [
    "DEPLOYED_ADDRESSES_FILENAME",
    "deploy",
    "open_journal",
    "make_network",
    "write_deployed_addresses",
    "load_parameters",
]
