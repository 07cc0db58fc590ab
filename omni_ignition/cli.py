"""
omni-ignition command-line interface.

Commands:
  omni-ignition deploy MODULE_FILE   Build, plan and execute a module (resumable)
  omni-ignition plan MODULE_FILE     Print the execution batches; no network access
  omni-ignition status DEPLOYMENT_ID Show journal records and deployed addresses
  omni-ignition wipe DEPLOYMENT_ID NODE_ID
                                     Forget a non-confirmed node so it is retried
  omni-ignition version

MODULE_FILE is a JSON module (``*.json``) or a Python file defining a
module-level ``module`` (an omni_ignition.Module).

Configuration is resolved in this order (highest to lowest priority):
  1. Command-line flags (--rpc-url, --chain-id, ...)
  2. Environment variables (IGNITION_RPC_URL, IGNITION_CHAIN_ID, ...)
  3. `.env` in the working directory
  4. Built-in defaults (in-memory network, ./artifacts, ./ignition/deployments)

Exit codes for `deploy`: 0 success, 1 deployment failed or cancelled,
2 invalid module, parameters, artifacts or configuration.
"""

from __future__ import annotations

import asyncio
import importlib.util
import json
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from pydantic import ValidationError

from .artifacts import DirectoryArtifactResolver
from .config import Settings, get_settings
from .deploy import (
    DEPLOYED_ADDRESSES_FILENAME,
    deploy as run_deploy,
    load_parameters,
    make_network,
    open_journal,
    write_deployed_addresses,
)
from .engine import DeploymentResult
from .errors import (
    CyclicDependencyError,
    DeploymentCancelled,
    DeploymentFailed,
    IgnitionError,
    JournalError,
    ModuleDefinitionError,
    NetworkError,
    ReconciliationError,
    UnknownArtifact,
)
from .graph import build_graph
from .journal import Status
from .logging import setup_logging
from .module import Module, load_module
from .network import JsonRpcNetwork
from .planner import plan as make_plan
from .version import version as version_string

app = typer.Typer(
    name="omni-ignition",
    help="Declarative, resumable contract deployments",
    no_args_is_help=True,
    add_completion=False,
)

EXIT_FAILED = 1
EXIT_INVALID = 2

_INVALID_ERRORS = (
    ModuleDefinitionError,
    UnknownArtifact,
    CyclicDependencyError,
    ReconciliationError,
    JournalError,
)


def _pretty(obj: Any) -> str:
    return json.dumps(obj, indent=2, ensure_ascii=False)


def _fail(message: str, code: int) -> "typer.Exit":
    typer.echo(f"Error: {message}", err=True)
    return typer.Exit(code)


def _settings(**overrides: Any) -> Settings:
    try:
        settings = get_settings().with_overrides(**overrides)
    except ValidationError as exc:
        raise _fail(f"invalid configuration: {exc}", EXIT_INVALID)
    setup_logging(level=settings.log_level, log_format=settings.log_format)
    return settings


def _load_module_file(path: Path) -> Module:
    if path.suffix != ".py":
        return load_module(path)
    if not path.is_file():
        raise ModuleDefinitionError(f"module file not found: {path}")
    spec = importlib.util.spec_from_file_location(f"_ignition_module_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ModuleDefinitionError(f"cannot import module file {path}")
    py_mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(py_mod)
    module = getattr(py_mod, "module", None)
    if not isinstance(module, Module):
        raise ModuleDefinitionError(f"{path} does not define a module-level `module`")
    return module


def _records_view(settings: Settings, deployment_id: Optional[str]) -> Dict[str, Any]:
    journal = open_journal(settings, deployment_id)
    try:
        records = journal.records()
    finally:
        journal.close()
    return {nid: rec.to_dict() for nid, rec in records.items()}


async def _deploy(module: Module, settings: Settings, params: Dict[str, Any], deployment_id: Optional[str]) -> DeploymentResult:
    resolver = DirectoryArtifactResolver(settings.artifacts_dir)
    journal = open_journal(settings, deployment_id)
    network = make_network(settings)
    try:
        return await run_deploy(
            module,
            resolver=resolver,
            network=network,
            journal=journal,
            parameters=params,
            confirm_timeout_s=settings.confirm_timeout_s,
            max_concurrency=settings.max_concurrency,
        )
    finally:
        if isinstance(network, JsonRpcNetwork):
            await network.close()
        journal.close()


@app.command()
def deploy(
    module_file: Path = typer.Argument(..., help="Module file (.json or .py)"),
    network: Optional[str] = typer.Option(None, "--network", help="'memory' or a JSON-RPC network name"),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="Node JSON-RPC endpoint"),
    chain_id: Optional[str] = typer.Option(None, "--chain-id", help="Chain id (decimal or 0x-hex)"),
    artifacts: Optional[Path] = typer.Option(None, "--artifacts", help="Compiled artifacts directory"),
    deployments_dir: Optional[Path] = typer.Option(None, "--deployments-dir", help="Journal root directory"),
    parameters: Optional[Path] = typer.Option(None, "--parameters", help="Parameters JSON file"),
    deployment_id: Optional[str] = typer.Option(None, "--deployment-id", help="Defaults to chain-<chainId>"),
    journal: Optional[str] = typer.Option(None, "--journal", help="Journal backend: json or sqlite"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Receipt wait per node (seconds)"),
    concurrency: Optional[int] = typer.Option(None, "--concurrency", help="Max in-flight nodes per batch"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON instead of human-readable text"),
) -> None:
    """
    Deploy a module. Re-running with the same deployment id resumes it.

    Examples:
      omni-ignition deploy examples/mizupass.module.json --artifacts examples/artifacts
      omni-ignition deploy mod.json --network devnet --rpc-url http://127.0.0.1:8545 --parameters params.json
    """
    settings = _settings(
        network=network,
        rpc_url=rpc_url,
        chain_id=chain_id,
        artifacts_dir=artifacts,
        deployments_dir=deployments_dir,
        journal_backend=journal,
        confirm_timeout_s=timeout,
        max_concurrency=concurrency,
    )
    try:
        module = _load_module_file(module_file)
        params = load_parameters(parameters, module.name) if parameters else {}
        result = asyncio.run(_deploy(module, settings, params, deployment_id))
    except _INVALID_ERRORS as exc:
        raise _fail(str(exc), EXIT_INVALID)
    except (DeploymentFailed, DeploymentCancelled) as exc:
        if json_output:
            typer.echo(_pretty(_failure_view(exc)))
        raise _fail(str(exc), EXIT_FAILED)
    except NetworkError as exc:
        raise _fail(str(exc), EXIT_FAILED)

    out_path = settings.deployment_dir(deployment_id) / DEPLOYED_ADDRESSES_FILENAME
    write_deployed_addresses(out_path, result)

    if json_output:
        typer.echo(
            _pretty(
                {
                    "deploymentId": deployment_id or settings.default_deployment_id(),
                    "addresses": result.by_node_id,
                }
            )
        )
        return
    typer.echo(f"Deployed {module.name} ({len(result)} contracts)")
    for node_id, address in result.by_node_id.items():
        typer.echo(f"  {node_id:<40} {address}")
    typer.echo(f"Addresses written to {out_path}")


def _failure_view(exc: IgnitionError) -> Dict[str, Any]:
    if isinstance(exc, DeploymentFailed):
        return {
            "error": "DeploymentFailed",
            "batch": exc.batch_index,
            "failed": {nid: exc.errors.get(nid) for nid in exc.failed},
            "pending": exc.pending,
            "unresolved": {nid: str(err) for nid, err in exc.unresolved.items()},
        }
    assert isinstance(exc, DeploymentCancelled)
    return {"error": "DeploymentCancelled", "batch": exc.batch_index, "skipped": exc.skipped}


@app.command()
def plan(
    module_file: Path = typer.Argument(..., help="Module file (.json or .py)"),
    artifacts: Optional[Path] = typer.Option(None, "--artifacts", help="Compiled artifacts directory"),
    parameters: Optional[Path] = typer.Option(None, "--parameters", help="Parameters JSON file"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON instead of human-readable text"),
) -> None:
    """Print the execution batches for a module without touching any network."""
    settings = _settings(artifacts_dir=artifacts)
    try:
        module = _load_module_file(module_file)
        params = load_parameters(parameters, module.name) if parameters else {}
        graph = build_graph(module, DirectoryArtifactResolver(settings.artifacts_dir), params)
        execution_plan = make_plan(graph)
    except _INVALID_ERRORS as exc:
        raise _fail(str(exc), EXIT_INVALID)

    if json_output:
        typer.echo(_pretty({"module": module.name, "batches": execution_plan.to_list()}))
        return
    typer.echo(f"{module.name}: {len(graph)} nodes in {len(execution_plan)} batches")
    for i, batch in enumerate(execution_plan):
        typer.echo(f"  batch {i}:")
        for nid in batch:
            typer.echo(f"    - {nid} ({graph.nodes[nid].kind})")


@app.command()
def status(
    deployment_id: str = typer.Argument(..., help="Deployment id, e.g. chain-31337"),
    deployments_dir: Optional[Path] = typer.Option(None, "--deployments-dir", help="Journal root directory"),
    journal: Optional[str] = typer.Option(None, "--journal", help="Journal backend: json or sqlite"),
    json_output: bool = typer.Option(False, "--json", help="Output JSON instead of human-readable text"),
) -> None:
    """Show the journal of a deployment."""
    settings = _settings(deployments_dir=deployments_dir, journal_backend=journal)
    if not settings.deployment_dir(deployment_id).is_dir():
        raise _fail(f"no deployment {deployment_id!r} under {settings.deployments_dir}", EXIT_FAILED)
    try:
        records = _records_view(settings, deployment_id)
    except JournalError as exc:
        raise _fail(str(exc), EXIT_INVALID)
    addresses = {
        nid: rec["result"]
        for nid, rec in records.items()
        if rec["status"] == Status.CONFIRMED.value and isinstance(rec["result"], str)
    }

    if json_output:
        typer.echo(_pretty({"deploymentId": deployment_id, "records": records, "addresses": addresses}))
        return
    typer.echo(f"Deployment {deployment_id}: {len(records)} nodes")
    for nid, rec in records.items():
        line = f"  {nid:<40} {rec['status']:<10}"
        if rec.get("tx_hash"):
            line += f" tx={rec['tx_hash']}"
        if rec.get("error"):
            line += f" error={rec['error']}"
        typer.echo(line)
    if addresses:
        typer.echo("Addresses:")
        for nid, address in addresses.items():
            typer.echo(f"  {nid:<40} {address}")


@app.command()
def wipe(
    deployment_id: str = typer.Argument(..., help="Deployment id"),
    node_id: str = typer.Argument(..., help="Node id, e.g. MizuPassModule#EventRegistry"),
    deployments_dir: Optional[Path] = typer.Option(None, "--deployments-dir", help="Journal root directory"),
    journal: Optional[str] = typer.Option(None, "--journal", help="Journal backend: json or sqlite"),
) -> None:
    """Delete the journal record of a non-confirmed node so the next deploy retries it."""
    settings = _settings(deployments_dir=deployments_dir, journal_backend=journal)
    if not settings.deployment_dir(deployment_id).is_dir():
        raise _fail(f"no deployment {deployment_id!r} under {settings.deployments_dir}", EXIT_FAILED)
    try:
        store = open_journal(settings, deployment_id)
    except JournalError as exc:
        raise _fail(str(exc), EXIT_INVALID)
    try:
        rec = store.get(node_id)
        if rec is None:
            raise _fail(f"no record for {node_id!r}", EXIT_FAILED)
        if rec.status is Status.CONFIRMED:
            raise _fail(f"{node_id} is confirmed; refusing to wipe it", EXIT_FAILED)
        store.delete(node_id)
    finally:
        store.close()
    typer.echo(f"Wiped {node_id} ({rec.status.value}, {rec.attempts} attempts)")


@app.command()
def version() -> None:
    """Print the omni-ignition version."""
    typer.echo(version_string())


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
