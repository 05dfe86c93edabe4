# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from netform.config.loader import load_config
from netform.config.nodes import parse_nodes_flag
from netform.errors import ConfigurationError
from netform.logging.log import init_logging
from netform.network.strategies import describe
from netform.observers.console import ConsoleObserver
from netform.observers.dispatcher import EventBus
from netform.observers.events import new_ctx
from netform.observers.jsonfile import JsonFileObserver
from netform.observers.logger import LoggerObserver
from netform.orchestrator import EXIT_CONFIG, Orchestrator
from netform.topology.presets import DEFAULT_NODES, build_preset, preset_names


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="netform: cluster formation tests across virtual network topologies")


def _resolve_topology(topology: Optional[str]) -> Optional[str]:
    if topology is None:
        return None
    if topology not in preset_names():
        raise typer.BadParameter(
            f"Unknown topology '{topology}'. Valid topologies: {', '.join(preset_names())}"
        )
    return topology


def _load(config: Optional[Path]):
    try:
        return load_config(config)
    except ConfigurationError as exc:
        typer.secho(f"configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_CONFIG)


def _nodes(value: Optional[str]):
    try:
        return parse_nodes_flag(value)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc))


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def run(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Run file (YAML)"),
    topology: Optional[str] = typer.Option(None, "--topology", "-t", help="flat, vlan or bonded-vlan"),
    nodes: Optional[str] = typer.Option(
        None,
        "--nodes",
        help="Node role map, e.g. server-1=server:primary,server-2=server,agent-1=agent",
    ),
    script: Optional[Path] = typer.Option(
        None, "--script", help="Python file with run(context) replacing the default verification"
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Global timeout in seconds"),
    bond_failover: bool = typer.Option(False, "--bond-failover", help="Also exercise bond failover"),
    keep: bool = typer.Option(False, "--keep", help="Leave VMs running afterwards"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir"),
    run_id: Optional[str] = typer.Option(
        None, "--run-id", help="Name this run (log, timeline and diagnostics paths); random by default"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Boot the fleet, form the cluster and verify it."""
    topology = _resolve_topology(topology)
    node_specs = _nodes(nodes)
    cfg = _load(config)

    base_dir = log_dir or cfg.log_dir
    logger, run_id, log_path = init_logging(base_dir=base_dir, verbose=verbose, run_id=run_id)
    run_dir = log_path.parent

    typer.echo("")
    typer.secho("netform run started", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    typer.echo("")

    bus = EventBus(
        observers=[
            ConsoleObserver(),
            LoggerObserver(logger),
            JsonFileObserver(run_dir / f"{run_id}.jsonl"),
        ],
        ctx=new_ctx(topology or cfg.topology, run_id=run_id),
    )

    orchestrator = Orchestrator(
        cfg,
        bus=bus,
        nodes=node_specs,
        topology=topology,
        script=script,
        bond_failover=bond_failover,
        overall_timeout=timeout,
        diagnostics_dir=run_dir / run_id,
        teardown=not keep,
    )
    result = orchestrator.run()

    for phase in result.timeline:
        mark = "ok" if phase.ok else "FAILED"
        typer.echo(f"  {phase.name:<14} {mark:<7} {phase.duration_ms / 1000:>8.1f}s")
    for bundle in result.diagnostics:
        if bundle.path:
            typer.echo(f"  diagnostics: {bundle.path}")

    if result.error is not None:
        typer.secho(f"{type(result.error).__name__}: {result.error}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=result.exit_code)


@app.command()
def plan(
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Run file (YAML)"),
    topology: Optional[str] = typer.Option(None, "--topology", "-t"),
    nodes: Optional[str] = typer.Option(None, "--nodes"),
):
    """Print the per-node network commands without booting anything."""
    topology = _resolve_topology(topology)
    node_specs = _nodes(nodes)
    cfg = _load(config)

    try:
        plans = Orchestrator(cfg, nodes=node_specs, topology=topology).plan()
    except ConfigurationError as exc:
        typer.secho(f"configuration error: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=EXIT_CONFIG)

    for node, commands in plans.items():
        typer.secho(f"# {node}", bold=True)
        typer.echo(describe(commands))
        typer.echo("")


@app.command()
def profiles(
    name: Optional[str] = typer.Argument(None, help="Show one preset in detail"),
):
    """List the topology presets, or show one."""
    if name is None:
        for preset in preset_names():
            p = build_preset(preset, DEFAULT_NODES)
            typer.echo(f"{preset:<12} {', '.join(f'{s}={i}' for s, i in p.interfaces().items())}")
        return

    try:
        p = build_preset(name, DEFAULT_NODES)
    except ConfigurationError as exc:
        raise typer.BadParameter(str(exc))

    typer.secho(f"{p.name} ({p.kind})", bold=True)
    if p.trunk:
        typer.echo(f"  trunk      : {p.trunk}")
    bond = p.bond_spec()
    if bond:
        typer.echo(
            f"  bond       : {bond.name} = {'+'.join(bond.members)} "
            f"({bond.mode}, miimon {bond.monitor_interval_ms}, primary {bond.primary})"
        )
    for semantic, iface in p.interfaces().items():
        tag = p.vlan_tag(semantic)
        typer.echo(
            f"  {semantic:<10} : {iface:<10} {p.network_for(semantic)}"
            + (f"  vlan {tag}" if tag is not None else "")
        )
    for node in p.nodes():
        typer.echo(f"  {node:<10} : " + ", ".join(f"{s}={ip}" for s, ip in p.addresses[node].items()))


if __name__ == "__main__":
    app()
