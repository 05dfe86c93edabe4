# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/observers/console.py
from __future__ import annotations

import typer

from .events import (
    BaseEvent,
    DiagnosticsCollected,
    HealthCheckResult,
    NodeStateChanged,
    PhaseFailed,
    PhaseStarted,
    PhaseSucceeded,
    RunSummary,
)


class ConsoleObserver:
    """Human-readable phase timeline on stdout."""

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, PhaseStarted):
            typer.echo(f"[{event.phase}] starting ({', '.join(event.nodes)})")
        elif isinstance(event, PhaseSucceeded):
            extra = f" - {event.detail}" if event.detail else ""
            typer.secho(f"[{event.phase}] ok in {event.duration_ms / 1000:.1f}s{extra}", fg=typer.colors.GREEN)
        elif isinstance(event, PhaseFailed):
            where = f" on {event.node}" if event.node else ""
            typer.secho(f"[{event.phase}] FAILED{where}: {event.error}", fg=typer.colors.RED)
        elif isinstance(event, NodeStateChanged):
            typer.echo(f"  {event.node}: {event.previous} -> {event.current}")
        elif isinstance(event, HealthCheckResult):
            for w in event.warnings:
                typer.secho(f"  warning: {w}", fg=typer.colors.YELLOW)
            for f in event.findings:
                typer.secho(f"  finding: {f}", fg=typer.colors.RED)
        elif isinstance(event, DiagnosticsCollected):
            typer.echo(f"  diagnostics for {event.node}: {len(event.items)} item(s), {event.errors} error(s)")
        elif isinstance(event, RunSummary):
            color = typer.colors.GREEN if event.verdict == "PASS" else typer.colors.RED
            typer.secho(f"\n{event.verdict}", bold=True, fg=color)
