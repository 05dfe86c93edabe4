# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/diagnostics/collector.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from netform.config.models import ServiceConfig
from netform.errors import DiagnosticsCollectionError
from netform.fleet.interface import FleetManager
from netform.observers.dispatcher import EventBus
from netform.observers.events import DiagnosticsCollected
from netform.topology.profile import TopologyProfile

log = logging.getLogger("netform")


@dataclass
class DiagnosticItem:
    name: str
    command: str
    exit_code: int
    output: str


@dataclass
class DiagnosticsBundle:
    """What we could gather from one node after a failure. May be partial."""

    node: str
    error: Optional[str] = None
    transcript: Optional[str] = None
    items: Dict[str, DiagnosticItem] = field(default_factory=dict)
    errors: List[DiagnosticsCollectionError] = field(default_factory=list)
    path: Optional[Path] = None

    @property
    def complete(self) -> bool:
        return not self.errors

    def render(self) -> str:
        out = [f"===== diagnostics: {self.node} ====="]
        if self.error:
            out += ["--- error ---", self.error]
        if self.transcript:
            out += ["--- network transcript ---", self.transcript]
        for item in self.items.values():
            out += [f"--- {item.name}: {item.command} (exit {item.exit_code}) ---", item.output.rstrip()]
        for err in self.errors:
            out.append(f"!!! {err}")
        return "\n".join(out) + "\n"


class DiagnosticsCollector:
    """
    Best-effort evidence gathering. collect() never raises: each item that
    cannot be fetched becomes a DiagnosticsCollectionError in the bundle.
    """

    def __init__(
        self,
        fleet: FleetManager,
        profile: TopologyProfile,
        service: ServiceConfig,
        *,
        bus: Optional[EventBus] = None,
        output_dir: Optional[Path] = None,
    ):
        self.fleet = fleet
        self.profile = profile
        self.service = service
        self.bus = bus
        self.output_dir = output_dir

    def _units(self, role: Optional[str]) -> List[str]:
        if role == "server":
            return [self.service.server_unit]
        if role == "agent":
            return [self.service.agent_unit]
        return [self.service.server_unit, self.service.agent_unit]

    def _commands(self, role: Optional[str]) -> List[Tuple[str, str]]:
        cmds: List[Tuple[str, str]] = []
        for unit in self._units(role):
            cmds.append((f"log:{unit}", f"journalctl -u {unit} -n {self.service.log_tail_lines} --no-pager"))
            cmds.append((f"status:{unit}", f"systemctl status {unit} --no-pager"))
        cmds += [
            ("addresses", "ip -br addr"),
            ("links", "ip -d link"),
            ("routes", "ip route"),
        ]
        bond = self.profile.bond_spec()
        if bond is not None:
            cmds.append(("bond", f"cat /proc/net/bonding/{bond.name}"))
        return cmds

    def collect(
        self,
        node: str,
        *,
        role: Optional[str] = None,
        transcript=None,
        error: Optional[BaseException] = None,
    ) -> DiagnosticsBundle:
        bundle = DiagnosticsBundle(node=node, error=str(error) if error else None)

        if transcript is not None:
            try:
                bundle.transcript = transcript.render()
            except Exception as exc:
                bundle.errors.append(DiagnosticsCollectionError(node, "transcript", str(exc), exc))

        for name, cmd in self._commands(role):
            try:
                res = self.fleet.exec(node, cmd)
            except Exception as exc:
                bundle.errors.append(DiagnosticsCollectionError(node, name, str(exc), exc))
                continue
            bundle.items[name] = DiagnosticItem(name=name, command=cmd, exit_code=res.exit_code, output=res.output)

        if self.output_dir is not None:
            try:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                path = self.output_dir / f"diagnostics-{node}.txt"
                path.write_text(bundle.render(), encoding="utf-8")
                bundle.path = path
            except Exception as exc:
                bundle.errors.append(DiagnosticsCollectionError(node, "bundle file", str(exc), exc))

        for err in bundle.errors:
            log.warning(f"[{node}] {err}")
        log.info(
            f"[{node}] diagnostics: {len(bundle.items)} item(s), {len(bundle.errors)} error(s)"
            + (f" -> {bundle.path}" if bundle.path else "")
        )
        if self.bus is not None:
            self.bus.publish(
                DiagnosticsCollected,
                node=node,
                items=sorted(bundle.items),
                errors=len(bundle.errors),
            )
        return bundle
