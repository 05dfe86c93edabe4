# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/health/verifier.py

from __future__ import annotations

import ipaddress
import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from netform.errors import FleetError, HealthCheckError
from netform.fleet.interface import ExecResult, FleetManager
from netform.observers.dispatcher import EventBus
from netform.observers.events import HealthCheckResult
from netform.topology.profile import TopologyProfile

log = logging.getLogger("netform")

_INET = re.compile(r"\binet (\d+\.\d+\.\d+\.\d+/\d+)")
_VLAN_ID = re.compile(r"vlan protocol 802\.1[qQ] id (\d+)|vlan id (\d+)")


def parse_inet(output: str) -> List[str]:
    """IPv4 CIDRs from `ip -o -4 addr show dev X`."""
    return _INET.findall(output)


def parse_vlan_id(output: str) -> Optional[int]:
    """VLAN id from `ip -d link show X`, None when the link is untagged."""
    m = _VLAN_ID.search(output)
    if not m:
        return None
    return int(m.group(1) or m.group(2))


@dataclass
class HealthReport:
    findings: List[str] = field(default_factory=list)     # hard: fail the run
    warnings: List[str] = field(default_factory=list)     # soft: logged only
    checks: int = 0

    @property
    def passed(self) -> bool:
        return not self.findings


class HealthVerifier:
    """
    Post-formation assertions about the network each node actually has.

    Hard checks accumulate into one HealthCheckError. Isolation and
    storage reachability are soft: warnings in the report, never raised.
    """

    def __init__(self, fleet: FleetManager, profile: TopologyProfile, *, bus: Optional[EventBus] = None):
        self.fleet = fleet
        self.profile = profile
        self.bus = bus

    def _exec(self, node: str, cmd: str) -> Optional[ExecResult]:
        try:
            return self.fleet.exec(node, cmd)
        except FleetError as exc:
            log.warning(f"[{node}] '{cmd}' unreachable: {exc}")
            return None

    # ------------------ hard checks ------------------

    def _check_interface(self, node: str, semantic: str, report: HealthReport) -> None:
        iface = self.profile.interface_for(semantic)
        expected = self.profile.cidr_for(node, semantic)

        report.checks += 1
        res = self._exec(node, f"ip -o -4 addr show dev {iface}")
        if res is None or not res.ok:
            report.findings.append(f"{node}: interface {iface} ({semantic}) does not exist")
            return

        actual = parse_inet(res.output)
        if expected not in actual:
            report.findings.append(f"{node}: {iface} lacks {expected} (has {', '.join(actual) or 'nothing'})")
        for cidr in actual:
            if cidr == expected:
                continue
            owner = self._semantic_of(cidr)
            if owner and owner != semantic:
                report.findings.append(f"{node}: {iface} carries {cidr} from the {owner} network")
            else:
                report.findings.append(f"{node}: {iface} carries unexpected address {cidr}")

        tag = self.profile.vlan_tag(semantic)
        if tag is None:
            return
        report.checks += 1
        res = self._exec(node, f"ip -d link show {iface}")
        found = parse_vlan_id(res.output) if res is not None and res.ok else None
        if found != tag:
            report.findings.append(f"{node}: {iface} has vlan id {found}, expected {tag}")

    def _check_bond(self, node: str, report: HealthReport) -> None:
        bond = self.profile.bond_spec()
        if bond is None:
            return
        sysfs = f"/sys/class/net/{bond.name}/bonding"

        report.checks += 1
        res = self._exec(node, f"cat {sysfs}/mode")
        mode = res.output.split()[0] if res is not None and res.ok and res.output.split() else None
        if mode != bond.mode:
            report.findings.append(f"{node}: {bond.name} mode is {mode}, expected {bond.mode}")

        if bond.mode != "active-backup":
            return
        report.checks += 1
        res = self._exec(node, f"cat {sysfs}/active_slave")
        active = res.output.strip() if res is not None and res.ok else ""
        if active not in bond.members:
            report.findings.append(f"{node}: {bond.name} has no active member (got {active or 'none'})")

    # ------------------ soft checks ------------------

    def _check_isolation(self, node: str, report: HealthReport) -> None:
        res = self._exec(node, "ip route show")
        if res is None or not res.ok:
            report.warnings.append(f"{node}: could not read routing table")
            return
        routes = res.output.splitlines()
        for semantic in self.profile.semantics():
            iface = self.profile.interface_for(semantic)
            net = str(self.profile.network_for(semantic))
            report.checks += 1
            if not any(r.startswith(f"{net} ") and f" dev {iface} " in f"{r} " for r in routes):
                report.warnings.append(f"{node}: no route for {net} on {iface} ({semantic})")
            for r in routes:
                if r.startswith(f"{net} ") and f"dev {iface} " not in f"{r} ":
                    report.warnings.append(f"{node}: {semantic} network leaks onto another device: {r.strip()}")

    def _check_reachability(self, node: str, peers: Sequence[str], report: HealthReport) -> None:
        for semantic in self.profile.semantics():
            if semantic == self.profile.cluster_semantic:
                continue
            iface = self.profile.interface_for(semantic)
            for peer in peers:
                if peer == node:
                    continue
                ip = self.profile.address_for(peer, semantic)
                report.checks += 1
                res = self._exec(node, f"ping -c 1 -W 2 -I {iface} {ip}")
                if res is None or not res.ok:
                    report.warnings.append(f"{node}: cannot reach {peer} on {semantic} ({ip})")

    # ------------------ entry points ------------------

    def _semantic_of(self, cidr: str) -> Optional[str]:
        ip = ipaddress.IPv4Interface(cidr).ip
        for semantic in self.profile.semantics():
            if ip in self.profile.network_for(semantic):
                return semantic
        return None

    def verify(self, nodes: Sequence[str]) -> HealthReport:
        report = HealthReport()
        for node in nodes:
            for semantic in self.profile.semantics():
                self._check_interface(node, semantic, report)
            self._check_bond(node, report)
            self._check_isolation(node, report)
            self._check_reachability(node, nodes, report)

        for w in report.warnings:
            log.warning(f"soft check: {w}")
        for f in report.findings:
            log.error(f"health: {f}")
        log.info(
            f"health: {report.checks} checks, {len(report.findings)} finding(s), {len(report.warnings)} warning(s)"
        )
        if self.bus is not None:
            self.bus.publish(
                HealthCheckResult,
                passed=report.passed,
                findings=list(report.findings),
                warnings=list(report.warnings),
            )
        return report

    def assert_healthy(self, nodes: Sequence[str]) -> HealthReport:
        report = self.verify(nodes)
        if report.findings:
            err = HealthCheckError(report.findings)
            err.report = report
            raise err
        return report
