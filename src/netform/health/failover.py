# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/health/failover.py

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from netform.errors import ConfigurationError, FleetError
from netform.fleet.interface import FleetManager
from netform.formation.service import ServiceController
from netform.topology.profile import TopologyProfile
from netform.utils.wait import poll_until

log = logging.getLogger("netform")


@dataclass
class FailoverResult:
    node: str
    before: Optional[str] = None
    after: Optional[str] = None
    findings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings


class BondFailoverCheck:
    """
    Take the active bond member down on one node and check that the bond
    moves to another member while the cluster stays Ready. The member is
    always brought back up.
    """

    def __init__(
        self,
        fleet: FleetManager,
        profile: TopologyProfile,
        service: ServiceController,
        *,
        timeout: float = 60.0,
        interval: float = 2.0,
        cancel: Optional[threading.Event] = None,
    ):
        if profile.bond_spec() is None:
            raise ConfigurationError(f"{profile.name}: bond failover needs a bonded topology")
        self.fleet = fleet
        self.profile = profile
        self.service = service
        self.timeout = timeout
        self.interval = interval
        self.cancel = cancel

    def _active(self, node: str) -> Optional[str]:
        bond = self.profile.bond_spec()
        try:
            res = self.fleet.exec(node, f"cat /sys/class/net/{bond.name}/bonding/active_slave")
        except FleetError as exc:
            log.debug(f"[{node}] active member probe failed: {exc}")
            return None
        name = res.output.strip() if res.ok else ""
        return name if name in bond.members else None

    def run(self, node: str, primary: str, expected_nodes: int) -> FailoverResult:
        result = FailoverResult(node=node, before=self._active(node))
        if result.before is None:
            result.findings.append(f"{node}: bond has no active member before failover")
            return result

        log.info(f"[{node}] failover: taking {result.before} down")
        try:
            res = self.fleet.exec(node, f"ip link set {result.before} down")
        except FleetError as exc:
            result.findings.append(f"{node}: could not take {result.before} down: {exc}")
            return result
        if not res.ok:
            result.findings.append(f"{node}: could not take {result.before} down: {res.output.strip()}")
            return result

        try:
            moved = poll_until(
                lambda: (self._active(node) or result.before) != result.before,
                timeout=self.timeout,
                interval=self.interval,
                cancel=self.cancel,
                description=f"{node} bond failover",
            )
            result.after = self._active(node)
            if not moved:
                result.findings.append(f"{node}: bond stayed on {result.before} after it went down")

            still_ready = poll_until(
                lambda: self.service.ready_count(primary) == expected_nodes,
                timeout=self.timeout,
                interval=self.interval,
                cancel=self.cancel,
                description="cluster Ready during failover",
            )
            if not still_ready:
                result.findings.append(f"cluster lost Ready nodes while {node} ran on {result.after}")
        finally:
            log.info(f"[{node}] failover: restoring {result.before}")
            self._restore(node, result.before)

        if result.ok:
            log.info(f"[{node}] failover ok: {result.before} -> {result.after}")
        return result

    def _restore(self, node: str, member: str) -> None:
        try:
            res = self.fleet.exec(node, f"ip link set {member} up")
        except FleetError as exc:
            log.warning(f"[{node}] could not restore {member}: {exc}")
            return
        if not res.ok:
            log.warning(f"[{node}] could not restore {member}: {res.output.strip()}")
