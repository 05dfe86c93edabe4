# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/orchestrator.py

from __future__ import annotations

import importlib.util
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Dict, List, Optional, Tuple

from netform.config.models import RunConfig
from netform.config.nodes import NodeSpec, primary_of, validate_node_set
from netform.diagnostics.collector import DiagnosticsBundle, DiagnosticsCollector
from netform.errors import (
    ConfigurationError,
    FleetError,
    FormationTimeoutError,
    HealthCheckError,
    NetformError,
    NetworkApplyError,
)
from netform.fleet.interface import FleetManager
from netform.fleet.ssh import SshFleet
from netform.formation.driver import ClusterFormationDriver
from netform.formation.phases import FormationContext, PhaseResult
from netform.formation.service import ServiceController
from netform.formation.state import NodeStateMachine
from netform.health.failover import BondFailoverCheck, FailoverResult
from netform.health.verifier import HealthReport, HealthVerifier
from netform.network.commands import NetCommand
from netform.network.configurator import NetworkConfigurator
from netform.observers.dispatcher import EventBus
from netform.observers.events import RunSummary
from netform.topology.profile import TopologyProfile

log = logging.getLogger("netform")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFIG = 2
EXIT_NETWORK = 3
EXIT_TIMEOUT = 4
EXIT_HEALTH = 5


def exit_code_for(exc: Optional[BaseException]) -> int:
    if exc is None:
        return EXIT_OK
    if isinstance(exc, ConfigurationError):
        return EXIT_CONFIG
    if isinstance(exc, NetworkApplyError):
        return EXIT_NETWORK
    if isinstance(exc, FormationTimeoutError):
        return EXIT_TIMEOUT
    if isinstance(exc, HealthCheckError):
        return EXIT_HEALTH
    return EXIT_ERROR


@dataclass
class ScriptContext:
    """What a custom verification script's run(context) receives."""

    nodes: List[NodeSpec]
    profile: TopologyProfile
    fleet: FleetManager
    service: ServiceController
    verifier: HealthVerifier
    primary: str


@dataclass
class RunResult:
    run_id: str
    timeline: List[PhaseResult] = field(default_factory=list)
    states: Dict[str, str] = field(default_factory=dict)
    health: Optional[HealthReport] = None
    failover: Optional[FailoverResult] = None
    diagnostics: List[DiagnosticsBundle] = field(default_factory=list)
    error: Optional[BaseException] = None
    booted: bool = False

    @property
    def passed(self) -> bool:
        return self.error is None

    @property
    def verdict(self) -> str:
        return "PASS" if self.passed else "FAIL"

    @property
    def exit_code(self) -> int:
        return exit_code_for(self.error)


def load_script(path: Path) -> ModuleType:
    """Import a verification script; it must define run(context)."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"test script {path} does not exist")
    spec = importlib.util.spec_from_file_location(f"netform_script_{path.stem}", path)
    if spec is None or spec.loader is None:
        raise ConfigurationError(f"cannot import test script {path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:
        raise ConfigurationError(f"test script {path} failed to import: {exc}") from exc
    if not callable(getattr(module, "run", None)):
        raise ConfigurationError(f"test script {path} has no run(context) function")
    return module


class Orchestrator:
    """
    One end-to-end run: validate, boot, configure, form, verify, tear down.

    Configuration is validated completely before the first VM is booted.
    """

    def __init__(
        self,
        cfg: RunConfig,
        *,
        fleet: Optional[FleetManager] = None,
        bus: Optional[EventBus] = None,
        nodes: Optional[List[NodeSpec]] = None,
        topology: Optional[str] = None,
        script: Optional[Path] = None,
        bond_failover: bool = False,
        overall_timeout: Optional[float] = None,
        diagnostics_dir: Optional[Path] = None,
        teardown: bool = True,
    ):
        self.cfg = cfg
        self.fleet = fleet
        self.bus = bus or EventBus()
        self.nodes_override = nodes
        self.topology = topology
        self.script_path = script
        self.bond_failover = bond_failover
        self.overall_timeout = overall_timeout if overall_timeout is not None else cfg.timeouts.overall
        self.diagnostics_dir = diagnostics_dir
        self.teardown = teardown

    # ------------------ validation ------------------

    def prepare(self) -> Tuple[List[NodeSpec], TopologyProfile]:
        nodes = self.nodes_override or self.cfg.node_specs()
        validate_node_set(nodes)

        cfg = self.cfg
        if self.topology is not None:
            cfg = cfg.model_copy(update={"topology": self.topology, "profile": None})
        profile = cfg.topology_profile([n.name for n in nodes])
        profile.validate_nodes(n.name for n in nodes)
        return nodes, profile

    def plan(self) -> Dict[str, List[NetCommand]]:
        nodes, profile = self.prepare()
        configurator = NetworkConfigurator(profile, fleet=None, managed_daemons=self.cfg.managed_daemons)
        return {n.name: configurator.plan(n.name) for n in nodes}

    # ------------------ run ------------------

    def run(self) -> RunResult:
        result = RunResult(run_id=self.bus.ctx.get("run_id", ""))
        try:
            nodes, profile = self.prepare()
            script = load_script(self.script_path) if self.script_path else None
            if self.bond_failover and profile.bond_spec() is None:
                raise ConfigurationError(f"--bond-failover needs a bonded topology, not '{profile.kind}'")
        except ConfigurationError as exc:
            log.error(f"configuration error: {exc}")
            result.error = exc
            self._summary(result)
            return result

        self.bus.ctx["topology"] = profile.name
        fleet = self.fleet or SshFleet(self.cfg.fleet, poll_interval=self.cfg.timeouts.poll_interval)
        cancel = threading.Event()
        timer = threading.Timer(self.overall_timeout, self._expire, args=(cancel,))
        timer.daemon = True

        t = self.cfg.timeouts
        collector = DiagnosticsCollector(fleet, profile, self.cfg.service, bus=self.bus, output_dir=self.diagnostics_dir)
        service = ServiceController(
            fleet, profile, self.cfg.service, exec_attempts=t.exec_attempts, exec_settle=t.exec_settle
        )
        configurator = NetworkConfigurator(
            profile,
            fleet,
            managed_daemons=self.cfg.managed_daemons,
            diagnostics=collector,
            bus=self.bus,
            exec_attempts=t.exec_attempts,
            exec_settle=t.exec_settle,
        )
        states = NodeStateMachine([n.name for n in nodes], bus=self.bus)
        ctx = FormationContext(
            nodes=nodes,
            profile=profile,
            fleet=fleet,
            service=service,
            configurator=configurator,
            timeouts=t,
            api_port=self.cfg.service.api_port,
            states=states,
            cancel=cancel,
            bus=self.bus,
        )
        driver = ClusterFormationDriver(ctx, collector)
        verifier = HealthVerifier(fleet, profile, bus=self.bus)

        timer.start()
        result.booted = True
        try:
            driver.run()
            primary = primary_of(nodes).name
            if script is not None:
                result.health = self._run_script(script, ScriptContext(nodes, profile, fleet, service, verifier, primary))
            else:
                result.health = verifier.verify([n.name for n in nodes])
            if self.bond_failover:
                check = BondFailoverCheck(fleet, profile, service, timeout=t.cluster, cancel=cancel)
                result.failover = check.run(primary, primary, len(nodes))
                result.health.findings.extend(result.failover.findings)
                if not result.failover.ok:
                    states.fail(result.failover.node)
            if result.health.findings:
                err = HealthCheckError(result.health.findings)
                err.report = result.health
                for node in self._nodes_in(result.health.findings, nodes):
                    result.diagnostics.append(collector.collect(node, error=err))
                raise err
        except NetformError as exc:
            result.error = exc
            if exc.diagnostics is not None:
                result.diagnostics.append(exc.diagnostics)
        finally:
            timer.cancel()
            result.timeline = list(driver.timeline)
            result.states = states.snapshot()
            if self.teardown:
                self._teardown(fleet, [n.name for n in nodes])
            self._summary(result)
        return result

    # ------------------ helpers ------------------

    def _expire(self, cancel: threading.Event) -> None:
        log.error(f"global timeout of {self.overall_timeout:.0f}s reached, cancelling")
        cancel.set()

    def _run_script(self, script: ModuleType, context: ScriptContext) -> HealthReport:
        log.info(f"running custom verification {script.__name__}")
        try:
            outcome = script.run(context)
        except AssertionError as exc:
            return HealthReport(findings=[f"script assertion failed: {exc}"], checks=1)
        if isinstance(outcome, HealthReport):
            return outcome
        if outcome is False:
            return HealthReport(findings=["script reported failure"], checks=1)
        return HealthReport(checks=1)

    def _nodes_in(self, findings: List[str], nodes: List[NodeSpec]) -> List[str]:
        named = {f.split(":", 1)[0] for f in findings}
        return [n.name for n in nodes if n.name in named]

    def _teardown(self, fleet: FleetManager, names: List[str]) -> None:
        def _stop(node: str) -> None:
            try:
                fleet.shutdown(node)
            except FleetError as exc:
                log.warning(f"[{node}] shutdown failed: {exc}")

        with ThreadPoolExecutor(max_workers=max(1, len(names))) as pool:
            list(pool.map(_stop, names))
        close = getattr(fleet, "close", None)
        if callable(close):
            close()

    def _summary(self, result: RunResult) -> None:
        log.info(f"verdict: {result.verdict}")
        self.bus.publish(
            RunSummary,
            verdict=result.verdict,
            phases=len(result.timeline),
            error=str(result.error) if result.error else None,
        )
