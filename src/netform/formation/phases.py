# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/formation/phases.py

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from netform.config.models import TimeoutsConfig
from netform.config.nodes import NodeSpec, agents_of, primary_of, secondaries_of
from netform.errors import FleetError, FormationTimeoutError, NetformError
from netform.fleet.interface import FleetManager
from netform.network.commands import NetworkTranscript
from netform.network.configurator import NetworkConfigurator
from netform.observers.dispatcher import EventBus
from netform.topology.profile import TopologyProfile

from .service import ServiceController
from .state import NodeState, NodeStateMachine
from .token import ClusterToken, JoinRequest

log = logging.getLogger("netform")


@dataclass
class PhaseResult:
    name: str
    ok: bool = True
    nodes: List[str] = field(default_factory=list)
    duration_ms: int = 0
    detail: Optional[str] = None
    error: Optional[str] = None


@dataclass
class FormationContext:
    """
    Everything the phases share. The token is threaded through here
    explicitly: TokenPhase writes it once, the join phases read it.
    """

    nodes: List[NodeSpec]
    profile: TopologyProfile
    fleet: FleetManager
    service: ServiceController
    configurator: NetworkConfigurator
    timeouts: TimeoutsConfig
    api_port: int
    states: NodeStateMachine
    cancel: threading.Event = field(default_factory=threading.Event)
    bus: Optional[EventBus] = None
    token: Optional[ClusterToken] = None
    transcripts: Dict[str, NetworkTranscript] = field(default_factory=dict)
    current_node: Optional[str] = None

    @property
    def primary(self) -> NodeSpec:
        return primary_of(self.nodes)

    @property
    def secondaries(self) -> List[NodeSpec]:
        return secondaries_of(self.nodes)

    @property
    def agents(self) -> List[NodeSpec]:
        return agents_of(self.nodes)

    @property
    def names(self) -> List[str]:
        return [n.name for n in self.nodes]

    def role_of(self, node: str) -> Optional[str]:
        for n in self.nodes:
            if n.name == node:
                return n.role
        return None

    def join_request(self, node: str) -> JoinRequest:
        if self.token is None:
            raise NetformError(f"{node}: cannot join before the cluster token is read")
        return JoinRequest(
            node=node,
            token=self.token,
            primary=self.primary.name,
            port=self.api_port,
            profile=self.profile,
        )

    def wait(self, node: str, phase: str, predicate: Callable[[], bool], timeout: float, what: str) -> None:
        log.info(f"[{node}] waiting up to {timeout:.0f}s for {what}")
        if not self.fleet.wait_for_condition(node, predicate, timeout, self.cancel):
            raise FormationTimeoutError(node, phase, f"{what} not reached within {timeout:.0f}s")


class Phase:
    name = "phase"

    def nodes(self, ctx: FormationContext) -> List[str]:
        return ctx.names

    def run(self, ctx: FormationContext) -> PhaseResult:
        raise NotImplementedError


# ------------------ boot & network ------------------

class BootPhase(Phase):
    """Power on every VM at once, then wait for each exec channel."""

    name = "boot"

    def run(self, ctx: FormationContext) -> PhaseResult:
        with ThreadPoolExecutor(max_workers=len(ctx.nodes)) as pool:
            futures = {pool.submit(ctx.fleet.boot, n): n.name for n in ctx.nodes}
            for fut in as_completed(futures):
                ctx.current_node = futures[fut]
                fut.result()
                log.info(f"[{ctx.current_node}] boot requested")

        for node in ctx.names:
            ctx.current_node = node
            ctx.wait(node, self.name, _answers(ctx.fleet, node), ctx.timeouts.boot, "exec channel")
        return PhaseResult(self.name, nodes=ctx.names)


def _answers(fleet: FleetManager, node: str) -> Callable[[], bool]:
    def _probe() -> bool:
        try:
            return fleet.exec(node, "true").ok
        except FleetError as exc:
            log.debug(f"[{node}] exec channel not up yet: {exc}")
            return False

    return _probe


class NetworkPhase(Phase):
    name = "network"

    def run(self, ctx: FormationContext) -> PhaseResult:
        for node in ctx.names:
            ctx.current_node = node
            ctx.transcripts[node] = ctx.configurator.apply(node)
            ctx.states.transition(node, NodeState.NETWORK_CONFIGURED)
        return PhaseResult(self.name, nodes=ctx.names, detail=f"{ctx.profile.kind} applied")


# ------------------ primary & token ------------------

class PrimaryInitPhase(Phase):
    """Port listening, then /readyz, then Ready in its own registry."""

    name = "primary-init"

    def nodes(self, ctx: FormationContext) -> List[str]:
        return [ctx.primary.name]

    def run(self, ctx: FormationContext) -> PhaseResult:
        p = ctx.primary.name
        svc = ctx.service
        ctx.current_node = p

        svc.prepare(p)
        svc.configure_server(p, p)
        ctx.states.transition(p, NodeState.SERVICE_STARTING)
        svc.start(p, svc.cfg.server_unit)

        log.info(f"[{p}] waiting up to {ctx.timeouts.api_port:.0f}s for port {ctx.api_port}")
        if not ctx.fleet.wait_for_port(p, ctx.api_port, ctx.timeouts.api_port, ctx.cancel):
            raise FormationTimeoutError(p, self.name, f"API port {ctx.api_port} not listening")
        # Listening is not serving: consensus may still be warming up.
        ctx.wait(p, self.name, lambda: svc.api_ready(p), ctx.timeouts.readyz, "API /readyz")
        ctx.states.transition(p, NodeState.JOINED)

        ctx.wait(p, self.name, lambda: svc.node_ready(p, p), ctx.timeouts.join, "Ready in registry")
        ctx.states.transition(p, NodeState.READY)
        return PhaseResult(self.name, nodes=[p], detail=ctx.profile.api_endpoint(p, ctx.api_port))


class TokenPhase(Phase):
    name = "token"

    def nodes(self, ctx: FormationContext) -> List[str]:
        return [ctx.primary.name]

    def run(self, ctx: FormationContext) -> PhaseResult:
        p = ctx.primary.name
        ctx.current_node = p
        ctx.wait(p, self.name, lambda: ctx.service.token_present(p), ctx.timeouts.readyz, "join token file")
        ctx.token = ctx.service.read_token(p)
        return PhaseResult(self.name, nodes=[p], detail=f"token {ctx.token.fingerprint}")


# ------------------ joins ------------------

class _JoinPhase(Phase):
    def members(self, ctx: FormationContext) -> List[NodeSpec]:
        raise NotImplementedError

    def nodes(self, ctx: FormationContext) -> List[str]:
        return [n.name for n in self.members(ctx)]

    def configure(self, ctx: FormationContext, join: JoinRequest) -> str:
        """Render and write the env file; returns the unit to start."""
        raise NotImplementedError

    def run(self, ctx: FormationContext) -> PhaseResult:
        p = ctx.primary.name
        svc = ctx.service
        for spec in self.members(ctx):
            node = spec.name
            ctx.current_node = node
            join = ctx.join_request(node)

            svc.prepare(node)
            unit = self.configure(ctx, join)
            ctx.states.transition(node, NodeState.SERVICE_STARTING)
            svc.start(node, unit)

            ctx.wait(node, self.name, lambda: node in svc.registry(p), ctx.timeouts.join, f"{node} registered")
            ctx.states.transition(node, NodeState.JOINED)
            ctx.wait(node, self.name, lambda: svc.node_ready(p, node), ctx.timeouts.join, f"{node} Ready")
            ctx.states.transition(node, NodeState.READY)
        return PhaseResult(self.name, nodes=self.nodes(ctx))


class ServerJoinPhase(_JoinPhase):
    name = "server-join"

    def members(self, ctx: FormationContext) -> List[NodeSpec]:
        return ctx.secondaries

    def configure(self, ctx: FormationContext, join: JoinRequest) -> str:
        ctx.service.configure_server(join.node, ctx.primary.name, join)
        return ctx.service.cfg.server_unit


class AgentJoinPhase(_JoinPhase):
    """Agents only join a complete control plane."""

    name = "agent-join"

    def members(self, ctx: FormationContext) -> List[NodeSpec]:
        return ctx.agents

    def run(self, ctx: FormationContext) -> PhaseResult:
        servers = [n.name for n in ctx.nodes if n.is_server]
        pending = [s for s in servers if ctx.states.state(s) is not NodeState.READY]
        if pending:
            raise NetformError(f"agents cannot join while servers are not READY: {', '.join(pending)}")
        return super().run(ctx)

    def configure(self, ctx: FormationContext, join: JoinRequest) -> str:
        ctx.service.configure_agent(join)
        return ctx.service.cfg.agent_unit


# ------------------ steady state ------------------

class ClusterReadyPhase(Phase):
    """Every node Ready in the registry, then the bundled system pods Running."""

    name = "cluster-ready"

    def run(self, ctx: FormationContext) -> PhaseResult:
        p = ctx.primary.name
        ctx.current_node = p
        not_ready = [n for n in ctx.names if ctx.states.state(n) is not NodeState.READY]
        if not_ready:
            raise NetformError(f"nodes not READY: {', '.join(not_ready)}")

        expected = len(ctx.nodes)
        seen = {"count": 0}

        def _all_ready() -> bool:
            seen["count"] = ctx.service.ready_count(p)
            return seen["count"] == expected

        if not ctx.fleet.wait_for_condition(p, _all_ready, ctx.timeouts.cluster, ctx.cancel):
            raise FormationTimeoutError(
                p, self.name, f"registry reports {seen['count']}/{expected} nodes Ready"
            )

        components = ctx.service.cfg.system_components
        for component, selector in components.items():
            ctx.wait(
                p, self.name, lambda: ctx.service.pods_running(p, selector), ctx.timeouts.cluster,
                f"{component} pods Running",
            )
            log.info(f"[{p}] {component} is running")
        detail = f"{expected}/{expected} nodes Ready"
        if components:
            detail += f", {len(components)} system components Running"
        return PhaseResult(self.name, nodes=ctx.names, detail=detail)


def default_phases() -> List[Phase]:
    return [
        BootPhase(),
        NetworkPhase(),
        PrimaryInitPhase(),
        TokenPhase(),
        ServerJoinPhase(),
        AgentJoinPhase(),
        ClusterReadyPhase(),
    ]
