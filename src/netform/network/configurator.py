# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/network/configurator.py

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from netform.errors import FleetError, NetworkApplyError
from netform.fleet.interface import ExecResult, FleetManager
from netform.observers.dispatcher import EventBus
from netform.observers.events import CommandExecuted
from netform.topology.profile import TopologyProfile
from netform.utils.retry import RetryError, with_retry

from .commands import NetCommand, NetworkTranscript
from .strategies import DEFAULT_MANAGED_DAEMONS, strategy_for

log = logging.getLogger("netform")


class NetworkConfigurator:
    """
    Applies a TopologyProfile to nodes over the fleet exec channel.

    The first non-tolerated failure stops the node: diagnostics are
    collected with the transcript so far and NetworkApplyError is raised
    (with the bundle attached as `.diagnostics`).
    """

    def __init__(
        self,
        profile: TopologyProfile,
        fleet: FleetManager,
        *,
        managed_daemons: Sequence[str] = DEFAULT_MANAGED_DAEMONS,
        diagnostics=None,
        bus: Optional[EventBus] = None,
        exec_attempts: int = 3,
        exec_settle: float = 2.0,
    ):
        self.profile = profile
        self.fleet = fleet
        self.managed_daemons = list(managed_daemons)
        self.diagnostics = diagnostics
        self.bus = bus
        self.exec_attempts = exec_attempts
        self.exec_settle = exec_settle

    def plan(self, node: str) -> List[NetCommand]:
        self.profile.validate_nodes([node])
        return strategy_for(self.profile.kind).plan(node, self.profile, self.managed_daemons)

    def _exec(self, node: str, cmd: str) -> ExecResult:
        # Only the transport is retried; a nonzero exit is a real answer.
        return with_retry(
            lambda: self.fleet.exec(node, cmd),
            attempts=self.exec_attempts,
            settle_seconds=self.exec_settle,
            retry_on=(FleetError,),
            on_retry=lambda n, exc: log.warning(f"[{node}] exec attempt {n} failed: {exc}"),
        )

    def apply(self, node: str) -> NetworkTranscript:
        transcript = NetworkTranscript(node=node)
        steps = self.plan(node)
        log.info(f"[{node}] applying {self.profile.kind} network ({len(steps)} commands)")

        for step in steps:
            try:
                res = self._exec(node, step.cmd)
            except RetryError as exc:
                transcript.add(step, -1, str(exc))
                self._fail(node, step, -1, str(exc), transcript)

            transcript.add(step, res.exit_code, res.output)
            if self.bus is not None:
                self.bus.publish(
                    CommandExecuted,
                    node=node,
                    command=step.cmd,
                    exit_code=res.exit_code,
                    tolerated=step.tolerate_failure and not res.ok,
                )

            if res.ok:
                continue
            if step.tolerate_failure:
                log.debug(f"[{node}] tolerated failure ({res.exit_code}): {step.description}")
                continue
            self._fail(node, step, res.exit_code, res.output, transcript)

        log.info(f"[{node}] network configured")
        return transcript

    def _fail(self, node: str, step: NetCommand, exit_code: int, output: str, transcript: NetworkTranscript):
        log.error(f"[{node}] {step.description} failed (exit {exit_code})")
        err = NetworkApplyError(node, step.cmd, exit_code, output)
        err.transcript = transcript
        if self.diagnostics is not None:
            err.diagnostics = self.diagnostics.collect(node, transcript=transcript, error=err)
        raise err
