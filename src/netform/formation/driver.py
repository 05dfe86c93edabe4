# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/formation/driver.py

from __future__ import annotations

import logging
import time
from dataclasses import replace
from typing import List, Optional

from netform.diagnostics.collector import DiagnosticsCollector
from netform.errors import FormationTimeoutError, WaitCancelledError
from netform.observers.events import PhaseFailed, PhaseStarted, PhaseSucceeded

from .phases import FormationContext, Phase, PhaseResult, default_phases

log = logging.getLogger("netform")


class ClusterFormationDriver:
    """
    Runs the formation phases in order and keeps the phase timeline.

    On the first failure: diagnostics for the failing node, node -> FAILED,
    the shared cancel event is set so any other wait stops, and the
    original error is re-raised. There is no rollback.
    """

    def __init__(
        self,
        ctx: FormationContext,
        diagnostics: DiagnosticsCollector,
        phases: Optional[List[Phase]] = None,
    ):
        self.ctx = ctx
        self.diagnostics = diagnostics
        self.phases = phases if phases is not None else default_phases()
        self.timeline: List[PhaseResult] = []

    def _publish(self, event_cls, **fields) -> None:
        if self.ctx.bus is not None:
            self.ctx.bus.publish(event_cls, **fields)

    def run(self) -> List[PhaseResult]:
        for phase in self.phases:
            start = time.monotonic()
            log.info(f"=== phase {phase.name} ===")
            self._publish(PhaseStarted, phase=phase.name, nodes=phase.nodes(self.ctx))
            try:
                if self.ctx.cancel.is_set():
                    raise WaitCancelledError(f"start of phase {phase.name}")
                result = phase.run(self.ctx)
            except WaitCancelledError as exc:
                node = self.ctx.current_node or self.ctx.primary.name
                err = FormationTimeoutError(node, phase.name, f"cancelled ({exc.description})")
                self._fail(phase, err, start)
                raise err from exc
            except Exception as exc:
                self._fail(phase, exc, start)
                raise

            result = replace(result, duration_ms=_ms_since(start))
            self.timeline.append(result)
            log.info(f"phase {phase.name} ok in {result.duration_ms} ms")
            self._publish(PhaseSucceeded, phase=phase.name, duration_ms=result.duration_ms, detail=result.detail)
        return self.timeline

    def _fail(self, phase: Phase, exc: BaseException, start: float) -> None:
        node = getattr(exc, "node", None) or self.ctx.current_node
        duration = _ms_since(start)
        log.error(f"phase {phase.name} failed on {node or '?'}: {exc}")

        if node in self.ctx.names:
            if getattr(exc, "diagnostics", None) is None:
                bundle = self.diagnostics.collect(
                    node,
                    role=self.ctx.role_of(node),
                    transcript=self.ctx.transcripts.get(node) or getattr(exc, "transcript", None),
                    error=exc,
                )
                exc.diagnostics = bundle
            self.ctx.states.fail(node)

        self.ctx.cancel.set()
        self.timeline.append(
            PhaseResult(phase.name, ok=False, nodes=[node] if node else [], duration_ms=duration, error=str(exc))
        )
        self._publish(PhaseFailed, phase=phase.name, node=node, error=str(exc), duration_ms=duration)


def _ms_since(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
