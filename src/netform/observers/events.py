# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single run
    topology: str     # flat / vlan / bonded-vlan / custom profile name

    def dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["event"] = type(self).__name__
        return d


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(topology: str, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": now_ts(),
        "run_id": run_id or str(uuid.uuid4()),
        "topology": topology,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Same run context, fresh timestamp."""
    return {**ctx, "ts": now_ts()}


# ---------------------------------------------------------------------
# Phase timeline
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    phase: str
    nodes: List[str]

@dataclass(frozen=True)
class PhaseSucceeded(BaseEvent):
    phase: str
    duration_ms: int
    detail: Optional[str] = None

@dataclass(frozen=True)
class PhaseFailed(BaseEvent):
    phase: str
    node: Optional[str]
    error: str
    duration_ms: int


# ---------------------------------------------------------------------
# Node lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class NodeStateChanged(BaseEvent):
    node: str
    previous: str
    current: str

@dataclass(frozen=True)
class CommandExecuted(BaseEvent):
    node: str
    command: str
    exit_code: int
    tolerated: bool = False


# ---------------------------------------------------------------------
# Verification & diagnostics
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HealthCheckResult(BaseEvent):
    passed: bool
    findings: List[str]
    warnings: List[str]

@dataclass(frozen=True)
class DiagnosticsCollected(BaseEvent):
    node: str
    items: List[str]
    errors: int

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    verdict: str         # "PASS" | "FAIL"
    phases: int
    error: Optional[str] = None
