# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/errors.py

from __future__ import annotations

from typing import List, Optional


class NetformError(RuntimeError):
    """Base class for every failure raised by netform."""

    # DiagnosticsBundle attached once collected for the failing node
    diagnostics = None


# ---------------------------------------------------------------------
# Configuration (raised before any VM boots)
# ---------------------------------------------------------------------
class ConfigurationError(NetformError):
    """Bad topology profile or node set. Never raised after boot."""


class MissingAddressError(ConfigurationError):
    def __init__(self, node: str, semantic: str):
        self.node = node
        self.semantic = semantic
        super().__init__(f"node '{node}' has no address for semantic interface '{semantic}'")


class DuplicateVlanTagError(ConfigurationError):
    def __init__(self, tag: int, semantics: List[str]):
        self.tag = tag
        self.semantics = semantics
        super().__init__(f"VLAN tag {tag} assigned to more than one interface: {', '.join(semantics)}")


class InvalidVlanTagError(ConfigurationError):
    def __init__(self, semantic: str, tag: object):
        self.semantic = semantic
        self.tag = tag
        super().__init__(f"VLAN tag {tag!r} for '{semantic}' is outside 1-4094")


class InvalidBondSpecError(ConfigurationError):
    """Raised for empty, duplicated or management-overlapping bond members."""


class PrimaryNodeError(ConfigurationError):
    """Raised when the server set does not contain exactly one primary."""


# ---------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------
class FleetError(NetformError):
    """The VM fleet backend could not boot, reach or stop a node."""


class WaitCancelledError(NetformError):
    def __init__(self, description: str):
        self.description = description
        super().__init__(f"wait for {description} cancelled")


class InvalidTransitionError(NetformError):
    def __init__(self, node: str, current: str, target: str):
        self.node = node
        self.current = current
        self.target = target
        super().__init__(f"{node}: illegal state transition {current} -> {target}")


class NetworkApplyError(NetformError):
    def __init__(self, node: str, command: str, exit_code: int, output: str):
        self.node = node
        self.command = command
        self.exit_code = exit_code
        self.output = output
        self.transcript = None
        super().__init__(f"{node}: '{command}' exited {exit_code}: {output.strip()[-500:]}")


class FormationTimeoutError(NetformError):
    def __init__(self, node: str, phase: str, detail: str = ""):
        self.node = node
        self.phase = phase
        self.detail = detail
        msg = f"{node} did not complete phase '{phase}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class HealthCheckError(NetformError):
    """Carries every failed post-formation assertion, not just the first."""

    report = None

    def __init__(self, findings: List[str]):
        self.findings = list(findings)
        super().__init__(
            f"{len(self.findings)} health check(s) failed:\n  - " + "\n  - ".join(self.findings)
        )


class DiagnosticsCollectionError(NetformError):
    """Best-effort only. Recorded in the bundle, never raised to callers."""

    def __init__(self, node: str, item: str, reason: str, cause: Optional[BaseException] = None):
        self.node = node
        self.item = item
        self.reason = reason
        self.cause = cause
        super().__init__(f"{node}: could not collect {item}: {reason}")
