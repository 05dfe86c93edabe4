# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/fleet/interface.py

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from netform.config.nodes import NodeSpec


@dataclass(frozen=True)
class ExecResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class FleetManager(Protocol):
    """
    What netform needs from the hypervisor side: power, an exec channel
    on the management interface, and bounded waits.
    """

    def boot(self, node: NodeSpec) -> None: ...

    def exec(self, node: str, cmd: str) -> ExecResult: ...

    def wait_for_port(
        self, node: str, port: int, timeout: float, cancel: Optional[threading.Event] = None
    ) -> bool: ...

    def wait_for_condition(
        self,
        node: str,
        predicate: Callable[[], bool],
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> bool: ...

    def shutdown(self, node: str) -> None: ...
