# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/formation/state.py

from __future__ import annotations

import threading
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from netform.errors import InvalidTransitionError
from netform.observers.dispatcher import EventBus
from netform.observers.events import NodeStateChanged


class NodeState(str, Enum):
    BOOTING = "BOOTING"
    NETWORK_CONFIGURED = "NETWORK_CONFIGURED"
    SERVICE_STARTING = "SERVICE_STARTING"
    JOINED = "JOINED"
    READY = "READY"
    FAILED = "FAILED"


ORDER: Tuple[NodeState, ...] = (
    NodeState.BOOTING,
    NodeState.NETWORK_CONFIGURED,
    NodeState.SERVICE_STARTING,
    NodeState.JOINED,
    NodeState.READY,
)
TERMINAL = frozenset({NodeState.FAILED})


def can_transition(current: NodeState, target: NodeState) -> bool:
    """One step forward, or FAILED from any state but FAILED itself."""
    if current in TERMINAL:
        return False
    if target is NodeState.FAILED:
        return True
    if current is NodeState.READY:
        return False
    return ORDER.index(target) == ORDER.index(current) + 1


class NodeStateMachine:
    """
    Per-node lifecycle. Only the formation driver mutates it.
    """

    def __init__(self, nodes: Iterable[str], bus: Optional[EventBus] = None):
        self._states: Dict[str, NodeState] = {n: NodeState.BOOTING for n in nodes}
        self._history: List[Tuple[str, NodeState, NodeState]] = []
        self._lock = threading.Lock()
        self.bus = bus

    def state(self, node: str) -> NodeState:
        return self._states[node]

    def transition(self, node: str, target: NodeState) -> None:
        with self._lock:
            current = self._states[node]
            if not can_transition(current, target):
                raise InvalidTransitionError(node, current.value, target.value)
            self._states[node] = target
            self._history.append((node, current, target))
        if self.bus is not None:
            self.bus.publish(NodeStateChanged, node=node, previous=current.value, current=target.value)

    def fail(self, node: str) -> bool:
        """Mark FAILED, READY nodes included. Returns whether it changed."""
        with self._lock:
            if node not in self._states or self._states[node] in TERMINAL:
                return False
        self.transition(node, NodeState.FAILED)
        return True

    def all_in(self, state: NodeState, nodes: Optional[Iterable[str]] = None) -> bool:
        names = list(nodes) if nodes is not None else list(self._states)
        return all(self._states[n] is state for n in names)

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return {n: s.value for n, s in self._states.items()}

    def history(self) -> List[Tuple[str, NodeState, NodeState]]:
        with self._lock:
            return list(self._history)
