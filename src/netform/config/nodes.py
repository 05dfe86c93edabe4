# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/config/nodes.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from netform.errors import ConfigurationError, PrimaryNodeError

SERVER = "server"
AGENT = "agent"
ROLES = (SERVER, AGENT)


@dataclass(frozen=True)
class ResourceLimits:
    memory_mb: int = 3072
    cpus: int = 2
    disk_mb: int = 20480


@dataclass(frozen=True)
class NodeSpec:
    """
    A VM that becomes one cluster node.
    """
    name: str                     # VM name and k8s node name (e.g. 'server-1')
    role: str                     # 'server' | 'agent'
    primary: bool = False         # initializes the cluster (servers only)
    resources: ResourceLimits = field(default_factory=ResourceLimits)
    image: Optional[str] = None

    @property
    def is_server(self) -> bool:
        return self.role == SERVER

    @property
    def is_agent(self) -> bool:
        return self.role == AGENT


def validate_node_set(nodes: Sequence[NodeSpec]) -> None:
    """
    Exactly one primary, and it must be a server.
    """
    if not nodes:
        raise ConfigurationError("no nodes defined")

    names = [n.name for n in nodes]
    dupes = sorted({n for n in names if names.count(n) > 1})
    if dupes:
        raise ConfigurationError(f"duplicate node names: {', '.join(dupes)}")

    for n in nodes:
        if n.role not in ROLES:
            raise ConfigurationError(f"{n.name}: unknown role '{n.role}' (expected server or agent)")
        if n.primary and n.role != SERVER:
            raise PrimaryNodeError(f"{n.name}: only a server can be primary")

    primaries = [n.name for n in nodes if n.primary]
    if len(primaries) != 1:
        raise PrimaryNodeError(
            f"expected exactly one primary server, found {len(primaries)}"
            + (f" ({', '.join(primaries)})" if primaries else "")
        )


def primary_of(nodes: Sequence[NodeSpec]) -> NodeSpec:
    validate_node_set(nodes)
    return next(n for n in nodes if n.primary)


def secondaries_of(nodes: Sequence[NodeSpec]) -> List[NodeSpec]:
    return [n for n in nodes if n.is_server and not n.primary]


def agents_of(nodes: Sequence[NodeSpec]) -> List[NodeSpec]:
    return [n for n in nodes if n.is_agent]


def parse_nodes_flag(value: Optional[str]) -> Optional[List[NodeSpec]]:
    """
    Parse --nodes.

    --nodes server-1=server:primary,server-2=server,agent-1=agent
    --nodes None -> use config / defaults
    """
    if value is None or not value.strip():
        return None

    nodes: List[NodeSpec] = []
    for part in (p.strip() for p in value.split(",")):
        if not part:
            continue
        if "=" not in part:
            raise ConfigurationError(f"bad node entry '{part}', expected name=role[:primary]")
        name, _, role = part.partition("=")
        role, _, flag = role.partition(":")
        if flag and flag != "primary":
            raise ConfigurationError(f"bad node flag '{flag}' in '{part}'")
        nodes.append(NodeSpec(name=name.strip(), role=role.strip().lower(), primary=flag == "primary"))
    return nodes


def default_nodes() -> List[NodeSpec]:
    """
    2 servers + 1 agent, the HA formation layout.
    """
    return [
        NodeSpec(name="server-1", role=SERVER, primary=True),
        NodeSpec(name="server-2", role=SERVER),
        NodeSpec(name="agent-1", role=AGENT),
    ]
