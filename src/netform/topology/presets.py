# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/topology/presets.py

from __future__ import annotations

from typing import Callable, Dict, List, Sequence

from netform.errors import ConfigurationError
from netform.topology.profile import BONDED_VLAN, FLAT, VLAN, BondSpec, TopologyProfile

CLUSTER_VLAN = 200
STORAGE_VLAN = 100

DEFAULT_NODES = ("server-1", "server-2", "agent-1")


def _host_octets(nodes: Sequence[str]) -> Dict[str, int]:
    if len(nodes) > 250:
        raise ConfigurationError(f"preset IP plans support at most 250 nodes, got {len(nodes)}")
    return {name: i + 1 for i, name in enumerate(nodes)}


def flat(nodes: Sequence[str] = DEFAULT_NODES) -> TopologyProfile:
    """
    Single flat network on eth1, 192.168.1.0/24.
    """
    octets = _host_octets(nodes)
    return TopologyProfile(
        name="flat",
        kind=FLAT,
        interface_names={"cluster": "eth1"},
        addresses={n: {"cluster": f"192.168.1.{o}"} for n, o in octets.items()},
        gateway="192.168.1.254",
    )


def vlan(nodes: Sequence[str] = DEFAULT_NODES) -> TopologyProfile:
    """
    eth1 trunk carrying cluster (tag 200) and storage (tag 100).

        eth1 ─┬─ eth1.200 (cluster)  192.168.200.0/24
              └─ eth1.100 (storage)  192.168.100.0/24
    """
    octets = _host_octets(nodes)
    return TopologyProfile(
        name="vlan",
        kind=VLAN,
        interface_names={
            "cluster": f"eth1.{CLUSTER_VLAN}",
            "storage": f"eth1.{STORAGE_VLAN}",
        },
        addresses={
            n: {"cluster": f"192.168.200.{o}", "storage": f"192.168.100.{o}"}
            for n, o in octets.items()
        },
        vlan_ids={"cluster": CLUSTER_VLAN, "storage": STORAGE_VLAN},
        trunk="eth1",
        gateway="192.168.200.254",
    )


def bonded_vlan(nodes: Sequence[str] = DEFAULT_NODES) -> TopologyProfile:
    """
    eth1+eth2 bonded (active-backup) with the vlan layout on top.

        eth1 ─┐
              ├─ bond0 ─┬─ bond0.200 (cluster)
        eth2 ─┘         └─ bond0.100 (storage)
    """
    octets = _host_octets(nodes)
    return TopologyProfile(
        name="bonded-vlan",
        kind=BONDED_VLAN,
        interface_names={
            "cluster": f"bond0.{CLUSTER_VLAN}",
            "storage": f"bond0.{STORAGE_VLAN}",
        },
        addresses={
            n: {"cluster": f"192.168.200.{o}", "storage": f"192.168.100.{o}"}
            for n, o in octets.items()
        },
        vlan_ids={"cluster": CLUSTER_VLAN, "storage": STORAGE_VLAN},
        bond=BondSpec(
            members=("eth1", "eth2"),
            mode="active-backup",
            monitor_interval_ms=100,
            primary="eth1",
            name="bond0",
        ),
        trunk="bond0",
        gateway="192.168.200.254",
    )


PRESETS: Dict[str, Callable[[Sequence[str]], TopologyProfile]] = {
    FLAT: flat,
    VLAN: vlan,
    BONDED_VLAN: bonded_vlan,
}


def preset_names() -> List[str]:
    return list(PRESETS)


def build_preset(name: str, nodes: Sequence[str] = DEFAULT_NODES) -> TopologyProfile:
    try:
        factory = PRESETS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown topology '{name}'. Valid topologies: {', '.join(preset_names())}"
        ) from None
    return factory(nodes)
