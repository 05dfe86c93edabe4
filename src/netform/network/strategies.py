# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/network/strategies.py

from __future__ import annotations

from typing import Dict, List, Sequence

from netform.errors import ConfigurationError
from netform.topology.profile import BONDED_VLAN, FLAT, VLAN, BondSpec, TopologyProfile

from .commands import NetCommand

DEFAULT_MANAGED_DAEMONS = ("systemd-networkd.service", "NetworkManager.service")


class TopologyStrategy:
    """
    Turns a profile into the ordered commands for one node.

    Every command is safe to re-run: links are created only when missing and
    addresses are flushed before being assigned.
    """

    kind: str = ""

    def plan(self, node: str, profile: TopologyProfile, daemons: Sequence[str]) -> List[NetCommand]:
        steps = self._mask_daemons(daemons)
        steps += self._links(node, profile)
        steps += self._default_route(profile)
        return steps

    def _links(self, node: str, profile: TopologyProfile) -> List[NetCommand]:
        raise NotImplementedError

    # ------------------ shared steps ------------------

    def _mask_daemons(self, daemons: Sequence[str]) -> List[NetCommand]:
        # masked, so socket/dbus activation cannot bring them back
        steps: List[NetCommand] = []
        for unit in daemons:
            steps.append(NetCommand(f"systemctl mask {unit}", f"mask {unit}"))
            steps.append(NetCommand(f"systemctl stop {unit}", f"stop {unit}", tolerate_failure=True))
        return steps

    def _address(self, iface: str, cidr: str) -> List[NetCommand]:
        return [
            NetCommand(f"ip link set {iface} up", f"bring {iface} up"),
            NetCommand(f"ip addr flush dev {iface}", f"flush addresses on {iface}"),
            NetCommand(f"ip addr add {cidr} dev {iface}", f"assign {cidr} to {iface}"),
        ]

    def _vlan_module(self) -> NetCommand:
        return NetCommand("modprobe 8021q || lsmod | grep -q '^8021q'", "load 8021q")

    def _vlan_links(self, node: str, profile: TopologyProfile) -> List[NetCommand]:
        trunk = profile.trunk
        steps = [NetCommand(f"ip link set {trunk} up", f"bring trunk {trunk} up")]
        for semantic, iface in profile.interfaces().items():
            tag = profile.vlan_tag(semantic)
            if tag is not None:
                steps.append(
                    NetCommand(
                        f"ip link show {iface} >/dev/null 2>&1 || "
                        f"ip link add link {trunk} name {iface} type vlan id {tag}",
                        f"create {iface} (vlan {tag} on {trunk})",
                    )
                )
            steps += self._address(iface, profile.cidr_for(node, semantic))
        return steps

    def _default_route(self, profile: TopologyProfile) -> List[NetCommand]:
        if not profile.gateway:
            return []
        iface = profile.cluster_interface
        # Lower priority than the management default; fails harmlessly if present.
        return [
            NetCommand(
                f"ip route add default via {profile.gateway} dev {iface} metric 200",
                f"default route via {profile.gateway}",
                tolerate_failure=True,
            )
        ]


class FlatStrategy(TopologyStrategy):
    kind = FLAT

    def _links(self, node: str, profile: TopologyProfile) -> List[NetCommand]:
        steps: List[NetCommand] = []
        for semantic, iface in profile.interfaces().items():
            steps += self._address(iface, profile.cidr_for(node, semantic))
        return steps


class VlanStrategy(TopologyStrategy):
    kind = VLAN

    def _links(self, node: str, profile: TopologyProfile) -> List[NetCommand]:
        return [self._vlan_module()] + self._vlan_links(node, profile)


class BondedVlanStrategy(TopologyStrategy):
    kind = BONDED_VLAN

    def _links(self, node: str, profile: TopologyProfile) -> List[NetCommand]:
        bond = profile.bond_spec()
        steps = [
            NetCommand("modprobe bonding", "load bonding"),
            self._vlan_module(),
        ]
        steps += self._bond(bond)
        steps += self._vlan_links(node, profile)
        return steps

    def _bond(self, bond: BondSpec) -> List[NetCommand]:
        name = bond.name
        sysfs = f"/sys/class/net/{name}/bonding"
        steps = [
            # Images may ship an 802.3ad bond the virtual switch never negotiates.
            NetCommand(
                f"if [ -e /sys/class/net/{name} ] && "
                f"{{ ! grep -q '^{bond.mode} ' {sysfs}/mode || "
                f"[ \"$(cat {sysfs}/miimon)\" != {bond.monitor_interval_ms} ]; }}; "
                f"then ip link delete {name}; fi",
                f"drop {name} unless already {bond.mode}/miimon {bond.monitor_interval_ms}",
            ),
            NetCommand(
                f"ip link show {name} >/dev/null 2>&1 || "
                f"ip link add {name} type bond mode {bond.mode} miimon {bond.monitor_interval_ms}",
                f"create {name}",
            ),
        ]
        for member in bond.members:
            steps.append(
                NetCommand(
                    f"if [ \"$(basename \"$(readlink /sys/class/net/{member}/master)\")\" != {name} ]; "
                    f"then ip link set {member} down && ip link set {member} master {name}; fi",
                    f"enslave {member} to {name}",
                )
            )
            steps.append(NetCommand(f"ip link set {member} up", f"bring {member} up"))
        if bond.primary:
            steps.append(NetCommand(f"ip link set {name} type bond primary {bond.primary}", f"prefer {bond.primary}"))
        steps.append(NetCommand(f"ip link set {name} up", f"bring {name} up"))
        steps.append(NetCommand(self._bond_check(bond), f"verify {name} link and active member"))
        return steps

    def _bond_check(self, bond: BondSpec) -> str:
        proc = f"/proc/net/bonding/{bond.name}"
        check = f"grep -q 'MII Status: up' {proc}"
        if bond.mode == "active-backup":
            check += f" && grep -q 'Currently Active Slave: [^ ]' {proc}"
        # miimon needs a few intervals before the bond reports up.
        return f"for i in $(seq 1 10); do {check} && break; sleep 1; done; {check}"


STRATEGIES: Dict[str, TopologyStrategy] = {
    FLAT: FlatStrategy(),
    VLAN: VlanStrategy(),
    BONDED_VLAN: BondedVlanStrategy(),
}


def strategy_for(kind: str) -> TopologyStrategy:
    try:
        return STRATEGIES[kind]
    except KeyError:
        raise ConfigurationError(f"no network strategy for topology kind {kind!r}") from None


def describe(commands: Sequence[NetCommand]) -> str:
    """One command per line, tolerated ones suffixed; used by `netform plan`."""
    return "\n".join(
        f"{c.cmd}{'  # tolerated' if c.tolerate_failure else ''}" for c in commands
    )

