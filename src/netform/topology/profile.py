# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/topology/profile.py

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from netform.errors import (
    ConfigurationError,
    DuplicateVlanTagError,
    InvalidBondSpecError,
    InvalidVlanTagError,
    MissingAddressError,
)

FLAT = "flat"
VLAN = "vlan"
BONDED_VLAN = "bonded-vlan"
KINDS: Tuple[str, ...] = (FLAT, VLAN, BONDED_VLAN)

VLAN_MIN = 1
VLAN_MAX = 4094

# Kernel bonding modes. 802.3ad needs LACP from the switch, which the
# virtual bridge between test VMs never negotiates.
BOND_MODES = {
    "balance-rr",
    "active-backup",
    "balance-xor",
    "broadcast",
    "802.3ad",
    "balance-tlb",
    "balance-alb",
}
LACP_MODES = {"802.3ad"}


@dataclass(frozen=True)
class BondSpec:
    """
    Bond device built from two or more member NICs.
    """
    members: Tuple[str, ...]
    mode: str = "active-backup"
    monitor_interval_ms: int = 100     # miimon
    primary: Optional[str] = None
    name: str = "bond0"

    def validate(self, management_interface: str) -> None:
        if not self.members:
            raise InvalidBondSpecError(f"{self.name}: bond member list is empty")
        if len(set(self.members)) != len(self.members):
            raise InvalidBondSpecError(f"{self.name}: duplicate bond members {list(self.members)}")
        if management_interface in self.members:
            raise InvalidBondSpecError(
                f"{self.name}: management interface '{management_interface}' cannot be a bond member"
            )
        if self.name in self.members:
            raise InvalidBondSpecError(f"{self.name}: bond cannot enslave itself")
        if self.mode not in BOND_MODES:
            raise InvalidBondSpecError(f"{self.name}: unknown bonding mode '{self.mode}'")
        if self.mode in LACP_MODES:
            raise InvalidBondSpecError(
                f"{self.name}: mode '{self.mode}' needs LACP from the switch; use active-backup"
            )
        if self.monitor_interval_ms <= 0:
            raise InvalidBondSpecError(f"{self.name}: monitor interval must be positive")
        if self.primary is not None and self.primary not in self.members:
            raise InvalidBondSpecError(f"{self.name}: primary '{self.primary}' is not a bond member")


@dataclass(frozen=True)
class TopologyProfile:
    """
    Declarative network layout shared by every topology variant.

    interface_names maps a semantic name (cluster, storage, ...) to the interface
    that carries it on every node; addresses maps node -> semantic -> IPv4.
    The profile validates itself on construction so a bad layout is caught
    before a single VM is booted.
    """
    name: str
    kind: str
    interface_names: Dict[str, str]
    addresses: Dict[str, Dict[str, str]]
    vlan_ids: Dict[str, int] = field(default_factory=dict)
    bond: Optional[BondSpec] = None
    trunk: Optional[str] = None
    management_interface: str = "eth0"
    prefix_length: int = 24
    cluster_semantic: str = "cluster"
    cluster_cidr: str = "10.42.0.0/16"
    service_cidr: str = "10.43.0.0/16"
    gateway: Optional[str] = None

    def __post_init__(self) -> None:
        self._validate_shape()
        self._validate_vlans()
        self._validate_bond()
        self._validate_addresses()

    # ------------------ validation ------------------

    def _validate_shape(self) -> None:
        if self.kind not in KINDS:
            raise ConfigurationError(f"{self.name}: unknown topology kind '{self.kind}' (expected {', '.join(KINDS)})")
        if not self.interface_names:
            raise ConfigurationError(f"{self.name}: profile declares no semantic interfaces")
        if self.cluster_semantic not in self.interface_names:
            raise ConfigurationError(
                f"{self.name}: cluster semantic '{self.cluster_semantic}' has no interface"
            )
        names = list(self.interface_names.values())
        if len(set(names)) != len(names):
            raise ConfigurationError(f"{self.name}: two semantics share one interface: {names}")
        if self.management_interface in names:
            raise ConfigurationError(
                f"{self.name}: management interface '{self.management_interface}' "
                "cannot carry a semantic network"
            )
        if not 1 <= self.prefix_length <= 32:
            raise ConfigurationError(f"{self.name}: invalid prefix length {self.prefix_length}")
        if self.kind != FLAT and not self.trunk:
            raise ConfigurationError(f"{self.name}: '{self.kind}' topology needs a trunk interface")
        if self.trunk is not None and (self.trunk == self.management_interface or self.trunk in names):
            raise ConfigurationError(f"{self.name}: trunk '{self.trunk}' clashes with another interface")

    def _validate_vlans(self) -> None:
        if self.kind == FLAT and self.vlan_ids:
            raise ConfigurationError(f"{self.name}: flat topology cannot declare VLAN tags")

        seen: Dict[int, List[str]] = {}
        for semantic, tag in self.vlan_ids.items():
            if semantic not in self.interface_names:
                raise ConfigurationError(f"{self.name}: VLAN tag for undeclared interface '{semantic}'")
            if isinstance(tag, bool) or not isinstance(tag, int) or not VLAN_MIN <= tag <= VLAN_MAX:
                raise InvalidVlanTagError(semantic, tag)
            seen.setdefault(tag, []).append(semantic)

        for tag, semantics in seen.items():
            if len(semantics) > 1:
                raise DuplicateVlanTagError(tag, semantics)

    def _validate_bond(self) -> None:
        if self.kind == BONDED_VLAN:
            if self.bond is None:
                raise InvalidBondSpecError(f"{self.name}: bonded-vlan topology needs a bond spec")
            self.bond.validate(self.management_interface)
            if self.trunk != self.bond.name:
                raise InvalidBondSpecError(
                    f"{self.name}: VLANs must ride on the bond '{self.bond.name}', not '{self.trunk}'"
                )
        elif self.bond is not None:
            raise InvalidBondSpecError(f"{self.name}: bond spec is only valid for bonded-vlan topologies")

    def _validate_addresses(self) -> None:
        if not self.addresses:
            raise ConfigurationError(f"{self.name}: profile has no node addresses")

        seen: Dict[str, str] = {}
        for node, per_node in self.addresses.items():
            for semantic in self.interface_names:
                if not per_node.get(semantic):
                    raise MissingAddressError(node, semantic)
            for semantic, ip in per_node.items():
                if semantic not in self.interface_names:
                    raise ConfigurationError(f"{self.name}: {node} has address for undeclared interface '{semantic}'")
                try:
                    ipaddress.IPv4Address(ip)
                except ValueError as exc:
                    raise ConfigurationError(f"{self.name}: {node}/{semantic}: invalid IPv4 '{ip}'") from exc
                owner = f"{node}/{semantic}"
                if ip in seen:
                    raise ConfigurationError(f"{self.name}: address {ip} used by both {seen[ip]} and {owner}")
                seen[ip] = owner

        # One subnet per semantic, distinct between semantics.
        networks: Dict[str, ipaddress.IPv4Network] = {}
        for semantic in self.interface_names:
            nets = {self._network_of(per_node[semantic]) for per_node in self.addresses.values()}
            if len(nets) != 1:
                raise ConfigurationError(
                    f"{self.name}: '{semantic}' addresses span several /{self.prefix_length} networks"
                )
            networks[semantic] = nets.pop()
        by_net: Dict[ipaddress.IPv4Network, str] = {}
        for semantic, net in networks.items():
            if net in by_net:
                raise ConfigurationError(f"{self.name}: '{semantic}' and '{by_net[net]}' share network {net}")
            by_net[net] = semantic

        if self.gateway is not None:
            try:
                gw = ipaddress.IPv4Address(self.gateway)
            except ValueError as exc:
                raise ConfigurationError(f"{self.name}: invalid gateway '{self.gateway}'") from exc
            if gw not in networks[self.cluster_semantic]:
                raise ConfigurationError(
                    f"{self.name}: gateway {gw} is outside the cluster network {networks[self.cluster_semantic]}"
                )

    def _network_of(self, ip: str) -> ipaddress.IPv4Network:
        return ipaddress.IPv4Network(f"{ip}/{self.prefix_length}", strict=False)

    # ------------------ public API ------------------

    def validate_nodes(self, names: Iterable[str]) -> None:
        """
        Every node that will be booted needs an address for every semantic.
        """
        for name in names:
            if name not in self.addresses:
                raise MissingAddressError(name, self.cluster_semantic)
            for semantic in self.interface_names:
                if not self.addresses[name].get(semantic):
                    raise MissingAddressError(name, semantic)

    def interfaces(self) -> Dict[str, str]:
        return dict(self.interface_names)

    def semantics(self) -> List[str]:
        return list(self.interface_names)

    def nodes(self) -> List[str]:
        return list(self.addresses)

    def interface_for(self, semantic: str) -> str:
        try:
            return self.interface_names[semantic]
        except KeyError:
            raise ConfigurationError(f"{self.name}: no interface for semantic '{semantic}'") from None

    def address_for(self, node: str, semantic: str) -> str:
        ip = self.addresses.get(node, {}).get(semantic)
        if not ip:
            raise MissingAddressError(node, semantic)
        return ip

    def cidr_for(self, node: str, semantic: str) -> str:
        return f"{self.address_for(node, semantic)}/{self.prefix_length}"

    def vlan_tag(self, semantic: str) -> Optional[int]:
        return self.vlan_ids.get(semantic)

    def bond_spec(self) -> Optional[BondSpec]:
        return self.bond

    def network_for(self, semantic: str) -> ipaddress.IPv4Network:
        first = next(iter(self.addresses.values()))
        return self._network_of(first[semantic])

    @property
    def cluster_interface(self) -> str:
        return self.interface_names[self.cluster_semantic]

    def api_endpoint(self, primary: str, port: int) -> str:
        """
        Join URL on the cluster semantic address. Never the management/NAT one.
        """
        return f"https://{self.address_for(primary, self.cluster_semantic)}:{port}"
