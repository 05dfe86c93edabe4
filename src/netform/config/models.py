# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/config/models.py

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from netform.config.nodes import NodeSpec, ResourceLimits, default_nodes
from netform.topology.presets import DEFAULT_NODES, build_preset
from netform.topology.profile import BondSpec, TopologyProfile


class ResourcesConfig(BaseModel):
    memory_mb: int = 3072
    cpus: int = 2
    disk_mb: int = 20480


class NodeConfig(BaseModel):
    name: str
    role: Literal["server", "agent"]
    primary: bool = False
    resources: ResourcesConfig = ResourcesConfig()
    image: Optional[str] = None

    def to_spec(self) -> NodeSpec:
        return NodeSpec(
            name=self.name,
            role=self.role,
            primary=self.primary,
            resources=ResourceLimits(**self.resources.model_dump()),
            image=self.image,
        )


class BondConfig(BaseModel):
    members: List[str]
    mode: str = "active-backup"
    monitor_interval_ms: int = 100
    primary: Optional[str] = None
    name: str = "bond0"


class ProfileConfig(BaseModel):
    """Explicit topology profile; overrides the preset named by `topology`."""

    name: str = "custom"
    kind: Literal["flat", "vlan", "bonded-vlan"]
    interfaces: Dict[str, str]
    addresses: Dict[str, Dict[str, str]]
    vlan_ids: Dict[str, int] = Field(default_factory=dict)
    bond: Optional[BondConfig] = None
    trunk: Optional[str] = None
    management_interface: str = "eth0"
    prefix_length: int = 24
    cluster_semantic: str = "cluster"
    cluster_cidr: str = "10.42.0.0/16"
    service_cidr: str = "10.43.0.0/16"
    gateway: Optional[str] = None

    def to_profile(self) -> TopologyProfile:
        bond = None
        if self.bond is not None:
            bond = BondSpec(
                members=tuple(self.bond.members),
                mode=self.bond.mode,
                monitor_interval_ms=self.bond.monitor_interval_ms,
                primary=self.bond.primary,
                name=self.bond.name,
            )
        return TopologyProfile(
            name=self.name,
            kind=self.kind,
            interface_names=dict(self.interfaces),
            addresses={n: dict(a) for n, a in self.addresses.items()},
            vlan_ids=dict(self.vlan_ids),
            bond=bond,
            trunk=self.trunk,
            management_interface=self.management_interface,
            prefix_length=self.prefix_length,
            cluster_semantic=self.cluster_semantic,
            cluster_cidr=self.cluster_cidr,
            service_cidr=self.service_cidr,
            gateway=self.gateway,
        )


class FleetConfig(BaseModel):
    """How to reach and power the VMs (SSH exec channel + local boot commands)."""

    username: str = "root"
    password: Optional[str] = None
    key_path: Optional[Path] = None
    port: int = 22
    hosts: Dict[str, str] = Field(default_factory=dict)    # node -> management address
    ports: Dict[str, int] = Field(default_factory=dict)    # node -> ssh port override
    boot_command: Optional[str] = "virsh start {name}"
    shutdown_command: Optional[str] = "virsh destroy {name}"
    connect_timeout: float = 15.0
    command_timeout: float = 120.0


class TimeoutsConfig(BaseModel):
    """Seconds. Image extraction and consensus warm-up dominate, hence minutes."""

    boot: float = 300
    api_port: float = 300
    readyz: float = 300
    join: float = 300
    cluster: float = 120
    overall: float = 1800
    poll_interval: float = 5.0
    exec_attempts: int = 3
    exec_settle: float = 2.0


class ServiceConfig(BaseModel):
    """Knobs for the clustered service (k3s) treated as a black box."""

    api_port: int = 6443
    token_path: str = "/var/lib/rancher/k3s/server/token"
    server_unit: str = "k3s-server.service"
    agent_unit: str = "k3s-agent.service"
    server_env_file: str = "/etc/default/k3s-server"
    agent_env_file: str = "/etc/default/k3s-agent"
    kubectl: str = "k3s kubectl"
    readyz_path: str = "/readyz"
    log_tail_lines: int = 100
    extra_server_flags: List[str] = Field(
        default_factory=lambda: [
            "--write-kubeconfig-mode=0644",
            "--disable=traefik",
            "--disable=servicelb",
        ]
    )
    extra_agent_flags: List[str] = Field(default_factory=list)
    # component -> pod label selector, checked in system_namespace once the cluster is Ready
    system_namespace: str = "kube-system"
    system_components: Dict[str, str] = Field(
        default_factory=lambda: {
            "coredns": "k8s-app=kube-dns",
            "local-path-provisioner": "app=local-path-provisioner",
        }
    )


class RunConfig(BaseModel):
    topology: Literal["flat", "vlan", "bonded-vlan"] = "flat"
    profile: Optional[ProfileConfig] = None
    nodes: List[NodeConfig] = Field(default_factory=list)
    fleet: FleetConfig = FleetConfig()
    timeouts: TimeoutsConfig = TimeoutsConfig()
    service: ServiceConfig = ServiceConfig()
    managed_daemons: List[str] = Field(
        default_factory=lambda: ["systemd-networkd.service", "NetworkManager.service"]
    )
    log_dir: Optional[Path] = None

    # Helper methods
    def node_specs(self) -> List[NodeSpec]:
        if not self.nodes:
            return default_nodes()
        return [n.to_spec() for n in self.nodes]

    def topology_profile(self, node_names: Optional[List[str]] = None) -> TopologyProfile:
        """
        The explicit profile wins; otherwise build the preset for these nodes.
        """
        if self.profile is not None:
            return self.profile.to_profile()
        names = node_names or [n.name for n in self.node_specs()] or list(DEFAULT_NODES)
        return build_preset(self.topology, names)
