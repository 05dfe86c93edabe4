# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/formation/service.py

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Dict, List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from netform.config.models import ServiceConfig
from netform.errors import FleetError
from netform.fleet.interface import ExecResult, FleetManager
from netform.topology.profile import TopologyProfile
from netform.utils.retry import RetryError, with_retry
from netform.utils.shell import redact, shq

from .token import ClusterToken, JoinRequest

log = logging.getLogger("netform")

TEMPLATES_DIR = Path(__file__).parent / "templates"


class ServiceController:
    """
    Drives the clustered service (k3s) on one VM through the exec channel.

    The service is a black box: an env file per role, a systemd unit, a
    token file on the primary and a node registry behind `k3s kubectl`.
    """

    def __init__(
        self,
        fleet: FleetManager,
        profile: TopologyProfile,
        cfg: ServiceConfig,
        *,
        exec_attempts: int = 3,
        exec_settle: float = 2.0,
    ):
        self.fleet = fleet
        self.profile = profile
        self.cfg = cfg
        self.exec_attempts = exec_attempts
        self.exec_settle = exec_settle
        self.env = Environment(
            loader=FileSystemLoader(str(TEMPLATES_DIR)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    # ------------------ exec ------------------

    def _exec(self, node: str, cmd: str) -> ExecResult:
        return with_retry(
            lambda: self.fleet.exec(node, cmd),
            attempts=self.exec_attempts,
            settle_seconds=self.exec_settle,
            retry_on=(FleetError,),
            on_retry=lambda n, exc: log.debug(f"[{node}] exec attempt {n} failed: {exc}"),
        )

    def _run(self, node: str, cmd: str, what: str) -> ExecResult:
        try:
            res = self._exec(node, cmd)
        except RetryError as exc:
            raise FleetError(f"{node}: {what}: {exc}") from exc
        if not res.ok:
            raise FleetError(f"{node}: {what} failed (exit {res.exit_code}): {redact(res.output.strip())[-300:]}")
        return res

    def _probe(self, node: str, cmd: str) -> Optional[ExecResult]:
        """For polling: transport errors read as 'not yet'."""
        try:
            return self._exec(node, cmd)
        except RetryError as exc:
            log.debug(f"[{node}] probe '{cmd}' unreachable: {exc}")
            return None

    # ------------------ flags & env files ------------------

    def _cluster_ip(self, node: str) -> str:
        return self.profile.address_for(node, self.profile.cluster_semantic)

    def server_flags(self, node: str, primary: str, join: Optional[JoinRequest] = None) -> List[str]:
        ip = self._cluster_ip(node)
        flags = ["--cluster-init"] if join is None else [f"--server={join.endpoint}"]
        flags += [
            f"--node-name={node}",
            f"--node-ip={ip}",
            f"--advertise-address={ip}",
            f"--flannel-iface={self.profile.cluster_interface}",
            f"--tls-san={self._cluster_ip(primary)}",
            f"--cluster-cidr={self.profile.cluster_cidr}",
            f"--service-cidr={self.profile.service_cidr}",
        ]
        return flags + list(self.cfg.extra_server_flags)

    def agent_flags(self, node: str) -> List[str]:
        flags = [
            f"--node-name={node}",
            f"--node-ip={self._cluster_ip(node)}",
            f"--flannel-iface={self.profile.cluster_interface}",
        ]
        return flags + list(self.cfg.extra_agent_flags)

    def render_server_env(self, node: str, primary: str, join: Optional[JoinRequest] = None) -> str:
        tmpl = self.env.get_template("k3s-server.env.j2")
        return tmpl.render(
            node=node,
            primary=join is None,
            flags=self.server_flags(node, primary, join),
            token=join.token.reveal() if join else None,
        )

    def render_agent_env(self, join: JoinRequest) -> str:
        tmpl = self.env.get_template("k3s-agent.env.j2")
        return tmpl.render(
            node=join.node,
            flags=self.agent_flags(join.node),
            url=join.endpoint,
            token=join.token.reveal(),
        )

    def _write(self, node: str, path: str, content: str) -> None:
        cmd = (
            f"install -d -m 0755 {posixpath.dirname(path)} && "
            f"printf '%s' {shq(content)} > {path} && chmod 0600 {path}"
        )
        self._run(node, cmd, f"write {path}")

    # ------------------ lifecycle ------------------

    def prepare(self, node: str) -> None:
        """VM quirks the service trips over. Both are best effort."""
        for cmd in (
            f"hostnamectl set-hostname {node} || hostname {node}",
            "[ -e /dev/kmsg ] || ln -s /dev/console /dev/kmsg",
        ):
            res = self._probe(node, cmd)
            if res is None or not res.ok:
                log.debug(f"[{node}] ignoring failed workaround: {cmd}")

    def configure_server(self, node: str, primary: str, join: Optional[JoinRequest] = None) -> None:
        mode = "cluster-init" if join is None else f"join {join.endpoint}"
        log.info(f"[{node}] configuring server ({mode})")
        self._write(node, self.cfg.server_env_file, self.render_server_env(node, primary, join))

    def configure_agent(self, join: JoinRequest) -> None:
        log.info(f"[{join.node}] configuring agent (join {join.endpoint})")
        self._write(join.node, self.cfg.agent_env_file, self.render_agent_env(join))

    def start(self, node: str, unit: str) -> None:
        self._run(node, "systemctl daemon-reload", "daemon-reload")
        self._run(node, f"systemctl restart {unit}", f"start {unit}")
        log.info(f"[{node}] {unit} started")

    # ------------------ primary queries ------------------

    def token_present(self, primary: str) -> bool:
        res = self._probe(primary, f"test -s {self.cfg.token_path}")
        return bool(res and res.ok)

    def read_token(self, primary: str) -> ClusterToken:
        """Read over the exec channel, never over the data network."""
        res = self._run(primary, f"cat {self.cfg.token_path}", "read cluster token")
        try:
            token = ClusterToken(res.output)
        except ValueError as exc:
            raise FleetError(f"{primary}: {self.cfg.token_path} is empty") from exc
        log.info(f"[{primary}] cluster token read ({token!r})")
        return token

    def api_ready(self, primary: str) -> bool:
        res = self._probe(primary, f"{self.cfg.kubectl} get --raw {self.cfg.readyz_path}")
        return bool(res and res.ok and res.output.strip().endswith("ok"))

    def registry(self, primary: str) -> Dict[str, bool]:
        """Node name -> Ready, as the primary's registry reports it."""
        res = self._probe(primary, f"{self.cfg.kubectl} get nodes --no-headers")
        if res is None or not res.ok:
            return {}
        return parse_node_registry(res.output)

    def node_ready(self, primary: str, node: str) -> bool:
        return self.registry(primary).get(node, False)

    def ready_count(self, primary: str) -> int:
        return sum(1 for ready in self.registry(primary).values() if ready)

    def pods_running(self, primary: str, selector: str) -> bool:
        """At least one pod matching the label selector is Running."""
        cmd = f"{self.cfg.kubectl} get pods -n {self.cfg.system_namespace} -l {selector} --no-headers"
        res = self._probe(primary, cmd)
        if res is None or not res.ok:
            return False
        return "Running" in parse_pod_phases(res.output).values()


def parse_node_registry(output: str) -> Dict[str, bool]:
    """
    Parse `kubectl get nodes --no-headers`:

        server-1   Ready                      control-plane,etcd,master   3m   v1.30.4+k3s1
        agent-1    NotReady,SchedulingDisabled   <none>                   1m   v1.30.4+k3s1
    """
    nodes: Dict[str, bool] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        nodes[parts[0]] = "Ready" in parts[1].split(",")
    return nodes


def parse_pod_phases(output: str) -> Dict[str, str]:
    """Pod name -> STATUS column of `kubectl get pods --no-headers`."""
    pods: Dict[str, str] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        pods[parts[0]] = parts[2]
    return pods
