import re
import threading
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from netform.config.models import ServiceConfig, TimeoutsConfig
from netform.fleet.interface import ExecResult
from netform.utils.wait import poll_until

# ----------------- Fake fleet -----------------

TOKEN = "K10fakesecret::server:0123456789abcdef"


class FakeCluster:
    """
    In-memory fleet that behaves like VMs running k3s on a given profile.

    Every exec is recorded. `overrides` maps a regex to an ExecResult (or a
    callable(node, cmd) -> ExecResult) and wins over the simulation.
    """

    def __init__(self, profile, service: Optional[ServiceConfig] = None, primary: str = "server-1"):
        self.profile = profile
        self.service = service or ServiceConfig()
        self.primary = primary
        self.booted: List[str] = []
        self.shutdowns: List[str] = []
        self.commands: List[Tuple[str, str]] = []
        self.started: List[str] = []
        self.files: Dict[Tuple[str, str], str] = {}
        self.overrides: List[Tuple[re.Pattern, object]] = []
        self.port_open = True
        self.never_ready: set = set()
        self.stuck_pods: set = set()    # label selectors whose pods never reach Running
        self.active_slave = "eth1"
        self._lock = threading.Lock()

    # ---- scripting helpers ----
    def override(self, pattern: str, result) -> None:
        self.overrides.append((re.compile(pattern), result))

    def cmds(self, node: Optional[str] = None) -> List[str]:
        return [c for n, c in self.commands if node is None or n == node]

    # ---- FleetManager ----
    def boot(self, node) -> None:
        with self._lock:
            self.booted.append(node.name)

    def exec(self, node: str, cmd: str) -> ExecResult:
        with self._lock:
            self.commands.append((node, cmd))
        for pattern, result in self.overrides:
            if pattern.search(cmd):
                return result(node, cmd) if callable(result) else result
        return self._simulate(node, cmd)

    def wait_for_port(self, node, port, timeout, cancel=None) -> bool:
        return bool(poll_until(lambda: self.port_open, timeout=timeout, interval=0.001, cancel=cancel))

    def wait_for_condition(self, node, predicate, timeout, cancel=None) -> bool:
        return bool(poll_until(predicate, timeout=timeout, interval=0.001, cancel=cancel))

    def shutdown(self, node: str) -> None:
        with self._lock:
            self.shutdowns.append(node)

    # ---- simulation ----
    def _simulate(self, node: str, cmd: str) -> ExecResult:
        svc = self.service
        p = self.profile

        if cmd.startswith("install -d") and "printf" in cmd:
            path = cmd.rsplit(" ", 1)[-1]
            self.files[(node, path)] = cmd
            return ExecResult(0, "")
        m = re.match(r"systemctl restart (\S+)", cmd)
        if m:
            self.started.append(node)
            return ExecResult(0, "")
        if cmd == f"test -s {svc.token_path}":
            return ExecResult(0 if self.primary in self.started else 1, "")
        if cmd == f"cat {svc.token_path}":
            return ExecResult(0, TOKEN + "\n")
        if cmd.endswith("get --raw /readyz"):
            return ExecResult(0, "ok") if self.primary in self.started else ExecResult(1, "connection refused")
        if cmd.endswith("get nodes --no-headers"):
            if self.primary not in self.started:
                return ExecResult(1, "The connection to the server was refused")
            lines = []
            for n in dict.fromkeys(self.started):
                status = "NotReady" if n in self.never_ready else "Ready"
                lines.append(f"{n}   {status}   <none>   1m   v1.30.4+k3s1")
            return ExecResult(0, "\n".join(lines) + "\n")
        m = re.search(r"get pods -n (\S+) -l (\S+) --no-headers$", cmd)
        if m:
            if self.primary not in self.started:
                return ExecResult(1, "The connection to the server was refused")
            status = "ContainerCreating" if m.group(2) in self.stuck_pods else "Running"
            name = m.group(2).split("=", 1)[-1]
            return ExecResult(0, f"{name}-6799fbcd5-x2kq   1/1   {status}   0   2m\n")

        m = re.match(r"ip -o -4 addr show dev (\S+)", cmd)
        if m:
            iface = m.group(1)
            for semantic, name in p.interfaces().items():
                if name == iface:
                    cidr = p.cidr_for(node, semantic)
                    return ExecResult(0, f"3: {iface}    inet {cidr} brd + scope global {iface}\n")
            return ExecResult(1, f'Device "{iface}" does not exist.')
        m = re.match(r"ip -d link show (\S+)", cmd)
        if m:
            iface = m.group(1)
            for semantic, name in p.interfaces().items():
                tag = p.vlan_tag(semantic)
                if name == iface and tag is not None:
                    return ExecResult(0, f"5: {iface}@{p.trunk}: <UP>\n    vlan protocol 802.1Q id {tag} <REORDER_HDR>\n")
            return ExecResult(0, f"3: {iface}: <UP>\n")
        if cmd == "ip route show":
            routes = [
                f"{p.network_for(s)} dev {i} proto kernel scope link src {p.address_for(node, s)}"
                for s, i in p.interfaces().items()
            ]
            return ExecResult(0, "\n".join(routes) + "\n")
        if cmd.endswith("/bonding/mode"):
            return ExecResult(0, f"{p.bond_spec().mode} 1\n")
        if cmd.endswith("/bonding/active_slave"):
            return ExecResult(0, self.active_slave + "\n")
        m = re.match(r"ip link set (\S+) down$", cmd)
        if m and p.bond_spec() is not None and m.group(1) in p.bond_spec().members:
            others = [x for x in p.bond_spec().members if x != m.group(1)]
            self.active_slave = others[0]
            return ExecResult(0, "")
        return ExecResult(0, "")


@pytest.fixture
def make_cluster() -> Callable[..., FakeCluster]:
    return FakeCluster


@pytest.fixture
def fast_timeouts() -> TimeoutsConfig:
    return TimeoutsConfig(
        boot=1, api_port=1, readyz=1, join=1, cluster=1, overall=30,
        poll_interval=0.001, exec_attempts=2, exec_settle=0,
    )


@pytest.fixture
def token() -> str:
    return TOKEN
