# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/fleet/ssh.py

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
from typing import Callable, Dict, Optional

import paramiko

from netform.config.models import FleetConfig
from netform.config.nodes import NodeSpec
from netform.errors import FleetError
from netform.utils.shell import bash_lc, redact
from netform.utils.wait import poll_until

from .interface import ExecResult

log = logging.getLogger("netform")


class SshFleet:
    """
    Fleet backend for VMs reachable over SSH on their management address.

    Power is delegated to local command templates (virsh, qemu wrappers,
    ...) formatted with the NodeSpec fields: {name}, {memory_mb}, {cpus},
    {disk_mb}, {image}. Exec goes over one cached paramiko client per node.
    """

    def __init__(
        self,
        cfg: FleetConfig,
        *,
        poll_interval: float = 5.0,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self.cfg = cfg
        self.poll_interval = poll_interval
        self._runner = runner
        self._clients: Dict[str, paramiko.SSHClient] = {}
        self._lock = threading.Lock()

    # ------------------ connection & utils ------------------

    def _address(self, node: str) -> str:
        try:
            return self.cfg.hosts[node]
        except KeyError:
            raise FleetError(f"{node}: no management address in fleet.hosts") from None

    def _load_key(self):
        if not self.cfg.key_path:
            return None
        key_path = str(self.cfg.key_path.expanduser())
        for key_cls in (paramiko.Ed25519Key, paramiko.RSAKey, paramiko.ECDSAKey):
            try:
                return key_cls.from_private_key_file(key_path)
            except paramiko.SSHException:
                continue
        raise FleetError(f"unsupported private key format for {key_path}")

    def _connect(self, node: str) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        pkey = self._load_key()
        client.connect(
            hostname=self._address(node),
            port=self.cfg.ports.get(node, self.cfg.port),
            username=self.cfg.username,
            password=self.cfg.password if not pkey else None,
            pkey=pkey,
            look_for_keys=False,
            allow_agent=False,
            timeout=self.cfg.connect_timeout,
        )
        return client

    def _client(self, node: str) -> paramiko.SSHClient:
        with self._lock:
            client = self._clients.get(node)
            if client is None:
                client = self._connect(node)
                self._clients[node] = client
            return client

    def _drop(self, node: str) -> None:
        with self._lock:
            client = self._clients.pop(node, None)
        if client is not None:
            client.close()

    def _local(self, template: str, name: str, **fields) -> None:
        try:
            cmd = template.format(name=name, **fields)
        except (KeyError, IndexError) as exc:
            raise FleetError(f"{name}: bad command template {template!r}: {exc}") from exc
        log.debug(f"[{name}] local: {cmd}")
        try:
            proc = self._runner(shlex.split(cmd), capture_output=True, text=True, timeout=self.cfg.command_timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise FleetError(f"{name}: '{cmd}' could not run: {exc}") from exc
        if proc.returncode != 0:
            raise FleetError(f"{name}: '{cmd}' exited {proc.returncode}: {(proc.stderr or '').strip()}")

    # ------------------ FleetManager ------------------

    def boot(self, node: NodeSpec) -> None:
        if not self.cfg.boot_command:
            log.debug(f"[{node.name}] no boot command configured, assuming already running")
            return
        self._local(
            self.cfg.boot_command,
            node.name,
            memory_mb=node.resources.memory_mb,
            cpus=node.resources.cpus,
            disk_mb=node.resources.disk_mb,
            image=node.image or "",
        )

    def exec(self, node: str, cmd: str) -> ExecResult:
        log.debug(f"[{node}] $ {redact(cmd)}")
        try:
            client = self._client(node)
            _stdin, stdout, stderr = client.exec_command(bash_lc(cmd), timeout=self.cfg.command_timeout)
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            self._drop(node)
            raise FleetError(f"{node}: exec failed: {exc}") from exc

        output = out + err
        if exit_code != 0:
            log.debug(f"[{node}] exit {exit_code}: {output.strip()[-300:]}")
        return ExecResult(exit_code=exit_code, output=output)

    def wait_for_port(
        self, node: str, port: int, timeout: float, cancel: Optional[threading.Event] = None
    ) -> bool:
        def _listening() -> bool:
            try:
                return self.exec(node, f"ss -tln | grep -q ':{port} '").ok
            except FleetError as exc:
                log.debug(f"[{node}] port probe failed: {exc}")
                return False

        return bool(
            poll_until(
                _listening,
                timeout=timeout,
                interval=self.poll_interval,
                cancel=cancel,
                description=f"{node}:{port} listening",
            )
        )

    def wait_for_condition(
        self,
        node: str,
        predicate: Callable[[], bool],
        timeout: float,
        cancel: Optional[threading.Event] = None,
    ) -> bool:
        return bool(
            poll_until(
                predicate,
                timeout=timeout,
                interval=self.poll_interval,
                cancel=cancel,
                description=f"{node} condition",
            )
        )

    def shutdown(self, node: str) -> None:
        self._drop(node)
        if not self.cfg.shutdown_command:
            return
        self._local(self.cfg.shutdown_command, node)

    def close(self) -> None:
        with self._lock:
            clients = list(self._clients.items())
            self._clients.clear()
        for node, client in clients:
            log.debug(f"[{node}] closing ssh")
            client.close()
