# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/formation/token.py

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from netform.topology.profile import TopologyProfile


@dataclass(frozen=True)
class ClusterToken:
    """
    Join secret read from the primary. Never printed: repr/str are masked,
    use fingerprint in logs and reveal() only when rendering env files.
    """

    _value: str = field(repr=False)

    def __post_init__(self) -> None:
        value = (self._value or "").strip()
        if not value:
            raise ValueError("cluster token is empty")
        object.__setattr__(self, "_value", value)

    def reveal(self) -> str:
        return self._value

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self._value.encode()).hexdigest()[:12]

    def __repr__(self) -> str:
        return f"ClusterToken(sha256:{self.fingerprint})"

    __str__ = __repr__


@dataclass(frozen=True)
class JoinRequest:
    """
    A node asking to join the primary. The endpoint is always the primary's
    cluster-semantic address, never the management/NAT one.
    """

    node: str
    token: ClusterToken
    primary: str
    port: int
    profile: TopologyProfile = field(repr=False, compare=False)

    @property
    def endpoint(self) -> str:
        return self.profile.api_endpoint(self.primary, self.port)
