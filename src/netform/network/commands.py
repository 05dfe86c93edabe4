# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/network/commands.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class NetCommand:
    cmd: str
    description: str
    tolerate_failure: bool = False


@dataclass(frozen=True)
class CommandRecord:
    command: NetCommand
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class NetworkTranscript:
    """Everything sent to one node while configuring it, in order."""

    node: str
    records: List[CommandRecord] = field(default_factory=list)

    def add(self, command: NetCommand, exit_code: int, output: str) -> CommandRecord:
        rec = CommandRecord(command=command, exit_code=exit_code, output=output)
        self.records.append(rec)
        return rec

    @property
    def failed(self) -> Optional[CommandRecord]:
        for rec in self.records:
            if not rec.ok and not rec.command.tolerate_failure:
                return rec
        return None

    def commands(self) -> List[str]:
        return [r.command.cmd for r in self.records]

    def render(self) -> str:
        lines: List[str] = []
        for rec in self.records:
            mark = " (tolerated)" if rec.command.tolerate_failure and not rec.ok else ""
            lines.append(f"# {rec.command.description}")
            lines.append(f"$ {rec.command.cmd}")
            if rec.output.strip():
                lines.append(rec.output.rstrip())
            lines.append(f"[exit {rec.exit_code}{mark}]")
        return "\n".join(lines)
