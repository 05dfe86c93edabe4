# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/utils/shell.py

import re


def shq(s: str) -> str:
    """
    Single-quote for bash -lc.
    """
    return "'" + s.replace("'", "'\"'\"'") + "'"


def bash_lc(cmd: str) -> str:
    return f"bash -lc {shq(cmd)}"


_SECRET = re.compile(r"(K3S_TOKEN=|--token[= ])[^\s'\"]+")


def redact(text: str) -> str:
    """Mask join tokens before a command or env file reaches a log."""
    return _SECRET.sub(r"\1****", text)
