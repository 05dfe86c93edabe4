# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/observers/jsonfile.py
from __future__ import annotations

import json
import threading
from pathlib import Path

from .events import BaseEvent


class JsonFileObserver:
    """Appends one JSON object per event (<run_id>.jsonl)."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def notify(self, event: BaseEvent) -> None:
        line = json.dumps(event.dict(), default=str)
        with self._lock, self.path.open("a") as fh:
            fh.write(line + "\n")
