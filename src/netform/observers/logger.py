# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/observers/logger.py
from __future__ import annotations

import logging

from .events import BaseEvent, CommandExecuted, PhaseFailed


class LoggerObserver:
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        payload = {k: v for k, v in event.dict().items() if k not in ("ts", "run_id", "event")}
        name = type(event).__name__
        if isinstance(event, PhaseFailed):
            self.logger.error(f"{name} {payload}")
        elif isinstance(event, CommandExecuted):
            self.logger.debug(f"{name} {payload}")
        else:
            self.logger.info(f"{name} {payload}")
