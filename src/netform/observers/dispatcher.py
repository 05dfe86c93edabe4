# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/observers/dispatcher.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from .events import BaseEvent, new_ctx, stamp

log = logging.getLogger("netform")


class Observer(Protocol):
    def notify(self, event: BaseEvent) -> None: ...


class EventBus:
    """
    Fans lifecycle events out to observers and owns the run context
    (run_id + topology) every event is stamped with.
    """

    def __init__(self, observers: Optional[List[Observer]] = None, ctx: Optional[Dict[str, Any]] = None):
        self._observers = list(observers or [])
        self.ctx = ctx or new_ctx("unknown")

    def publish(self, event_cls, **fields) -> BaseEvent:
        event = event_cls(**stamp(self.ctx), **fields)
        self.emit(event)
        return event

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as exc:
                # observers must not break a run
                log.debug(f"observer {type(ob).__name__} failed on {type(event).__name__}: {exc}")
