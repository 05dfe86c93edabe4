# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/utils/wait.py

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from netform.errors import WaitCancelledError

log = logging.getLogger("netform")

T = TypeVar("T")


def poll_until(
    predicate: Callable[[], T],
    *,
    timeout: float,
    interval: float = 5.0,
    cancel: Optional[threading.Event] = None,
    description: str = "condition",
) -> Optional[T]:
    """
    Poll predicate until it returns something truthy or timeout elapses.

    Returns the truthy value, or None on timeout. Raises WaitCancelledError
    as soon as `cancel` is set, so a failure elsewhere (or the global
    timeout) stops every pending wait at its next tick.
    """
    deadline = time.monotonic() + timeout
    attempt = 0
    while True:
        if cancel is not None and cancel.is_set():
            raise WaitCancelledError(description)

        attempt += 1
        value = predicate()
        if value:
            log.debug(f"{description}: satisfied after {attempt} poll(s)")
            return value

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            log.debug(f"{description}: timed out after {timeout}s ({attempt} polls)")
            return None

        pause = min(interval, remaining)
        if cancel is not None:
            cancel.wait(pause)
        else:
            time.sleep(pause)
