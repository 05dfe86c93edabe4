# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/netform/utils/retry.py

import time
from typing import Callable, TypeVar

T = TypeVar("T")


class RetryError(RuntimeError):
    pass


def with_retry(
    fn: Callable[[], T],
    *,
    attempts: int,
    settle_seconds: float,
    backoff: float = 1.0,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """
    Call fn until it returns, at most `attempts` times.

    Sleeps settle_seconds after the first failure, multiplied by backoff
    after each further one. Only exceptions in retry_on are retried; the
    last one is chained onto RetryError.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    last_exc = None
    delay = settle_seconds
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as exc:
            last_exc = exc
            if on_retry:
                on_retry(attempt, exc)
            if attempt == attempts:
                break
            if delay > 0:
                time.sleep(delay)
            delay *= backoff
    name = getattr(fn, "__name__", "operation")
    raise RetryError(f"{name} failed after {attempts} attempts: {last_exc}") from last_exc

