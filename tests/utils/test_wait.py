import threading
import time

import pytest

from netform.errors import WaitCancelledError
from netform.utils.wait import poll_until


def test_returns_truthy_value():
    values = iter([None, 0, {"server-1": True}])
    assert poll_until(lambda: next(values), timeout=1, interval=0.001) == {"server-1": True}


def test_times_out_with_none():
    start = time.monotonic()
    assert poll_until(lambda: False, timeout=0.05, interval=0.01) is None
    assert time.monotonic() - start < 1


def test_cancel_interrupts_a_long_wait():
    cancel = threading.Event()
    threading.Timer(0.05, cancel.set).start()

    start = time.monotonic()
    with pytest.raises(WaitCancelledError, match="API /readyz"):
        poll_until(lambda: False, timeout=30, interval=5, cancel=cancel, description="API /readyz")
    assert time.monotonic() - start < 5
