"""Tests for the clock abstraction."""

import time

from docsync.utils.clock import FakeClock, SystemClock


def test_system_clock_returns_epoch_milliseconds() -> None:
    before = int(time.time() * 1000)
    now = SystemClock().now_ms()
    after = int(time.time() * 1000)

    assert before - 1 <= now <= after + 1


def test_fake_clock_advance_and_set() -> None:
    clock = FakeClock(initial_ms=1000)
    assert clock.now_ms() == 1000

    clock.advance(250)
    assert clock.now_ms() == 1250

    clock.set_time(5)
    assert clock.now_ms() == 5
