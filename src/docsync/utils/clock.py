"""Clock abstraction for dependency injection in tests.

Task timestamps are epoch milliseconds. Components take a clock instead of
calling :func:`time.time` directly so that tests can control time (retention
windows, ``updated_at`` stamps) without monkey patching.
"""

import time
from typing import Protocol


class ClockProtocol(Protocol):
    """Protocol for clock implementations."""

    def now_ms(self) -> int:
        """Get the current time as epoch milliseconds."""
        ...


class SystemClock:
    """Real system clock implementation."""

    def now_ms(self) -> int:
        return time.time_ns() // 1_000_000


class FakeClock:
    """Fake clock implementation for testing."""

    def __init__(self, initial_ms: int = 1_700_000_000_000) -> None:
        """Initialize with a specific time.

        Args:
            initial_ms: Initial timestamp in epoch milliseconds
        """
        self._current_ms = initial_ms

    def now_ms(self) -> int:
        return self._current_ms

    def advance(self, ms: int) -> None:
        """Advance the clock by the specified number of milliseconds."""
        self._current_ms += ms

    def set_time(self, timestamp_ms: int) -> None:
        """Set the clock to a specific epoch-millisecond timestamp."""
        self._current_ms = timestamp_ms
