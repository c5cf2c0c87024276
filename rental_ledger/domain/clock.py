"""
Time sources for movement timestamps and allocation closures.

Services take a ``Clock`` instead of calling ``datetime.now()`` so tests
can pin the time and step it forward between operations.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock:
    """
    Frozen clock for tests.

    ``now()`` keeps returning the same instant until the test moves it with
    ``advance``, ``tick`` or ``set_time``.
    """

    def __init__(self, start: datetime = DEFAULT_TEST_TIME):
        self._current = start

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance()
        return self._current
