"""Time sources used by the history store and preference engine."""

from __future__ import annotations

import time
from datetime import datetime
from typing import Protocol


class Clock(Protocol):
    """Supplies wall-clock time in epoch milliseconds and the local hour."""

    def now_ms(self) -> int: ...

    def monotonic(self) -> float: ...

    def local_hour(self) -> int: ...


class SystemClock:
    """Clock backed by the host system time."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def monotonic(self) -> float:
        return time.monotonic()

    def local_hour(self) -> int:
        return datetime.now().hour


class FrozenClock:
    """Manually advanced clock for tests and replays."""

    def __init__(self, now_ms: int = 0, *, hour: int | None = None):
        self._now_ms = now_ms
        self._monotonic = 0.0
        self._hour = hour

    def now_ms(self) -> int:
        return self._now_ms

    def monotonic(self) -> float:
        return self._monotonic

    def local_hour(self) -> int:
        if self._hour is not None:
            return self._hour
        return datetime.fromtimestamp(self._now_ms / 1000).hour

    def set_hour(self, hour: int) -> None:
        self._hour = hour

    def advance(self, seconds: float) -> None:
        """Move both wall-clock and monotonic time forward."""

        self._monotonic += seconds
        self._now_ms += int(seconds * 1000)
