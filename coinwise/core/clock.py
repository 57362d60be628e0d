"""
Time source for the whole app. Every timestamp is an int of UTC epoch
milliseconds. Users:
 - the ledger stamps transactions with now()
 - the competition engine computes entry/end times and expiry
 - the price poller and the sync outbox wait through sleep_for()
"""

import asyncio
import re
import time
from abc import ABC, abstractmethod
from typing import Final

Millis = int  # Milliseconds since epoch


class ClockError(RuntimeError):
    """Raised when a clock would move backwards or sleep a negative span."""


_UNIT_MS: Final[dict[str, int]] = {
    "ms": 1,
    "s": 1_000,
    "m": 60_000,
    "h": 3_600_000,
    "d": 86_400_000,
}
_DURATION_RE: Final = re.compile(r"^(\d+)\s*(ms|s|m|h|d)$")


def parse_duration(text: str) -> Millis:
    """
    '250ms', '30s', '1m', '2h', '1d' -> milliseconds. The quantity must be a
    positive integer. Raises ValueError otherwise.
    """
    match = _DURATION_RE.match(text.strip().lower())
    if match is None:
        raise ValueError(f"parse_duration(): invalid duration {text!r}")
    quantity, unit = int(match.group(1)), match.group(2)
    if quantity == 0:
        raise ValueError(f"parse_duration(): duration must be positive, got {text!r}")
    return quantity * _UNIT_MS[unit]


class Clock(ABC):
    """Monotonic non-decreasing time in UTC epoch milliseconds."""

    @abstractmethod
    def now(self) -> Millis:
        raise NotImplementedError

    @abstractmethod
    async def sleep_for(self, delta_ms: Millis) -> None:
        """Wait `delta_ms` (>= 0) of this clock's time."""
        raise NotImplementedError

    @property
    @abstractmethod
    def is_realtime(self) -> bool:
        raise NotImplementedError


class RealtimeClock(Clock):
    """
    Wall-clock time that never goes backwards: the epoch is sampled once and
    later readings add elapsed time.monotonic(), so NTP adjustments of the OS
    clock do not leak into timestamps.
    """

    def __init__(self) -> None:
        self._epoch_ms: Millis = int(time.time() * 1000)
        self._mono_origin = time.monotonic()

    @property
    def is_realtime(self) -> bool:
        return True

    def now(self) -> Millis:
        return self._epoch_ms + int((time.monotonic() - self._mono_origin) * 1000)

    async def sleep_for(self, delta_ms: Millis) -> None:
        if delta_ms < 0:
            raise ClockError(f"RealtimeClock: negative sleep {delta_ms}")
        await asyncio.sleep(delta_ms / 1000.0)


class SimClock(Clock):
    """
    Manually driven clock for tests and the demo. sleep_for() jumps forward
    by the requested span and yields to the loop once, so retry and poll loops
    run without real waiting.
    """

    def __init__(self, start_ms: Millis = 0) -> None:
        if start_ms < 0:
            raise ClockError("start_ms must be >= 0")
        self._now_ms: Millis = int(start_ms)

    @property
    def is_realtime(self) -> bool:
        return False

    def now(self) -> Millis:
        return self._now_ms

    def advance_to(self, ts_ms: Millis) -> Millis:
        if ts_ms < self._now_ms:
            raise ClockError(f"SimClock: {ts_ms} is before current time {self._now_ms}")
        self._now_ms = ts_ms
        return self._now_ms

    def advance_by(self, delta_ms: Millis) -> Millis:
        if delta_ms < 0:
            raise ClockError(f"SimClock: negative advance {delta_ms}")
        return self.advance_to(self._now_ms + int(delta_ms))

    async def sleep_for(self, delta_ms: Millis) -> None:
        self.advance_by(delta_ms)
        await asyncio.sleep(0)
