"""
portal_sdk.tier1_runtime.clock
────────────────────────────────
Mockable time source. Cache expiry reads ``monotonic()``; upload names and
record stamps read ``now()``/``timestamp_ms()``. Tests swap in a
:class:`ManualClock` to step time forward without sleeping.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable


# ── Clock implementation ───────────────────────────────────────────────────

class Clock:
    """Mockable clock. Override the time functions to control time in tests."""

    def __init__(
        self,
        now_fn: Callable[[], datetime] | None = None,
        monotonic_fn: Callable[[], float] | None = None,
    ) -> None:
        self._now_fn = now_fn or (lambda: datetime.now(tz=timezone.utc))
        self._monotonic_fn = monotonic_fn or time.monotonic

    def now(self) -> datetime:
        """Return the current UTC datetime."""
        return self._now_fn()

    def monotonic(self) -> float:
        """Seconds on a clock that never goes backwards; used for TTLs."""
        return self._monotonic_fn()

    def timestamp(self) -> float:
        """Return the current Unix timestamp (float seconds)."""
        return self.now().timestamp()

    def timestamp_ms(self) -> int:
        """Return the current Unix timestamp in milliseconds."""
        return int(self.timestamp() * 1000)


class ManualClock(Clock):
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self._current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)
        self._elapsed = 0.0
        super().__init__(now_fn=lambda: self._current, monotonic_fn=lambda: self._elapsed)

    def advance(self, seconds: float) -> None:
        self._elapsed += seconds
        self._current = self._current + timedelta(seconds=seconds)


# ── Module-level singleton ─────────────────────────────────────────────────

_clock = Clock()


def get_clock() -> Clock:
    """Return the global clock instance."""
    return _clock


def set_clock(clock: Clock) -> None:
    """Replace the global clock (use in tests)."""
    global _clock
    _clock = clock


__all__ = ["Clock", "ManualClock", "get_clock", "set_clock"]
