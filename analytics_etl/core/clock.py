"""
Clock capability injected into layers and the orchestrator.

Layers never call datetime.now() directly so tests can freeze time.
"""

from datetime import datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Supplies the current timestamp."""

    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now()

    def __repr__(self) -> str:
        return "SystemClock()"


class FrozenClock:
    """
    Clock that always returns the same instant until advanced.

    Usage:
        clock = FrozenClock(datetime(2024, 1, 15, 10, 30))
        layer = DWDLayer(clock=clock)
        clock.advance(days=1)
    """

    def __init__(self, instant: datetime):
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def advance(self, **delta) -> None:
        """Move the frozen instant forward by a timedelta(**delta)."""
        self._instant = self._instant + timedelta(**delta)

    def __repr__(self) -> str:
        return f"FrozenClock({self._instant.isoformat()})"
