"""Time source for the progression engine.

Every "today" the engine uses (streak days, challenge periods, activity
dates) comes from one Clock so that all components agree on the local day.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from questline.config import get_settings


class Clock:
    """Wall clock pinned to an IANA time zone."""

    def __init__(self, tz_name: str = "UTC") -> None:
        self.tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(timezone.utc).astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def localize(self, dt: datetime) -> datetime:
        """Convert an aware datetime to the clock's zone; naive values are taken as UTC."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(self.tz)


class FixedClock(Clock):
    """Clock frozen at a given instant. Used by tests and replays."""

    def __init__(self, at: datetime, tz_name: str = "UTC") -> None:
        super().__init__(tz_name)
        self._at = at if at.tzinfo else at.replace(tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._at.astimezone(self.tz)

    def advance(self, **kwargs: float) -> None:
        """Move the frozen instant forward by ``timedelta(**kwargs)``."""
        self._at = self._at + timedelta(**kwargs)


def get_clock() -> Clock:
    """Build the configured clock (FastAPI dependency)."""
    return Clock(get_settings().timezone)
