# deviceadm/utils/clock.py
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time, injected so tests can pin timestamps."""

    def now(self) -> datetime:
        ...


class UTCClock:
    """Wall clock returning timezone-aware UTC datetimes."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant
