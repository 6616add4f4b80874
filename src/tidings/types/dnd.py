"""Do-not-disturb state and schedule windows."""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from enum import Enum

WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


class DndMode(str, Enum):
    OFF = "off"
    MANUAL_ON = "manual-on"
    SCHEDULED_ON = "scheduled-on"

    @property
    def active(self) -> bool:
        return self is not DndMode.OFF


@dataclass(frozen=True)
class DndWindow:
    start: time
    end: time
    days: frozenset[int] = frozenset(range(7))   # Weekday the window starts on

    @property
    def overnight(self) -> bool:
        return self.end <= self.start

    def occurrence_containing(self, now: datetime) -> tuple[datetime, datetime] | None:
        """Return (start, end) of the occurrence covering `now`, if any.

        Overnight windows belong to the day they start on, so a Friday
        22:00-07:00 window covers Saturday morning.
        """
        for offset in (0, 1):
            day = (now - timedelta(days=offset)).date()
            if day.weekday() not in self.days:
                continue
            start = datetime.combine(day, self.start, tzinfo=now.tzinfo)
            end_day = day + timedelta(days=1) if self.overnight else day
            end = datetime.combine(end_day, self.end, tzinfo=now.tzinfo)
            if start <= now < end:
                return start, end
        return None
