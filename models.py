"""Records exchanged between the store, the registry and the workflow."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

STAT_FIELDS = ("shifts_given", "shifts_taken", "subscriptions")


@dataclass(frozen=True)
class TimeRange:
    start: time
    end: time

    @property
    def overnight(self) -> bool:
        """True when the shift ends on the next calendar day."""

        return self.end < self.start

    def label(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"

    @classmethod
    def from_label(cls, value: str) -> "TimeRange":
        start_text, end_text = value.split("-", 1)
        return cls(
            start=datetime.strptime(start_text.strip(), "%H:%M").time(),
            end=datetime.strptime(end_text.strip(), "%H:%M").time(),
        )


@dataclass(frozen=True)
class Shift:
    id: int
    owner_id: int
    owner_name: str
    zone: str
    day: date
    time_range: TimeRange
    created_at: datetime

    def starts_at(self, tz: tzinfo) -> datetime:
        return datetime.combine(self.day, self.time_range.start, tzinfo=tz)

    def ends_at(self, tz: tzinfo) -> datetime:
        end_day = self.day + timedelta(days=1) if self.time_range.overnight else self.day
        return datetime.combine(end_day, self.time_range.end, tzinfo=tz)

    def same_slot(self, owner_id: int, zone: str, day: date, time_range: TimeRange) -> bool:
        return (
            self.owner_id == owner_id
            and self.zone == zone
            and self.day == day
            and self.time_range == time_range
        )


@dataclass(frozen=True)
class Subscription:
    user_id: int
    zone: str


@dataclass(frozen=True)
class UserProfile:
    user_id: int
    first_name: str
    last_name: str
    courier_id: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass(frozen=True)
class Stat:
    user_id: int
    shifts_given: int = 0
    shifts_taken: int = 0
    subscriptions: int = 0


def optional_int(value: object) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None
