"""
Engine Data Model
=================
Events read from the entries table and the derived values built from them.
"""

from dataclasses import dataclass, field, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Mapping, Optional

import pytz


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    SYSTEM = "system"  # session markers only


class EventKind(str, Enum):
    ENTRY = "entry"
    EXIT = "exit"
    SESSION_START = "session_start"
    SESSION_END = "session_end"


class RunningTotalMode(str, Enum):
    """How `build_buckets` fills the running total of each bucket."""
    CUMULATIVE = "cumulative"  # historical reconstruction
    SNAPSHOT = "snapshot"      # final occupancy copied into every bucket


PERSON_GENDERS = (Gender.MALE, Gender.FEMALE)
PERSON_KINDS = (EventKind.ENTRY, EventKind.EXIT)


def as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return pytz.utc.localize(value)
    return value.astimezone(pytz.utc)


@dataclass(frozen=True)
class Event:
    """One row of the entries table."""
    gender: Gender
    kind: EventKind
    occurred_at: datetime
    logical_date: Optional[date] = None
    id: Optional[int] = None
    session_id: Optional[str] = None
    count_before_reset: Optional[int] = None
    archive_id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Event":
        """Build an Event from a database row or notification payload.

        Raises ValueError when gender or kind is outside the enumerations.
        """
        occurred_at = row["occurred_at"]
        if isinstance(occurred_at, str):
            occurred_at = datetime.fromisoformat(occurred_at)
        logical_date = _optional(row, "logical_date")
        if isinstance(logical_date, str):
            logical_date = date.fromisoformat(logical_date)
        return cls(
            gender=Gender(row["gender"]),
            kind=EventKind(row["kind"]),
            occurred_at=as_utc(occurred_at),
            logical_date=logical_date,
            id=_optional(row, "id"),
            session_id=_optional(row, "session_id"),
            count_before_reset=_optional(row, "count_before_reset"),
            archive_id=_optional(row, "archive_id"),
        )

    @property
    def is_person(self) -> bool:
        """Marker rows (system gender or session kinds) are not people."""
        return self.gender in PERSON_GENDERS and self.kind in PERSON_KINDS

    @property
    def delta(self) -> int:
        if not self.is_person:
            return 0
        return 1 if self.kind == EventKind.ENTRY else -1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "gender": self.gender.value,
            "kind": self.kind.value,
            "occurred_at": self.occurred_at.isoformat(),
            "logical_date": self.logical_date.isoformat() if self.logical_date else None,
            "session_id": self.session_id,
            "count_before_reset": self.count_before_reset,
        }


def _optional(row: Mapping[str, Any], key: str):
    try:
        return row[key]
    except KeyError:
        return None


@dataclass(frozen=True)
class CurrentCount:
    """People currently inside, per gender. Never negative."""
    male: int = 0
    female: int = 0

    @property
    def total(self) -> int:
        return self.male + self.female

    def adjust(self, gender: Gender, delta: int) -> "CurrentCount":
        """Return a copy with `delta` applied to one gender, clamped at zero."""
        if gender == Gender.MALE:
            return CurrentCount(male=max(0, self.male + delta), female=self.female)
        if gender == Gender.FEMALE:
            return CurrentCount(male=self.male, female=max(0, self.female + delta))
        return self

    def get(self, gender: Gender) -> int:
        return self.male if gender == Gender.MALE else self.female if gender == Gender.FEMALE else 0

    def to_dict(self) -> dict:
        return {"male": self.male, "female": self.female, "total": self.total}


@dataclass
class TimeBucket:
    """A fixed-width window `[start, end)` labelled by its venue-local start."""
    label: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    male_entries: int = 0
    female_entries: int = 0
    male_exits: int = 0
    female_exits: int = 0
    running_total: int = 0

    @property
    def total_entries(self) -> int:
        return self.male_entries + self.female_entries

    @property
    def total_exits(self) -> int:
        return self.male_exits + self.female_exits

    @property
    def net(self) -> int:
        return self.total_entries - self.total_exits

    @property
    def is_empty(self) -> bool:
        return self.total_entries == 0 and self.total_exits == 0

    def to_dict(self) -> dict:
        return {
            "interval": self.label,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "male_entries": self.male_entries,
            "female_entries": self.female_entries,
            "male_exits": self.male_exits,
            "female_exits": self.female_exits,
            "total_entries": self.total_entries,
            "total_exits": self.total_exits,
            "running_total": self.running_total,
        }


@dataclass(frozen=True)
class PeakStat:
    count: int = 0
    bucket_label: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class EventTotals:
    """Whole-day totals used by archive summaries and dashboard headers."""
    male_entries: int = 0
    female_entries: int = 0
    male_exits: int = 0
    female_exits: int = 0
    final_count: CurrentCount = field(default_factory=CurrentCount)
    first_event_at: Optional[datetime] = None
    last_event_at: Optional[datetime] = None

    @property
    def total_entries(self) -> int:
        return self.male_entries + self.female_entries

    @property
    def total_exits(self) -> int:
        return self.male_exits + self.female_exits

    def to_dict(self) -> dict:
        return {
            "total_entries": self.total_entries,
            "total_exits": self.total_exits,
            "male_entries": self.male_entries,
            "female_entries": self.female_entries,
            "male_exits": self.male_exits,
            "female_exits": self.female_exits,
            "final_count": self.final_count.total,
            "current": self.final_count.to_dict(),
            "first_event_at": self.first_event_at.isoformat() if self.first_event_at else None,
            "last_event_at": self.last_event_at.isoformat() if self.last_event_at else None,
        }
