"""
Business Day Boundaries
=======================
Venues run on a business day that does not match the calendar day: anything
before the cutover hour (04:00 by default) belongs to the previous date.
One VenueSchedule carries the timezone, opening window and bucket width so the
bucket grid and the date resolver always agree.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Tuple

import pytz

from app import config
from app.engine.models import as_utc


@dataclass(frozen=True)
class VenueSchedule:
    timezone: str = "America/Toronto"
    open_hour: int = 16
    close_hour: int = 3
    cutover_hour: int = 4
    bucket_minutes: int = 15

    def __post_init__(self):
        for name in ("open_hour", "close_hour", "cutover_hour"):
            value = getattr(self, name)
            if not 0 <= value <= 23:
                raise ValueError(f"{name} must be between 0 and 23, got {value}")
        if not self.close_hour <= self.cutover_hour < self.open_hour:
            raise ValueError(
                "Schedule must satisfy close_hour <= cutover_hour < open_hour "
                f"(got close={self.close_hour}, cutover={self.cutover_hour}, open={self.open_hour})"
            )
        if self.bucket_minutes <= 0 or 60 % self.bucket_minutes:
            raise ValueError(f"bucket_minutes must divide an hour, got {self.bucket_minutes}")
        # Fail at startup on an unknown zone, not on the first request
        pytz.timezone(self.timezone)

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    @property
    def bucket_width(self) -> timedelta:
        return timedelta(minutes=self.bucket_minutes)

    def sort_hour(self, hour: int) -> int:
        """Hours before the cutover sort after midnight, at the end of the day."""
        return hour + 24 if hour < self.cutover_hour else hour

    def to_local(self, instant: datetime) -> datetime:
        return as_utc(instant).astimezone(self.tz)

    def localize(self, day: date, hour: int, minute: int = 0) -> datetime:
        return self.tz.localize(datetime.combine(day, time(hour, minute)))


def default_schedule() -> VenueSchedule:
    """Schedule built from environment configuration."""
    return VenueSchedule(
        timezone=config.VENUE_TIMEZONE,
        open_hour=config.VENUE_OPEN_HOUR,
        close_hour=config.VENUE_CLOSE_HOUR,
        cutover_hour=config.BUSINESS_DAY_CUTOVER_HOUR,
        bucket_minutes=config.BUCKET_MINUTES,
    )


def resolve_business_date(instant: datetime, schedule: VenueSchedule) -> date:
    """Business date an instant belongs to, in the venue's timezone.

    02:59 local on May 2nd -> May 1st; 04:00 local on May 2nd -> May 2nd.
    """
    local = schedule.to_local(instant)
    if local.hour < schedule.cutover_hour:
        return local.date() - timedelta(days=1)
    return local.date()


def business_day_window(business_date: date, schedule: VenueSchedule) -> Tuple[datetime, datetime]:
    """UTC bounds `[start, end)` of a business date, cutover to cutover."""
    start = schedule.localize(business_date, schedule.cutover_hour)
    end = schedule.localize(business_date + timedelta(days=1), schedule.cutover_hour)
    return start.astimezone(pytz.utc), end.astimezone(pytz.utc)


def bucket_start(business_date: date, label: str, schedule: VenueSchedule) -> datetime:
    """Venue-local start of the bucket labelled `HH:MM` on a business date."""
    hour, minute = (int(part) for part in label.split(":"))
    day = business_date + timedelta(days=1) if hour < schedule.cutover_hour else business_date
    return schedule.localize(day, hour, minute)
