"""
Aggregation Engine
==================
Pure projections from the raw entries log to occupancy figures:
current count per gender, the 15-minute bucket grid with running totals,
and peak statistics. Shared by the live counter, the dashboard and the
archive manager so every view derives numbers the same way.

Negative counts are clamped per event: a gender never drops below zero at
any step of a reduction, so an exit replayed ahead of its entry is absorbed
rather than carried as a deficit.
"""

import logging
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Union

from app.engine.boundaries import VenueSchedule, bucket_start, resolve_business_date
from app.engine.models import (
    CurrentCount,
    Event,
    EventKind,
    EventTotals,
    Gender,
    PeakStat,
    RunningTotalMode,
    TimeBucket,
)

logger = logging.getLogger(__name__)

EventLike = Union[Event, Mapping]

PEAK_CATEGORIES = (
    "total_entries",
    "total_exits",
    "male_entries",
    "male_exits",
    "female_entries",
    "female_exits",
)


def parse_events(rows: Iterable[EventLike]) -> List[Event]:
    """Coerce rows to Events, skipping malformed ones with a warning."""
    parsed = []
    for row in rows:
        if isinstance(row, Event):
            parsed.append(row)
            continue
        try:
            parsed.append(Event.from_row(row))
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping malformed entry row {_row_id(row)}: {e}")
    return parsed


def _row_id(row) -> str:
    try:
        return str(row["id"])
    except (KeyError, TypeError):
        return "<no id>"


def classify_counts(events: Iterable[EventLike]) -> CurrentCount:
    """Net people inside per gender, clamped at zero after every event."""
    count = CurrentCount()
    for event in parse_events(events):
        if event.is_person:
            count = count.adjust(event.gender, event.delta)
    return count


def summarize(events: Iterable[EventLike]) -> EventTotals:
    """Entry/exit totals per gender plus the final clamped count."""
    people = [e for e in parse_events(events) if e.is_person]
    totals = EventTotals(final_count=classify_counts(people))
    for event in people:
        if event.kind == EventKind.ENTRY:
            if event.gender == Gender.MALE:
                totals.male_entries += 1
            else:
                totals.female_entries += 1
        elif event.gender == Gender.MALE:
            totals.male_exits += 1
        else:
            totals.female_exits += 1
    if people:
        instants = [e.occurred_at for e in people]
        totals.first_event_at = min(instants)
        totals.last_event_at = max(instants)
    return totals


def bucket_label(hour: int, minute: int, bucket_minutes: int) -> str:
    return f"{hour:02d}:{(minute // bucket_minutes) * bucket_minutes:02d}"


def bucket_grid(schedule: VenueSchedule, business_date: Optional[date] = None) -> List[TimeBucket]:
    """Empty buckets from opening to closing, in chronological order.

    With a business date the buckets also carry absolute local start/end times.
    """
    grid: Dict[str, TimeBucket] = {}
    hour = schedule.open_hour
    while hour != schedule.close_hour:
        for minute in range(0, 60, schedule.bucket_minutes):
            label = bucket_label(hour, minute, schedule.bucket_minutes)
            bucket = TimeBucket(label=label)
            if business_date is not None:
                bucket.start = bucket_start(business_date, label, schedule)
                bucket.end = schedule.tz.normalize(bucket.start + schedule.bucket_width)
            grid[label] = bucket
        hour = (hour + 1) % 24
    return sorted(grid.values(), key=lambda b: _sort_key(b.label, schedule))


def _sort_key(label: str, schedule: VenueSchedule):
    hour, minute = (int(part) for part in label.split(":"))
    return schedule.sort_hour(hour), minute


def build_buckets(
    events: Iterable[EventLike],
    schedule: VenueSchedule,
    business_date: Optional[date] = None,
    mode: RunningTotalMode = RunningTotalMode.CUMULATIVE,
) -> List[TimeBucket]:
    """Accumulate events into the bucket grid and fill running totals.

    The full grid is always returned, so quiet intervals show as zeros.
    Events outside opening hours, or on another business date when one is
    given, are dropped.
    """
    buckets = bucket_grid(schedule, business_date)
    by_label = {b.label: b for b in buckets}
    in_grid: Dict[str, List[Event]] = {b.label: [] for b in buckets}
    dropped = 0

    for event in parse_events(events):
        if not event.is_person:
            continue
        if business_date is not None and resolve_business_date(event.occurred_at, schedule) != business_date:
            dropped += 1
            continue
        local = schedule.to_local(event.occurred_at)
        bucket = by_label.get(bucket_label(local.hour, local.minute, schedule.bucket_minutes))
        if bucket is None:
            dropped += 1
            continue
        in_grid[bucket.label].append(event)
        if event.kind == EventKind.ENTRY:
            if event.gender == Gender.MALE:
                bucket.male_entries += 1
            else:
                bucket.female_entries += 1
        elif event.gender == Gender.MALE:
            bucket.male_exits += 1
        else:
            bucket.female_exits += 1

    if dropped:
        logger.info(f"Dropped {dropped} events outside the bucket grid")

    # Replay through the same per-gender clamp as classify_counts, bucket by bucket
    count = CurrentCount()
    for bucket in buckets:
        for event in sorted(in_grid[bucket.label], key=lambda e: e.occurred_at):
            count = count.adjust(event.gender, event.delta)
        bucket.running_total = count.total

    if mode == RunningTotalMode.SNAPSHOT:
        for bucket in buckets:
            bucket.running_total = count.total
    return buckets


def compute_peaks(buckets: Iterable[TimeBucket]) -> Dict[str, PeakStat]:
    """Busiest bucket per category. The earliest bucket wins ties."""
    categories = PEAK_CATEGORIES + ("occupancy",)
    peaks: Dict[str, PeakStat] = {name: PeakStat() for name in categories}
    for bucket in buckets:
        for name in categories:
            value = bucket.running_total if name == "occupancy" else getattr(bucket, name)
            current = peaks[name]
            if current.bucket_label is None or value > current.count:
                peaks[name] = PeakStat(count=value, bucket_label=bucket.label)
    return peaks
