"""
Occupancy Aggregation Engine
============================
Stateless functions shared by every view that derives numbers from entries.
"""

from app.engine.aggregation import (
    bucket_grid,
    build_buckets,
    classify_counts,
    compute_peaks,
    parse_events,
    summarize,
)
from app.engine.boundaries import (
    VenueSchedule,
    bucket_start,
    business_day_window,
    default_schedule,
    resolve_business_date,
)
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

__all__ = [
    "bucket_grid",
    "build_buckets",
    "classify_counts",
    "compute_peaks",
    "parse_events",
    "summarize",
    "VenueSchedule",
    "bucket_start",
    "business_day_window",
    "default_schedule",
    "resolve_business_date",
    "CurrentCount",
    "Event",
    "EventKind",
    "EventTotals",
    "Gender",
    "PeakStat",
    "RunningTotalMode",
    "TimeBucket",
]
