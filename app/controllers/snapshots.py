"""
Occupancy Snapshots
===================
Persist the current per-gender count as a point-in-time reading.
"""

import logging
from datetime import datetime
from typing import Callable

from app.controllers.archive import utc_now
from app.engine import VenueSchedule, classify_counts, resolve_business_date
from app.store import EventStore

logger = logging.getLogger(__name__)


async def take_snapshot(store: EventStore, schedule: VenueSchedule, clock: Callable[[], datetime] = utc_now) -> dict:
    """Reduce today's entries and store the resulting count."""
    now = clock()
    business_date = resolve_business_date(now, schedule)
    rows = await store.fetch_events(logical_date=business_date)
    count = classify_counts(rows)
    snapshot = await store.insert_snapshot(now, business_date, count)
    logger.info(f"Occupancy snapshot for {business_date}: {count.to_dict()}")
    return snapshot
