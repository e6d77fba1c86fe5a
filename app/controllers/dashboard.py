"""
Historical Dashboard
====================
Interval statistics for one business day: the bucket grid rebuilt as a true
cumulative scan, peak buckets and whole-day totals.

A generation counter guards every load, so a slow response for a previously
selected date is discarded instead of overwriting the newer one.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Awaitable, Callable, Dict, List, Optional

from app.config import DASHBOARD_DEBOUNCE_SECONDS
from app.controllers.archive import utc_now
from app.engine import (
    EventTotals,
    PeakStat,
    RunningTotalMode,
    TimeBucket,
    VenueSchedule,
    build_buckets,
    business_day_window,
    compute_peaks,
    parse_events,
    resolve_business_date,
    summarize,
)
from app.engine.models import as_utc
from app.realtime import ChangeHub, Debouncer, Subscription
from app.store import EventStore

logger = logging.getLogger(__name__)


@dataclass
class DashboardSnapshot:
    business_date: date
    window_start: datetime
    window_end: datetime
    buckets: List[TimeBucket] = field(default_factory=list)
    peaks: Dict[str, PeakStat] = field(default_factory=dict)
    totals: EventTotals = field(default_factory=EventTotals)
    session_id: Optional[str] = None
    generation: int = 0

    def to_dict(self) -> dict:
        return {
            "date": self.business_date.isoformat(),
            "window": {"start": self.window_start.isoformat(), "end": self.window_end.isoformat()},
            "session_id": self.session_id,
            "totals": self.totals.to_dict(),
            "peaks": {name: peak.to_dict() for name, peak in self.peaks.items()},
            "intervals": [b.to_dict() for b in self.buckets],
        }


class DashboardController:
    def __init__(
        self,
        store: EventStore,
        hub: ChangeHub,
        schedule: VenueSchedule,
        debounce_seconds: float = DASHBOARD_DEBOUNCE_SECONDS,
        on_update: Optional[Callable[[DashboardSnapshot], Awaitable[None]]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.hub = hub
        self.schedule = schedule
        self.on_update = on_update
        self.clock = clock
        self.generation = 0
        self.snapshot: Optional[DashboardSnapshot] = None
        self.selected_date: Optional[date] = None
        self.session_id: Optional[str] = None
        self._debouncer = Debouncer(debounce_seconds, self._reload)
        self._subscription: Optional[Subscription] = None
        self._listener = None

    def today(self) -> date:
        return resolve_business_date(self.clock(), self.schedule)

    async def load_date(self, business_date: date, session_id: Optional[str] = None) -> Optional[DashboardSnapshot]:
        """Fetch and aggregate one business day.

        Returns None when a newer load started while this one was waiting.
        """
        self.generation += 1
        generation = self.generation
        self.selected_date = business_date
        self.session_id = session_id

        start, end = business_day_window(business_date, self.schedule)
        rows = await self.store.fetch_events(start=start, end=end, session_id=session_id)
        if generation != self.generation:
            logger.debug(f"Discarding stale dashboard load for {business_date}")
            return None

        events = parse_events(rows)
        buckets = build_buckets(events, self.schedule, business_date, mode=RunningTotalMode.CUMULATIVE)
        snapshot = DashboardSnapshot(
            business_date=business_date,
            window_start=start,
            window_end=end,
            buckets=buckets,
            peaks=compute_peaks(buckets),
            totals=summarize(events),
            session_id=session_id,
            generation=generation,
        )
        self.snapshot = snapshot
        return snapshot

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    async def watch(self, business_date: date, session_id: Optional[str] = None) -> Optional[DashboardSnapshot]:
        """Load a date and keep it fresh as entries inside its window change."""
        self._stop_watching()
        start, end = business_day_window(business_date, self.schedule)

        def in_window(record: dict) -> bool:
            if record.get("logical_date") == business_date.isoformat():
                return True
            occurred_at = record.get("occurred_at")
            if not occurred_at:
                return False
            return start <= as_utc(datetime.fromisoformat(occurred_at)) < end

        self._subscription = self.hub.subscribe("entries", in_window)
        self._listener = asyncio.create_task(self._listen(self._subscription))
        return await self.load_date(business_date, session_id)

    async def _listen(self, subscription: Subscription):
        async for _note in subscription:
            self._debouncer.trigger()

    async def _reload(self):
        if self.selected_date is None:
            return
        snapshot = await self.load_date(self.selected_date, self.session_id)
        if snapshot is not None and self.on_update is not None:
            await self.on_update(snapshot)

    def _stop_watching(self):
        self._debouncer.cancel()
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    async def close(self):
        self._stop_watching()
