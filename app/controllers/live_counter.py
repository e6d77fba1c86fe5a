"""
Live Counter
============
In-memory occupancy for the door staff interface.

Taps update the count optimistically before the write lands. If the write
is rejected the delta is compensated, and any change notification triggers
a full refetch so the count heals after missed or duplicate notifications.
"""

import asyncio
import logging
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional

from app.controllers.archive import ArchiveManager, ArchiveResult, utc_now
from app.engine import (
    CurrentCount,
    Event,
    EventKind,
    Gender,
    VenueSchedule,
    classify_counts,
    resolve_business_date,
)
from app.errors import StoreUnavailableError, TallyError, WriteRejectedError
from app.realtime import ChangeHub, Subscription
from app.store import EventStore

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    PENDING = "pending"  # connected, optimistic writes in flight


class LiveCounter:
    def __init__(
        self,
        store: EventStore,
        hub: ChangeHub,
        archive_manager: ArchiveManager,
        schedule: VenueSchedule,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.hub = hub
        self.archive_manager = archive_manager
        self.schedule = schedule
        self.clock = clock

        self.count = CurrentCount()
        self.connected = False
        self.pending_writes = 0
        self.business_date: Optional[date] = None
        self.session_id: Optional[str] = None
        self.connection_error: Optional[str] = None  # persistent until reconnect
        self.last_error: Optional[str] = None        # transient, dismissible

        self._subscription: Optional[Subscription] = None
        self._listener: Optional[asyncio.Task] = None
        # Bumped by local mutations so a refresh that started earlier is discarded
        self._generation = 0
        self._applied_refreshes = 0

    @property
    def state(self) -> ConnectionState:
        if not self.connected:
            return ConnectionState.DISCONNECTED
        if self.pending_writes:
            return ConnectionState.PENDING
        return ConnectionState.CONNECTED

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self):
        """Check the store, seed the count and start listening for changes."""
        try:
            await self.store.ping()
        except StoreUnavailableError as e:
            self.connected = False
            self.connection_error = str(e)
            raise
        self.connected = True
        self.connection_error = None
        await self._scope_to(resolve_business_date(self.clock(), self.schedule))
        logger.info(f"Live counter connected for {self.business_date}: {self.count.to_dict()}")

    async def ensure_connected(self):
        if not self.connected:
            await self.connect()
        else:
            await self._check_rollover()

    async def close(self):
        self._unsubscribe()
        self.connected = False

    async def _scope_to(self, business_date: date):
        self._unsubscribe()
        self.business_date = business_date
        self._subscription = self.hub.subscribe(
            "entries", lambda record: record.get("logical_date") == business_date.isoformat()
        )
        self._listener = asyncio.create_task(self._listen(self._subscription))
        await self.refresh()

    def _unsubscribe(self):
        if self._listener is not None:
            self._listener.cancel()
            self._listener = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    async def _check_rollover(self):
        today = resolve_business_date(self.clock(), self.schedule)
        if today != self.business_date:
            logger.info(f"Business date rolled over from {self.business_date} to {today}")
            await self._scope_to(today)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def refresh(self) -> CurrentCount:
        """Refetch today's entries and re-derive the count."""
        self._generation += 1
        generation = self._generation
        rows = await self.store.fetch_events(logical_date=self.business_date)
        session_id = await self.store.latest_session_id(self.business_date)
        if generation != self._generation:
            logger.debug("Discarding stale live counter refresh")
            return self.count
        self.count = classify_counts(rows)
        self.session_id = session_id
        self._applied_refreshes += 1
        return self.count

    async def _listen(self, subscription: Subscription):
        async for _note in subscription:
            # One refetch covers everything already queued
            subscription.drain()
            try:
                await self.refresh()
            except TallyError as e:
                logger.warning(f"Live counter refresh failed: {e}")
                self.last_error = str(e)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _require_connected(self):
        if not self.connected:
            raise StoreUnavailableError(
                self.connection_error or "Unable to connect to the database. Please try again later."
            )

    async def record(self, gender: Gender, kind: EventKind) -> Event:
        """Log one person entering or leaving."""
        self._require_connected()
        gender, kind = Gender(gender), EventKind(kind)
        if gender == Gender.SYSTEM or kind not in (EventKind.ENTRY, EventKind.EXIT):
            raise ValueError(f"Cannot record {gender.value}/{kind.value} from the counter")
        await self._check_rollover()

        now = self.clock()
        delta = 1 if kind == EventKind.ENTRY else -1
        before = self.count.get(gender)
        self.count = self.count.adjust(gender, delta)
        applied = self.count.get(gender) - before
        self._generation += 1
        self.pending_writes += 1
        refreshes_before = self._applied_refreshes
        self.last_error = None
        try:
            return await self.store.insert_event(Event(
                gender=gender,
                kind=kind,
                occurred_at=now,
                logical_date=resolve_business_date(now, self.schedule),
                session_id=self.session_id,
            ))
        except WriteRejectedError as e:
            # A refresh applied meanwhile already excludes the rejected row
            if applied and self._applied_refreshes == refreshes_before:
                self.count = self.count.adjust(gender, -applied)
            self.last_error = str(e)
            raise
        finally:
            self.pending_writes -= 1

    async def reset(self, confirmed: bool = False) -> Optional[ArchiveResult]:
        """Archive today's entries and start a new session at zero."""
        if not confirmed:
            raise ValueError("Reset must be confirmed")
        self._require_connected()
        await self._check_rollover()
        result = await self.archive_manager.archive(self.business_date, session_id=self.session_id)
        self._generation += 1
        self.count = CurrentCount()
        if result is not None:
            self.session_id = result.new_session_id
        self.last_error = None
        return result

    def dismiss_error(self):
        self.last_error = None

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "business_date": self.business_date.isoformat() if self.business_date else None,
            "session_id": self.session_id,
            "counts": self.count.to_dict(),
            "connection_error": self.connection_error,
            "error": self.last_error,
        }
