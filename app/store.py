"""
Event Store
===========
Async access to the entries log, archive tables and snapshots.

Driver failures are translated into domain errors, and every committed
write publishes a change notification. Writes made inside `transaction()`
hold their notifications until commit and drop them on rollback.
"""

import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import date, datetime
from typing import List, Optional

import sqlalchemy
from sqlalchemy import and_, func, or_

from app.config import EVENT_PAGE_SIZE
from app.database import entries, historical_entries, historical_intervals, occupancy_snapshots, naive_utc_now
from app.engine.models import CurrentCount, Event, EventKind, EventTotals, Gender, TimeBucket, as_utc
from app.errors import StoreUnavailableError, WriteRejectedError
from app.realtime import ChangeHub, ChangeNotification, ChangeType

logger = logging.getLogger(__name__)

DB_ERRORS = (sqlalchemy.exc.SQLAlchemyError, OSError)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return as_utc(value).replace(tzinfo=None)


def _iso(value):
    return value.isoformat() if value is not None else None


class EventStore:
    def __init__(self, database, hub: ChangeHub, page_size: int = EVENT_PAGE_SIZE):
        self.database = database
        self.hub = hub
        self.page_size = page_size
        self._pending: ContextVar[Optional[List[ChangeNotification]]] = ContextVar(
            f"pending_notifications_{id(self)}", default=None
        )

    # ------------------------------------------------------------------
    # Connectivity and transactions
    # ------------------------------------------------------------------

    async def ping(self):
        """Raise StoreUnavailableError unless a trivial query succeeds."""
        try:
            if not self.database.is_connected:
                await self.database.connect()
            await self.database.fetch_val(sqlalchemy.select(func.count()).select_from(entries))
        except Exception as e:
            logger.error(f"Event store unreachable: {e}")
            raise StoreUnavailableError("Unable to connect to the database. Please try again later.") from e

    @asynccontextmanager
    async def transaction(self):
        pending: List[ChangeNotification] = []
        token = self._pending.set(pending)
        try:
            async with self.database.transaction():
                yield
        finally:
            self._pending.reset(token)
        for note in pending:
            self.hub.publish(note)

    def _notify(self, note: ChangeNotification):
        pending = self._pending.get()
        if pending is None:
            self.hub.publish(note)
        else:
            pending.append(note)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def insert_event(self, event: Event) -> Event:
        values = {
            "gender": event.gender.value,
            "kind": event.kind.value,
            "occurred_at": _naive_utc(event.occurred_at),
            "logical_date": event.logical_date,
            "session_id": event.session_id,
            "count_before_reset": event.count_before_reset,
        }
        try:
            event_id = await self.database.execute(entries.insert().values(**values))
        except DB_ERRORS as e:
            logger.error(f"Insert into entries rejected: {e}")
            raise WriteRejectedError(f"Error logging entry: {e}") from e

        stored = Event(
            gender=event.gender,
            kind=event.kind,
            occurred_at=as_utc(event.occurred_at),
            logical_date=event.logical_date,
            id=event_id,
            session_id=event.session_id,
            count_before_reset=event.count_before_reset,
        )
        self._notify(ChangeNotification("entries", ChangeType.INSERT, stored.to_dict()))
        return stored

    async def fetch_events(
        self,
        logical_date: Optional[date] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        session_id: Optional[str] = None,
        include_archived: bool = False,
    ) -> list:
        """Raw rows ordered by time. Parsing is left to the engine."""
        query = sqlalchemy.select(entries).order_by(entries.c.occurred_at, entries.c.id)
        if logical_date is not None:
            query = query.where(entries.c.logical_date == logical_date)
        if start is not None:
            query = query.where(entries.c.occurred_at >= _naive_utc(start))
        if end is not None:
            query = query.where(entries.c.occurred_at < _naive_utc(end))
        if session_id is not None:
            query = query.where(entries.c.session_id == session_id)
        if not include_archived:
            query = query.where(entries.c.archive_id.is_(None))
        # Keyset pages on (occurred_at, id) so every matching row is returned
        rows = []
        page_query = query
        while True:
            try:
                page = await self.database.fetch_all(page_query.limit(self.page_size))
            except DB_ERRORS as e:
                logger.error(f"Fetching entries failed: {e}")
                raise StoreUnavailableError(f"Error fetching data: {e}") from e
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            last_at, last_id = page[-1]["occurred_at"], page[-1]["id"]
            page_query = query.where(or_(
                entries.c.occurred_at > last_at,
                and_(entries.c.occurred_at == last_at, entries.c.id > last_id),
            ))

    async def latest_session_id(self, logical_date: date) -> Optional[str]:
        query = (
            sqlalchemy.select(entries.c.session_id)
            .where(
                entries.c.logical_date == logical_date,
                entries.c.kind == EventKind.SESSION_START.value,
                entries.c.archive_id.is_(None),
            )
            .order_by(entries.c.occurred_at.desc(), entries.c.id.desc())
            .limit(1)
        )
        try:
            return await self.database.fetch_val(query)
        except DB_ERRORS as e:
            raise StoreUnavailableError(f"Error fetching session: {e}") from e

    async def tag_events(self, event_ids: List[int], archive_id: int) -> int:
        if not event_ids:
            return 0
        query = entries.update().where(entries.c.id.in_(event_ids)).values(archive_id=archive_id)
        try:
            await self.database.execute(query)
        except DB_ERRORS as e:
            raise WriteRejectedError(f"Error tagging entries for archive {archive_id}: {e}") from e
        return len(event_ids)

    async def delete_archived(self, archive_id: Optional[int] = None, logical_date: Optional[date] = None):
        """Delete rows tagged by an archive. Safe to repeat.

        Without an archive id, removes every tagged row left behind by an
        earlier interrupted reset.
        """
        if archive_id is None:
            condition = entries.c.archive_id.isnot(None)
        else:
            condition = entries.c.archive_id == archive_id
        try:
            await self.database.execute(entries.delete().where(condition))
        except DB_ERRORS as e:
            raise WriteRejectedError(f"Error clearing archived entries: {e}") from e
        self._notify(ChangeNotification(
            "entries",
            ChangeType.DELETE,
            {"archive_id": archive_id, "logical_date": _iso(logical_date)},
        ))

    # ------------------------------------------------------------------
    # Archives
    # ------------------------------------------------------------------

    async def insert_archive(self, business_date: date, totals: EventTotals, session_id: Optional[str]) -> int:
        query = historical_entries.insert().values(
            date=business_date,
            start_time=_naive_utc(totals.first_event_at),
            end_time=_naive_utc(totals.last_event_at),
            total_entries=totals.total_entries,
            total_exits=totals.total_exits,
            male_entries=totals.male_entries,
            female_entries=totals.female_entries,
            male_exits=totals.male_exits,
            female_exits=totals.female_exits,
            final_count=totals.final_count.total,
            session_id=session_id,
            created_at=naive_utc_now(),
        )
        try:
            archive_id = await self.database.execute(query)
        except DB_ERRORS as e:
            raise WriteRejectedError(f"Error writing archive summary: {e}") from e
        self._notify(ChangeNotification("historical_entries", ChangeType.INSERT, {
            "id": archive_id, "date": _iso(business_date),
        }))
        return archive_id

    async def insert_intervals(self, archive_id: int, buckets: List[TimeBucket]):
        if not buckets:
            return
        values = [
            {
                "archive_id": archive_id,
                "interval_label": b.label,
                "interval_start": _naive_utc(b.start),
                "interval_end": _naive_utc(b.end),
                "male_entries": b.male_entries,
                "female_entries": b.female_entries,
                "male_exits": b.male_exits,
                "female_exits": b.female_exits,
                "running_total": b.running_total,
            }
            for b in buckets
        ]
        try:
            await self.database.execute_many(historical_intervals.insert(), values)
        except DB_ERRORS as e:
            raise WriteRejectedError(f"Error writing archive intervals: {e}") from e

    async def list_archives(self, limit: int = 50, offset: int = 0):
        total = await self.database.fetch_val(
            sqlalchemy.select(func.count()).select_from(historical_entries)
        ) or 0
        query = (
            sqlalchemy.select(historical_entries)
            .order_by(historical_entries.c.created_at.desc(), historical_entries.c.id.desc())
            .limit(limit)
            .offset(offset)
        )
        rows = await self.database.fetch_all(query)
        return [self._archive_dict(r) for r in rows], total

    async def get_archive(self, archive_id: int) -> Optional[dict]:
        row = await self.database.fetch_one(
            sqlalchemy.select(historical_entries).where(historical_entries.c.id == archive_id)
        )
        if not row:
            return None
        archive = self._archive_dict(row)
        interval_rows = await self.database.fetch_all(
            sqlalchemy.select(historical_intervals)
            .where(historical_intervals.c.archive_id == archive_id)
            .order_by(historical_intervals.c.interval_start, historical_intervals.c.id)
        )
        archive["intervals"] = [{
            "interval": r["interval_label"],
            "interval_start": _iso(as_utc(r["interval_start"])) if r["interval_start"] else None,
            "interval_end": _iso(as_utc(r["interval_end"])) if r["interval_end"] else None,
            "male_entries": r["male_entries"],
            "female_entries": r["female_entries"],
            "male_exits": r["male_exits"],
            "female_exits": r["female_exits"],
            "running_total": r["running_total"],
        } for r in interval_rows]
        return archive

    @staticmethod
    def _archive_dict(r) -> dict:
        return {
            "id": r["id"],
            "date": _iso(r["date"]),
            "start_time": _iso(as_utc(r["start_time"])) if r["start_time"] else None,
            "end_time": _iso(as_utc(r["end_time"])) if r["end_time"] else None,
            "total_entries": r["total_entries"],
            "total_exits": r["total_exits"],
            "male_entries": r["male_entries"],
            "female_entries": r["female_entries"],
            "male_exits": r["male_exits"],
            "female_exits": r["female_exits"],
            "final_count": r["final_count"],
            "session_id": r["session_id"],
            "created_at": _iso(r["created_at"]),
        }

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def insert_snapshot(self, taken_at: datetime, business_date: date, count: CurrentCount) -> dict:
        values = {
            "taken_at": _naive_utc(taken_at),
            "business_date": business_date,
            "male_count": count.male,
            "female_count": count.female,
            "total_count": count.total,
        }
        try:
            snapshot_id = await self.database.execute(occupancy_snapshots.insert().values(**values))
        except DB_ERRORS as e:
            raise WriteRejectedError(f"Error writing occupancy snapshot: {e}") from e
        return {
            "id": snapshot_id,
            "taken_at": _iso(as_utc(taken_at)),
            "business_date": _iso(business_date),
            "male_count": count.male,
            "female_count": count.female,
            "total_count": count.total,
        }

    async def list_snapshots(self, limit: int = 100) -> List[dict]:
        rows = await self.database.fetch_all(
            sqlalchemy.select(occupancy_snapshots)
            .order_by(occupancy_snapshots.c.taken_at.desc(), occupancy_snapshots.c.id.desc())
            .limit(limit)
        )
        return [{
            "id": r["id"],
            "taken_at": _iso(as_utc(r["taken_at"])),
            "business_date": _iso(r["business_date"]),
            "male_count": r["male_count"],
            "female_count": r["female_count"],
            "total_count": r["total_count"],
        } for r in rows]


def marker_event(occurred_at: datetime, logical_date: date, session_id: str, count_before_reset: int) -> Event:
    """A session_start row opening a new counting session."""
    return Event(
        gender=Gender.SYSTEM,
        kind=EventKind.SESSION_START,
        occurred_at=as_utc(occurred_at),
        logical_date=logical_date,
        session_id=session_id,
        count_before_reset=count_before_reset,
    )
