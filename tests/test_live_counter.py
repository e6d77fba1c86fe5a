"""
Live Counter Controller Tests
=============================
Connection state, optimistic updates, compensation on failure,
reconciliation from notifications and business-date rollover.
"""
import asyncio
from datetime import date

import pytest

from app.controllers.archive import ArchiveManager
from app.controllers.live_counter import ConnectionState, LiveCounter
from app.engine import CurrentCount, EventKind, Gender
from app.errors import ArchiveError, StoreUnavailableError, WriteRejectedError
from app.store import EventStore
from tests.conftest import SCHEDULE, make_event


class UnreachableStore(EventStore):
    async def ping(self):
        raise StoreUnavailableError("Unable to connect to the database. Please try again later.")


class RejectingStore(EventStore):
    """Accepts reads, rejects person writes once `reject` is set."""
    reject = False

    async def insert_event(self, event):
        if self.reject and event.is_person:
            raise WriteRejectedError("Error logging entry: permission denied")
        return await super().insert_event(event)


async def wait_for(condition, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestConnection:
    """Disconnected -> Connected."""

    @pytest.mark.asyncio
    async def test_connect_seeds_from_todays_entries(self, counter, store):
        await store.insert_event(make_event("2024-05-01 17:00", "male", "entry"))
        await store.insert_event(make_event("2024-05-01 17:05", "female", "entry"))
        await store.insert_event(make_event("2024-04-30 22:00", "male", "entry"))  # yesterday
        await counter.connect()
        assert counter.state == ConnectionState.CONNECTED
        assert counter.business_date == date(2024, 5, 1)
        assert counter.count == CurrentCount(male=1, female=1)

    @pytest.mark.asyncio
    async def test_unreachable_store_stays_disconnected(self, setup_database, hub, clock):
        from main import database
        store = UnreachableStore(database, hub)
        live = LiveCounter(store, hub, ArchiveManager(store, SCHEDULE, clock), SCHEDULE, clock)
        with pytest.raises(StoreUnavailableError):
            await live.connect()
        assert live.state == ConnectionState.DISCONNECTED
        assert "Unable to connect" in live.connection_error

        with pytest.raises(StoreUnavailableError):
            await live.record(Gender.MALE, EventKind.ENTRY)
        with pytest.raises(StoreUnavailableError):
            await live.reset(confirmed=True)
        assert live.count == CurrentCount()


class TestRecord:
    """Optimistic updates."""

    @pytest.mark.asyncio
    async def test_entry_increments_and_persists(self, counter, store):
        await counter.connect()
        event = await counter.record(Gender.FEMALE, EventKind.ENTRY)
        assert counter.count.female == 1
        assert event.id is not None
        assert event.logical_date == date(2024, 5, 1)
        assert counter.state == ConnectionState.CONNECTED
        rows = await store.fetch_events(logical_date=date(2024, 5, 1))
        assert len(rows) == 1

    @pytest.mark.asyncio
    async def test_exit_clamped_at_zero(self, counter):
        await counter.connect()
        await counter.record(Gender.MALE, EventKind.EXIT)
        assert counter.count.male == 0

    @pytest.mark.asyncio
    async def test_after_midnight_tagged_with_previous_date(self, counter, clock):
        clock.set("2024-05-02 01:30")
        await counter.connect()
        event = await counter.record(Gender.MALE, EventKind.ENTRY)
        assert event.logical_date == date(2024, 5, 1)

    @pytest.mark.asyncio
    async def test_marker_kinds_rejected(self, counter):
        await counter.connect()
        with pytest.raises(ValueError):
            await counter.record(Gender.SYSTEM, EventKind.ENTRY)
        with pytest.raises(ValueError):
            await counter.record(Gender.MALE, EventKind.SESSION_START)

    @pytest.mark.asyncio
    async def test_failed_write_is_compensated(self, setup_database, hub, clock):
        from main import database
        store = RejectingStore(database, hub)
        live = LiveCounter(store, hub, ArchiveManager(store, SCHEDULE, clock), SCHEDULE, clock)
        await live.connect()
        await live.record(Gender.MALE, EventKind.ENTRY)
        await wait_for(lambda: live.count.male == 1)

        store.reject = True
        with pytest.raises(WriteRejectedError):
            await live.record(Gender.MALE, EventKind.ENTRY)
        assert live.count.male == 1
        assert "permission denied" in live.last_error

        with pytest.raises(WriteRejectedError):
            await live.record(Gender.MALE, EventKind.EXIT)
        assert live.count.male == 1
        assert live.state == ConnectionState.CONNECTED

        live.dismiss_error()
        assert live.last_error is None
        await live.close()

    @pytest.mark.asyncio
    async def test_failed_exit_at_zero_does_not_add(self, setup_database, hub, clock):
        from main import database
        store = RejectingStore(database, hub)
        store.reject = True
        live = LiveCounter(store, hub, ArchiveManager(store, SCHEDULE, clock), SCHEDULE, clock)
        await live.connect()
        with pytest.raises(WriteRejectedError):
            await live.record(Gender.FEMALE, EventKind.EXIT)
        assert live.count.female == 0
        await live.close()


class TestLargeDays:
    """The count covers every row, not just the first query page."""

    @pytest.mark.asyncio
    async def test_count_past_one_page(self, setup_database, hub, clock):
        from main import database
        store = EventStore(database, hub, page_size=3)
        live = LiveCounter(store, hub, ArchiveManager(store, SCHEDULE, clock), SCHEDULE, clock)
        await live.connect()
        for _ in range(5):
            await live.record(Gender.MALE, EventKind.ENTRY)
            clock.advance(seconds=1)

        await live.refresh()
        assert live.count.male == 5

        result = await live.reset(confirmed=True)
        assert result.totals.total_entries == 5
        assert live.count == CurrentCount()
        rows = await store.fetch_events(logical_date=date(2024, 5, 1))
        assert len(rows) == 1  # session marker only
        await live.close()


class TestReconciliation:
    """Notifications trigger a full refetch."""

    @pytest.mark.asyncio
    async def test_write_from_another_tablet_is_picked_up(self, counter, store):
        await counter.connect()
        await store.insert_event(make_event("2024-05-01 19:00", "female", "entry"))
        await wait_for(lambda: counter.count.female == 1)

    @pytest.mark.asyncio
    async def test_other_dates_ignored(self, counter, store, hub):
        await counter.connect()
        await store.insert_event(make_event("2024-04-30 19:00", "female", "entry"))
        await asyncio.sleep(0.05)
        assert counter.count.female == 0

    @pytest.mark.asyncio
    async def test_refresh_heals_drift(self, counter, store):
        await counter.connect()
        counter.count = CurrentCount(male=40, female=3)  # drifted
        await counter.refresh()
        assert counter.count == CurrentCount()


class TestRollover:
    """The counter follows the business date."""

    @pytest.mark.asyncio
    async def test_new_business_day_starts_from_its_own_entries(self, counter, clock):
        await counter.connect()
        await counter.record(Gender.MALE, EventKind.ENTRY)
        await counter.record(Gender.MALE, EventKind.ENTRY)
        clock.set("2024-05-02 03:59")
        await counter.ensure_connected()
        assert counter.business_date == date(2024, 5, 1)
        assert counter.count.male == 2

        clock.set("2024-05-02 16:00")
        await counter.ensure_connected()
        assert counter.business_date == date(2024, 5, 2)
        assert counter.count == CurrentCount()


class TestReset:
    """Archive then zero."""

    @pytest.mark.asyncio
    async def test_reset_requires_confirmation(self, counter):
        await counter.connect()
        with pytest.raises(ValueError):
            await counter.reset()

    @pytest.mark.asyncio
    async def test_reset_archives_and_zeroes(self, counter, store):
        await counter.connect()
        await counter.record(Gender.MALE, EventKind.ENTRY)
        await counter.record(Gender.FEMALE, EventKind.ENTRY)
        result = await counter.reset(confirmed=True)
        assert result is not None
        assert result.totals.total_entries == 2
        assert counter.count == CurrentCount()
        assert counter.session_id == result.new_session_id

        event = await counter.record(Gender.FEMALE, EventKind.ENTRY)
        assert event.session_id == result.new_session_id
        await wait_for(lambda: counter.count.female == 1)

    @pytest.mark.asyncio
    async def test_reset_with_nothing_logged(self, counter):
        await counter.connect()
        assert await counter.reset(confirmed=True) is None
        assert counter.count == CurrentCount()

    @pytest.mark.asyncio
    async def test_failed_reset_leaves_state(self, counter):
        await counter.connect()
        await counter.record(Gender.MALE, EventKind.ENTRY)

        async def broken_archive(business_date, session_id=None):
            raise ArchiveError("Reset failed, no data was changed: disk full")

        counter.archive_manager.archive = broken_archive
        with pytest.raises(ArchiveError):
            await counter.reset(confirmed=True)
        assert counter.count.male == 1

    @pytest.mark.asyncio
    async def test_reconnect_restores_session(self, counter, store, hub, clock):
        await counter.connect()
        await counter.record(Gender.MALE, EventKind.ENTRY)
        result = await counter.reset(confirmed=True)
        await counter.close()

        fresh = LiveCounter(store, hub, ArchiveManager(store, SCHEDULE, clock), SCHEDULE, clock)
        await fresh.connect()
        assert fresh.session_id == result.new_session_id
        await fresh.close()
