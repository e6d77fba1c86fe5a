"""
Session Archive
===============
Reset = archive the business day's live entries, then clear them.

Everything runs inside one store transaction. Rows included in the archive
are first tagged with its id and then deleted by that tag, so a retried
reset never double counts and never deletes rows it did not archive.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, List, Optional

import pytz

from app.engine import (
    RunningTotalMode,
    VenueSchedule,
    build_buckets,
    parse_events,
    summarize,
)
from app.engine.models import EventTotals, TimeBucket
from app.errors import ArchiveError, TallyError
from app.store import EventStore, marker_event

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


@dataclass
class ArchiveResult:
    archive_id: int
    business_date: date
    totals: EventTotals
    intervals: List[TimeBucket] = field(default_factory=list)
    archived_rows: int = 0
    new_session_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "archive_id": self.archive_id,
            "date": self.business_date.isoformat(),
            "totals": self.totals.to_dict(),
            "intervals": [b.to_dict() for b in self.intervals],
            "archived_rows": self.archived_rows,
            "session_id": self.new_session_id,
        }


class ArchiveManager:
    def __init__(self, store: EventStore, schedule: VenueSchedule, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.schedule = schedule
        self.clock = clock

    async def archive(self, business_date: date, session_id: Optional[str] = None) -> Optional[ArchiveResult]:
        """Archive and clear one business day. Returns None if nobody was logged.

        Raises ArchiveError if any step fails; nothing is committed in that case.
        """
        try:
            async with self.store.transaction():
                # Leftovers from a reset that tagged rows but never deleted them
                await self.store.delete_archived()

                rows = await self.store.fetch_events(logical_date=business_date)
                events = parse_events(rows)
                people = [e for e in events if e.is_person]
                if not people:
                    logger.info(f"Nothing to archive for {business_date}")
                    return None

                totals = summarize(people)
                buckets = build_buckets(
                    people, self.schedule, business_date, mode=RunningTotalMode.CUMULATIVE
                )
                intervals = [b for b in buckets if not b.is_empty]

                archive_id = await self.store.insert_archive(business_date, totals, session_id)
                await self.store.insert_intervals(archive_id, intervals)

                archived_ids = [e.id for e in events if e.id is not None]
                await self.store.tag_events(archived_ids, archive_id)
                await self.store.delete_archived(archive_id, logical_date=business_date)

                new_session_id = str(uuid.uuid4())
                await self.store.insert_event(marker_event(
                    occurred_at=self.clock(),
                    logical_date=business_date,
                    session_id=new_session_id,
                    count_before_reset=totals.final_count.total,
                ))
        except TallyError as e:
            logger.error(f"Reset for {business_date} aborted: {e}")
            raise ArchiveError(f"Reset failed, no data was changed: {e}") from e

        logger.info(
            f"Archived {len(archived_ids)} entries for {business_date} as archive {archive_id} "
            f"(entries={totals.total_entries}, exits={totals.total_exits}, final={totals.final_count.total})"
        )
        return ArchiveResult(
            archive_id=archive_id,
            business_date=business_date,
            totals=totals,
            intervals=intervals,
            archived_rows=len(archived_ids),
            new_session_id=new_session_id,
        )
