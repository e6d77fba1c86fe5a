"""
Shared Mutable State
====================
Module-level singletons shared across async handlers.
All modules importing from here get references to the same objects.
"""

from app.controllers.archive import ArchiveManager
from app.controllers.live_counter import LiveCounter
from app.database import database
from app.engine import default_schedule
from app.realtime import ChangeHub
from app.store import EventStore

schedule = default_schedule()

# Change notifications for every committed write in this process
hub = ChangeHub()

store = EventStore(database, hub)

archive_manager = ArchiveManager(store, schedule)

# One live counter per process, shared by every door tablet
live_counter = LiveCounter(store, hub, archive_manager, schedule)
