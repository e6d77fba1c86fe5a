"""
Change Notifications
====================
In-process publish/subscribe for committed table changes.

Notifications are a "something changed, refetch" signal: delivery is
best-effort, so subscribers must re-read the store rather than patch state
from the payload.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

RowPredicate = Callable[[Dict[str, Any]], bool]


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class ChangeNotification:
    table: str
    change_type: ChangeType
    record: Dict[str, Any] = field(default_factory=dict)  # new row, or old row for deletes
    committed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "table": self.table,
            "type": self.change_type.value,
            "record": self.record,
            "committed_at": self.committed_at.isoformat(),
        }


class Subscription:
    """One subscriber's queue of matching notifications."""

    def __init__(self, hub: "ChangeHub", table: str, predicate: Optional[RowPredicate] = None, maxsize: int = 1000):
        self.hub = hub
        self.table = table
        self.predicate = predicate
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def matches(self, note: ChangeNotification) -> bool:
        if note.table != self.table:
            return False
        if self.predicate is None:
            return True
        try:
            return bool(self.predicate(note.record))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Subscription filter failed on {note.table} payload: {e}")
            return False

    def deliver(self, note: ChangeNotification):
        try:
            self.queue.put_nowait(note)
        except asyncio.QueueFull:
            # Subscribers refetch on the next notification anyway
            logger.warning(f"Dropping notification for slow subscriber on {self.table}")

    async def get(self) -> ChangeNotification:
        return await self.queue.get()

    def drain(self) -> int:
        """Discard queued notifications, returning how many were pending."""
        drained = 0
        while not self.queue.empty():
            self.queue.get_nowait()
            drained += 1
        return drained

    def close(self):
        if not self.closed:
            self.closed = True
            self.hub.unsubscribe(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeNotification:
        if self.closed:
            raise StopAsyncIteration
        return await self.queue.get()


class ChangeHub:
    """Fan-out of change notifications to filtered subscribers."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []

    def subscribe(self, table: str, predicate: Optional[RowPredicate] = None) -> Subscription:
        subscription = Subscription(self, table, predicate)
        self._subscriptions.append(subscription)
        logger.debug(f"Subscribed to {table} ({len(self._subscriptions)} active)")
        return subscription

    def unsubscribe(self, subscription: Subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, note: ChangeNotification) -> int:
        """Deliver to every matching subscriber. Returns the delivery count."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.matches(note):
                subscription.deliver(note)
                delivered += 1
        return delivered

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)


class Debouncer:
    """Run an async callback once activity has been quiet for `delay` seconds.

    Each trigger cancels the pending timer and starts a new one, so a burst of
    notifications results in a single call.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[Any]]):
        self.delay = delay
        self.callback = callback
        self._task: Optional[asyncio.Task] = None

    def trigger(self):
        self.cancel()
        self._task = asyncio.create_task(self._fire())

    async def _fire(self):
        await asyncio.sleep(self.delay)
        try:
            await self.callback()
        except Exception:
            logger.exception("Debounced callback failed")

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def cancel(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
