"""Fan-out of committed room changes to connected viewers."""

from __future__ import annotations

import asyncio
from itertools import count
from threading import RLock
from typing import Callable, Optional

from unitpicker.domain.models import ChangeEvent, EventKind, Room
from unitpicker.utils.logger import get_logger


logger = get_logger(__name__)

ChangeCallback = Callable[[ChangeEvent], None]


class ChangeBroadcaster:
    """Assigns a global sequence to every change and pushes it to subscribers.

    The latest event per room is retained, so a viewer that missed events can
    compare versions after reading a snapshot. A failing subscriber is logged
    and skipped; it never affects the publisher or other subscribers.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._sequence = 0
        self._handles = count(1)
        self._subscribers: dict[int, ChangeCallback] = {}
        self._latest_by_room: dict[str, ChangeEvent] = {}

    @property
    def sequence(self) -> int:
        with self._lock:
            return self._sequence

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, on_change: ChangeCallback) -> int:
        with self._lock:
            handle = next(self._handles)
            self._subscribers[handle] = on_change
        logger.debug("Subscriber %s registered", handle)
        return handle

    def unsubscribe(self, handle: int) -> bool:
        with self._lock:
            removed = self._subscribers.pop(handle, None) is not None
        if removed:
            logger.debug("Subscriber %s removed", handle)
        return removed

    def latest_for_room(self, room_id: str) -> Optional[ChangeEvent]:
        with self._lock:
            return self._latest_by_room.get(room_id)

    def publish_room(self, room: Room) -> ChangeEvent:
        return self._publish(
            EventKind.ROOM_CHANGED,
            room_id=room.id,
            new_status=room.status,
            new_owner_id=room.owner_id,
            new_version=room.version,
        )

    def publish_inventory_replaced(self) -> ChangeEvent:
        return self._publish(EventKind.INVENTORY_REPLACED)

    def publish_users_changed(self) -> ChangeEvent:
        return self._publish(EventKind.USERS_CHANGED)

    def _publish(self, kind: EventKind, **fields) -> ChangeEvent:
        # Sequence assignment and dispatch share one lock so every subscriber
        # observes events in sequence order.
        with self._lock:
            self._sequence += 1
            event = ChangeEvent(sequence=self._sequence, kind=kind, **fields)
            if kind is EventKind.INVENTORY_REPLACED:
                self._latest_by_room.clear()
            if event.room_id is not None:
                self._latest_by_room[event.room_id] = event
            subscribers = list(self._subscribers.items())
            for handle, callback in subscribers:
                try:
                    callback(event)
                except Exception:
                    logger.exception("Subscriber %s failed to receive event %s", handle, event.sequence)
        return event


class QueueSubscriber:
    """Bridges broadcaster callbacks onto an asyncio queue owned by one loop.

    On overflow the backlog is discarded and replaced by a single
    ``RESYNC_REQUIRED`` marker: intermediate states may be lost, but the
    viewer is told to fetch a snapshot, so the final state still arrives.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self._loop = loop
        self.queue: asyncio.Queue[ChangeEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __call__(self, event: ChangeEvent) -> None:
        self._loop.call_soon_threadsafe(self._offer, event)

    def _offer(self, event: ChangeEvent) -> None:
        try:
            self.queue.put_nowait(event)
            return
        except asyncio.QueueFull:
            pass

        while not self.queue.empty():
            self.queue.get_nowait()
            self.dropped += 1
        logger.warning(
            "Viewer queue overflowed at event %s; requesting resync", event.sequence
        )
        self.queue.put_nowait(ChangeEvent(sequence=event.sequence, kind=EventKind.RESYNC_REQUIRED))
