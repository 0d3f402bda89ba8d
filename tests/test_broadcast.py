from __future__ import annotations

import asyncio
from dataclasses import replace
from types import SimpleNamespace

from unitpicker.controllers import room_controller
from unitpicker.domain.models import EventKind, Room, RoomStatus, User
from unitpicker.repository.data_repository import InventoryRepository
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.services.auth_service import AuthService
from unitpicker.services.broadcast_service import ChangeBroadcaster, QueueSubscriber
from unitpicker.utils.config import get_settings


def _room(version: int, status: RoomStatus = RoomStatus.AVAILABLE, owner_id=None) -> Room:
    return Room(
        id="1-1-01",
        building="1",
        floor=1,
        number="101",
        area=92.0,
        status=status,
        owner_id=owner_id,
        version=version,
    )


def test_events_carry_increasing_sequence_and_room_state():
    broadcaster = ChangeBroadcaster()
    received = []
    broadcaster.subscribe(received.append)

    broadcaster.publish_room(_room(2, RoomStatus.SELECTED, "u1"))
    broadcaster.publish_room(_room(3))

    assert [event.sequence for event in received] == [1, 2]
    assert received[0].kind is EventKind.ROOM_CHANGED
    assert received[0].new_owner_id == "u1"
    assert received[1].new_status is RoomStatus.AVAILABLE
    assert broadcaster.sequence == 2
    assert broadcaster.latest_for_room("1-1-01").new_version == 3


def test_failing_subscriber_does_not_block_others(caplog):
    broadcaster = ChangeBroadcaster()
    received = []

    def broken(event):
        raise RuntimeError("viewer went away")

    broadcaster.subscribe(broken)
    broadcaster.subscribe(received.append)

    event = broadcaster.publish_room(_room(1))

    assert received == [event]
    assert "failed to receive event" in caplog.text


def test_unsubscribe_stops_delivery():
    broadcaster = ChangeBroadcaster()
    received = []
    handle = broadcaster.subscribe(received.append)

    assert broadcaster.unsubscribe(handle) is True
    assert broadcaster.unsubscribe(handle) is False
    broadcaster.publish_room(_room(1))

    assert received == []
    assert broadcaster.subscriber_count == 0


def test_inventory_replacement_clears_latest_room_events():
    broadcaster = ChangeBroadcaster()
    broadcaster.publish_room(_room(1))

    replaced = broadcaster.publish_inventory_replaced()

    assert replaced.kind is EventKind.INVENTORY_REPLACED
    assert replaced.room_id is None
    assert broadcaster.latest_for_room("1-1-01") is None


def test_queue_subscriber_delivers_in_order():
    async def scenario():
        broadcaster = ChangeBroadcaster()
        subscriber = QueueSubscriber(asyncio.get_running_loop(), maxsize=10)
        broadcaster.subscribe(subscriber)
        for version in range(1, 4):
            broadcaster.publish_room(_room(version))
        await asyncio.sleep(0)
        return [subscriber.queue.get_nowait() for _ in range(subscriber.queue.qsize())]

    events = asyncio.run(scenario())

    assert [event.new_version for event in events] == [1, 2, 3]


def test_queue_subscriber_overflow_requests_resync():
    async def scenario():
        broadcaster = ChangeBroadcaster()
        subscriber = QueueSubscriber(asyncio.get_running_loop(), maxsize=2)
        broadcaster.subscribe(subscriber)
        for version in range(1, 4):
            broadcaster.publish_room(_room(version))
        await asyncio.sleep(0)
        queued = [subscriber.queue.get_nowait() for _ in range(subscriber.queue.qsize())]
        return queued, subscriber.dropped

    queued, dropped = asyncio.run(scenario())

    assert [event.kind for event in queued] == [EventKind.RESYNC_REQUIRED]
    assert queued[0].sequence == 3
    assert dropped == 2


class _BrokenViewerSocket:
    """Accepts and records sends, then fails on the first receive."""

    def __init__(self, settings):
        self.app = SimpleNamespace(state=SimpleNamespace(settings=settings))
        self.sent = []

    async def accept(self):
        return None

    async def send_json(self, message):
        self.sent.append(message)

    async def receive(self):
        raise RuntimeError("connection reset")


def test_room_events_logs_receive_failure_and_unsubscribes(tmp_path, caplog):
    settings = replace(get_settings(), database_path=tmp_path / "viewer.db")
    repository = InventoryRepository(settings)
    repository.initialize_database()
    repository.replace_rooms([_room(1)])
    broadcaster = ChangeBroadcaster()
    engine = AllocationEngine(repository=repository, broadcaster=broadcaster, settings=settings)
    auth_service = AuthService(settings)
    token = auth_service.login(User(id="u1", name="张三", phone="1", max_selections=1))
    websocket = _BrokenViewerSocket(settings)

    asyncio.run(room_controller.room_events(websocket, token, engine, auth_service))

    assert websocket.sent[0]["type"] == "snapshot"
    assert broadcaster.subscriber_count == 0
    assert "receive failed: connection reset" in caplog.text
