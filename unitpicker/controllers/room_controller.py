"""HTTP and WebSocket controller layer for browsing and claiming rooms."""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import (
    APIRouter,
    Depends,
    HTTPException,
    Query,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from pydantic import BaseModel, Field

from unitpicker.controllers.dependencies import (
    get_auth_service,
    get_engine,
    require_session,
    to_http_exception,
)
from unitpicker.controllers.schemas import RoomResponse, SnapshotResponse
from unitpicker.domain.errors import AllocationError
from unitpicker.domain.models import RoomStatus
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.services.auth_service import AuthService, InvalidSessionError
from unitpicker.services.broadcast_service import QueueSubscriber
from unitpicker.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["rooms"])


class RandomRoomRequest(BaseModel):
    building: Optional[str] = Field(default=None, min_length=1, max_length=16)


@router.get("/snapshot", response_model=SnapshotResponse)
async def snapshot(
    _: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> SnapshotResponse:
    """Full state for first paint or after a resync request."""
    return SnapshotResponse.from_domain(engine.snapshot())


@router.get("/rooms", response_model=list[RoomResponse])
async def list_rooms(
    building: Optional[str] = Query(default=None),
    floor: Optional[int] = Query(default=None, gt=0),
    room_status: Optional[RoomStatus] = Query(default=None, alias="status"),
    _: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> list[RoomResponse]:
    rooms = engine.list_rooms(building=building, floor=floor, status=room_status)
    return [RoomResponse.from_domain(room) for room in rooms]


@router.get("/rooms/{room_id}", response_model=RoomResponse)
async def get_room(
    room_id: str,
    _: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> RoomResponse:
    try:
        return RoomResponse.from_domain(engine.get_room(room_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc


@router.post("/rooms/random", response_model=RoomResponse)
async def random_room(
    payload: RandomRoomRequest,
    _: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> RoomResponse:
    """Suggest an available room; the caller still has to claim it."""
    try:
        return RoomResponse.from_domain(engine.pick_random_available(building=payload.building))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc


@router.post("/rooms/{room_id}/claim", response_model=RoomResponse)
async def claim_room(
    room_id: str,
    user_id: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> RoomResponse:
    try:
        return RoomResponse.from_domain(engine.claim(room_id, user_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected claim failure for room %s", room_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to claim room",
        ) from exc


@router.post("/rooms/{room_id}/release", response_model=RoomResponse)
async def release_room(
    room_id: str,
    user_id: str = Depends(require_session),
    engine: AllocationEngine = Depends(get_engine),
) -> RoomResponse:
    try:
        return RoomResponse.from_domain(engine.release(room_id, user_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected release failure for room %s", room_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to release room",
        ) from exc


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/ws/rooms")
async def room_events(
    websocket: WebSocket,
    token: str = Query(default=""),
    engine: AllocationEngine = Depends(get_engine),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    """Send a snapshot, then every committed change in sequence order."""
    try:
        user_id = auth_service.resolve(token)
    except InvalidSessionError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscriber = QueueSubscriber(
        asyncio.get_running_loop(),
        maxsize=websocket.app.state.settings.broadcast_queue_size,
    )
    # Subscribe before reading the snapshot so no commit falls in between.
    handle = engine.subscribe(subscriber)
    disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
    logger.info("Viewer %s connected (subscription %s)", user_id, handle)
    try:
        await websocket.send_json({"type": "snapshot", **engine.snapshot().to_dict()})
        while True:
            next_event = asyncio.create_task(subscriber.queue.get())
            done, _ = await asyncio.wait(
                {next_event, disconnect},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if disconnect in done:
                next_event.cancel()
                receive_error = disconnect.exception()
                if receive_error is not None:
                    logger.warning("Viewer %s receive failed: %s", user_id, receive_error)
                break
            await websocket.send_json({"type": "event", **next_event.result().to_dict()})
    except WebSocketDisconnect:
        pass
    finally:
        disconnect.cancel()
        engine.unsubscribe(handle)
        logger.info("Viewer %s disconnected (subscription %s)", user_id, handle)
