"""Controller layer for admin inventory and customer management."""

from __future__ import annotations

from datetime import date
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, Field, field_validator

from unitpicker.controllers.dependencies import (
    get_engine,
    get_transfer_service,
    require_admin,
    to_http_exception,
)
from unitpicker.controllers.schemas import (
    AuditEntryResponse,
    RoomResponse,
    SnapshotResponse,
    UserResponse,
)
from unitpicker.domain.errors import AllocationError
from unitpicker.domain.models import GenerateConfig, User
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.services.transfer_service import InventoryTransferService
from unitpicker.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

CSV_MEDIA_TYPE = "text/csv; charset=utf-8"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class GenerateRequest(BaseModel):
    building_count: int = Field(gt=0, le=50)
    floors_per_building: int = Field(gt=0, le=200)
    rooms_per_floor: int = Field(gt=0, le=99)
    base_area: float = Field(gt=0.0, allow_inf_nan=False)
    building_prefix: str = Field(default="", max_length=8)

    @field_validator("building_prefix")
    @classmethod
    def validate_prefix(cls, value: str) -> str:
        value = value.strip()
        if value and not value.isalnum():
            raise ValueError("building_prefix must be alphanumeric")
        return value


class InventoryReplacedResponse(BaseModel):
    room_count: int = Field(ge=0)


class AddUserRequest(BaseModel):
    name: str = Field(min_length=1, max_length=64)
    phone: str = Field(default="", max_length=32)
    max_selections: int = Field(default=1, ge=0)
    is_admin: bool = False
    id: Optional[str] = Field(default=None, max_length=64)


class UsersReplacedResponse(BaseModel):
    user_count: int = Field(ge=0)


def _attachment(filename: str) -> dict[str, str]:
    return {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"}


@router.post("/rooms/{room_id}/lock", response_model=RoomResponse)
async def lock_room(
    room_id: str,
    admin_id: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> RoomResponse:
    """Take a room off sale, evicting its owner if it had one."""
    try:
        return RoomResponse.from_domain(engine.set_lock(room_id, True, admin_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected lock failure for room %s", room_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to lock room",
        ) from exc


@router.post("/rooms/{room_id}/unlock", response_model=RoomResponse)
async def unlock_room(
    room_id: str,
    admin_id: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> RoomResponse:
    try:
        return RoomResponse.from_domain(engine.set_lock(room_id, False, admin_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc


@router.post("/inventory/generate", response_model=InventoryReplacedResponse)
async def generate_inventory(
    payload: GenerateRequest,
    admin_id: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> InventoryReplacedResponse:
    config = GenerateConfig(
        building_count=payload.building_count,
        floors_per_building=payload.floors_per_building,
        rooms_per_floor=payload.rooms_per_floor,
        base_area=payload.base_area,
        building_prefix=payload.building_prefix,
    )
    try:
        rooms = engine.generate_inventory(config, admin_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return InventoryReplacedResponse(room_count=len(rooms))


@router.post("/inventory/special", response_model=InventoryReplacedResponse)
async def generate_special_project(
    admin_id: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> InventoryReplacedResponse:
    """Install the four-building launch preset."""
    try:
        rooms = engine.generate_special_project(admin_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return InventoryReplacedResponse(room_count=len(rooms))


@router.post("/inventory/import", response_model=InventoryReplacedResponse)
async def import_inventory(
    request: Request,
    admin_id: str = Depends(require_admin),
    transfer_service: InventoryTransferService = Depends(get_transfer_service),
) -> InventoryReplacedResponse:
    """Replace the inventory with the CSV sent as the request body."""
    data = await request.body()
    try:
        rooms = transfer_service.import_rooms_csv(data, admin_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return InventoryReplacedResponse(room_count=len(rooms))


@router.get("/inventory/export")
async def export_inventory(
    _: str = Depends(require_admin),
    transfer_service: InventoryTransferService = Depends(get_transfer_service),
) -> Response:
    filename = f"房源数据_{date.today().isoformat()}.csv"
    return Response(
        content=transfer_service.export_rooms_csv(),
        media_type=CSV_MEDIA_TYPE,
        headers=_attachment(filename),
    )


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def add_user(
    payload: AddUserRequest,
    admin_id: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> UserResponse:
    user = User(
        id=(payload.id or "").strip(),
        name=payload.name.strip(),
        phone=payload.phone.strip(),
        max_selections=payload.max_selections,
        is_admin=payload.is_admin,
    )
    try:
        return UserResponse.from_domain(engine.add_user(user, admin_id))
    except AllocationError as exc:
        raise to_http_exception(exc) from exc


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    _: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> list[UserResponse]:
    return [UserResponse.from_domain(user) for user in engine.list_users()]


@router.post("/users/import", response_model=UsersReplacedResponse)
async def import_users(
    request: Request,
    admin_id: str = Depends(require_admin),
    transfer_service: InventoryTransferService = Depends(get_transfer_service),
) -> UsersReplacedResponse:
    """Replace the customer list with the xlsx workbook sent as the request body."""
    data = await request.body()
    try:
        users = transfer_service.import_users_xlsx(data, admin_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return UsersReplacedResponse(user_count=len(users))


@router.get("/users/export")
async def export_users(
    _: str = Depends(require_admin),
    transfer_service: InventoryTransferService = Depends(get_transfer_service),
) -> Response:
    filename = f"客户名单_{date.today().isoformat()}.xlsx"
    return Response(
        content=transfer_service.export_users_xlsx(),
        media_type=XLSX_MEDIA_TYPE,
        headers=_attachment(filename),
    )


@router.get("/audit", response_model=list[AuditEntryResponse])
async def audit_log(
    room_id: Optional[str] = Query(default=None),
    limit: int = Query(default=100, gt=0, le=1000),
    admin_id: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> list[AuditEntryResponse]:
    try:
        entries = engine.audit_log(admin_id, room_id=room_id, limit=limit)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return [AuditEntryResponse.from_domain(entry) for entry in entries]


@router.post("/reset", response_model=SnapshotResponse)
async def reset(
    admin_id: str = Depends(require_admin),
    engine: AllocationEngine = Depends(get_engine),
) -> SnapshotResponse:
    """Restore default customers and the launch preset. Destroys all selections."""
    try:
        snapshot = engine.reset(admin_id)
    except AllocationError as exc:
        raise to_http_exception(exc) from exc
    return SnapshotResponse.from_domain(snapshot)
