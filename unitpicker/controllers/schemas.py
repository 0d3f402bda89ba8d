"""Response DTOs shared by several routers."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from unitpicker.domain.models import AuditEntry, InventorySnapshot, Room, RoomStatus, User


class RoomResponse(BaseModel):
    id: str
    building: str
    floor: int = Field(gt=0)
    number: str
    area: float = Field(gt=0.0)
    status: RoomStatus
    owner_id: Optional[str] = None
    version: int = Field(ge=0)

    @classmethod
    def from_domain(cls, room: Room) -> "RoomResponse":
        return cls(**room.to_dict())


class UserResponse(BaseModel):
    id: str
    name: str
    phone: str
    max_selections: int = Field(ge=0)
    is_admin: bool

    @classmethod
    def from_domain(cls, user: User) -> "UserResponse":
        return cls(**user.to_dict())


class SnapshotResponse(BaseModel):
    sequence: int = Field(ge=0)
    rooms: list[RoomResponse]
    users: list[UserResponse]

    @classmethod
    def from_domain(cls, snapshot: InventorySnapshot) -> "SnapshotResponse":
        return cls(
            sequence=snapshot.sequence,
            rooms=[RoomResponse.from_domain(room) for room in snapshot.rooms],
            users=[UserResponse.from_domain(user) for user in snapshot.users],
        )


class AuditEntryResponse(BaseModel):
    id: Optional[int] = None
    action: str
    room_id: str
    actor_id: str
    previous_status: RoomStatus
    previous_owner_id: Optional[str] = None
    new_status: RoomStatus
    new_owner_id: Optional[str] = None
    version: int
    created_at: Optional[str] = None

    @classmethod
    def from_domain(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(**entry.to_dict())
