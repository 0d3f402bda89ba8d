"""Domain models for room inventory, customers and change events."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class RoomStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    SELECTED = "SELECTED"
    LOCKED = "LOCKED"


class AuditAction(str, Enum):
    CLAIM = "CLAIM"
    RELEASE = "RELEASE"
    FORCED_RELEASE = "FORCED_RELEASE"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"


class EventKind(str, Enum):
    ROOM_CHANGED = "ROOM_CHANGED"
    INVENTORY_REPLACED = "INVENTORY_REPLACED"
    USERS_CHANGED = "USERS_CHANGED"
    RESYNC_REQUIRED = "RESYNC_REQUIRED"


def make_room_id(building: str, floor: int, unit: int) -> str:
    """Stable id such as ``1-12-03`` for building 1, floor 12, unit 3."""
    return f"{building}-{floor}-{unit:02d}"


def make_room_number(floor: int, unit: int) -> str:
    return f"{floor}{unit:02d}"


@dataclass(frozen=True)
class Room:
    id: str
    building: str
    floor: int
    number: str
    area: float
    status: RoomStatus = RoomStatus.AVAILABLE
    owner_id: Optional[str] = None
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "building": self.building,
            "floor": self.floor,
            "number": self.number,
            "area": self.area,
            "status": self.status.value,
            "owner_id": self.owner_id,
            "version": self.version,
        }


@dataclass(frozen=True)
class User:
    id: str
    name: str
    phone: str
    max_selections: int
    is_admin: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "max_selections": self.max_selections,
            "is_admin": self.is_admin,
        }


@dataclass(frozen=True)
class AuditEntry:
    action: AuditAction
    room_id: str
    actor_id: str
    previous_status: RoomStatus
    previous_owner_id: Optional[str]
    new_status: RoomStatus
    new_owner_id: Optional[str]
    version: int = 0
    entry_id: Optional[int] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.entry_id,
            "action": self.action.value,
            "room_id": self.room_id,
            "actor_id": self.actor_id,
            "previous_status": self.previous_status.value,
            "previous_owner_id": self.previous_owner_id,
            "new_status": self.new_status.value,
            "new_owner_id": self.new_owner_id,
            "version": self.version,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ChangeEvent:
    """Compact notification published after every committed change."""

    sequence: int
    kind: EventKind
    room_id: Optional[str] = None
    new_status: Optional[RoomStatus] = None
    new_owner_id: Optional[str] = None
    new_version: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "kind": self.kind.value,
            "room_id": self.room_id,
            "new_status": self.new_status.value if self.new_status else None,
            "new_owner_id": self.new_owner_id,
            "new_version": self.new_version,
        }


@dataclass(frozen=True)
class InventorySnapshot:
    rooms: list[Room]
    users: list[User]
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "rooms": [room.to_dict() for room in self.rooms],
            "users": [user.to_dict() for user in self.users],
        }


@dataclass(frozen=True)
class GenerateConfig:
    building_count: int
    floors_per_building: int
    rooms_per_floor: int
    base_area: float
    building_prefix: str = ""


@dataclass(frozen=True)
class UserSummary:
    user: User
    owned_rooms: list[Room] = field(default_factory=list)

    @property
    def remaining(self) -> Optional[int]:
        if self.user.is_admin:
            return None
        return max(self.user.max_selections - len(self.owned_rooms), 0)
