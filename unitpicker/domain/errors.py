"""Error taxonomy shared by the store, the engine and the HTTP layer."""

from __future__ import annotations

from typing import Any, Optional, Sequence


class AllocationError(Exception):
    """Base failure for every rejected allocation operation."""

    kind = "AllocationError"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "detail": str(self)}


class NotFoundError(AllocationError):
    kind = "NotFound"


class RoomNotFoundError(NotFoundError):
    def __init__(self, room_id: str) -> None:
        super().__init__(f"Room {room_id} does not exist")
        self.room_id = room_id


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} does not exist")
        self.user_id = user_id


class NoRoomAvailableError(NotFoundError):
    def __init__(self, building: Optional[str] = None) -> None:
        scope = f" in building {building}" if building else ""
        super().__init__(f"No available room left{scope}")
        self.building = building


class QuotaExceededError(AllocationError):
    """Raised when a claim would push a customer past their quota."""

    kind = "QuotaExceeded"

    def __init__(self, user_id: str, max_selections: int) -> None:
        super().__init__(f"User {user_id} may select at most {max_selections} room(s)")
        self.user_id = user_id
        self.max_selections = max_selections

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["max_selections"] = self.max_selections
        return payload


class RoomUnavailableError(AllocationError):
    kind = "RoomUnavailable"

    ALREADY_TAKEN = "ALREADY_TAKEN"
    LOCKED = "LOCKED"

    def __init__(self, room_id: str, reason: str) -> None:
        if reason == self.LOCKED:
            message = f"Room {room_id} is locked"
        else:
            message = f"Room {room_id} has already been taken"
        super().__init__(message)
        self.room_id = room_id
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class NotOwnerError(AllocationError):
    kind = "NotOwner"

    def __init__(self, room_id: str, user_id: str) -> None:
        super().__init__(f"User {user_id} does not own room {room_id}")
        self.room_id = room_id
        self.user_id = user_id


class ConflictError(AllocationError):
    """Raised on a stale version or when the engine could not serialize in time."""

    kind = "Conflict"

    def __init__(
        self,
        message: str,
        room_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.room_id = room_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class InventoryValidationError(AllocationError):
    kind = "ValidationError"

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems = list(problems)
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f" (and {len(self.problems) - 5} more)"
        super().__init__(summary or "Invalid input")

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["problems"] = list(self.problems)
        return payload


class PermissionDeniedError(AllocationError):
    kind = "Forbidden"

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} is not an administrator")
        self.user_id = user_id
