"""Allocation engine: the single authority over room state transitions."""

from __future__ import annotations

import random
from contextlib import contextmanager
from dataclasses import replace
from typing import Callable, Iterator, Optional, Sequence
from uuid import uuid4

from unitpicker.domain.constraints import validate_inventory, validate_user, validate_users
from unitpicker.domain.errors import (
    ConflictError,
    InventoryValidationError,
    NoRoomAvailableError,
    NotOwnerError,
    PermissionDeniedError,
    QuotaExceededError,
    RoomNotFoundError,
    RoomUnavailableError,
    UserNotFoundError,
)
from unitpicker.domain.generator import default_users, generate_rooms, generate_special_project
from unitpicker.domain.models import (
    AuditAction,
    AuditEntry,
    GenerateConfig,
    InventorySnapshot,
    Room,
    RoomStatus,
    User,
    UserSummary,
)
from unitpicker.repository.data_repository import InventoryRepository
from unitpicker.services.broadcast_service import ChangeBroadcaster, ChangeCallback
from unitpicker.services.locking import KeyedLockRegistry, LockTimeoutError
from unitpicker.utils.config import Settings, get_settings
from unitpicker.utils.logger import get_logger


logger = get_logger(__name__)

# (room, changed) produced by a single evaluation of a room decision.
Decision = tuple[Room, bool]


def new_user_id() -> str:
    return f"u-{uuid4().hex[:12]}"


def _room_key(room_id: str) -> str:
    return f"room:{room_id}"


def _user_key(user_id: str) -> str:
    return f"user:{user_id}"


class AllocationEngine:
    """Validates intents and commits room transitions in a per-room serial order.

    Single-room mutations hold the room's key (claims also hold the
    claimant's key so the quota count and the write cannot interleave with
    another claim by the same user). Bulk operations hold every key. On top of
    that each write is a compare-and-swap on the room version; a conflict
    re-runs the whole decision from a fresh read.
    """

    def __init__(
        self,
        repository: Optional[InventoryRepository] = None,
        broadcaster: Optional[ChangeBroadcaster] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or InventoryRepository(self._settings)
        self._broadcaster = broadcaster or ChangeBroadcaster()
        self._locks = KeyedLockRegistry(
            timeout_seconds=self._settings.allocation_lock_timeout_seconds,
        )
        self._max_attempts = max(1, self._settings.allocation_max_retries + 1)

    @property
    def broadcaster(self) -> ChangeBroadcaster:
        return self._broadcaster

    # --- collaborator contract ------------------------------------------

    def subscribe(self, on_change: ChangeCallback) -> int:
        return self._broadcaster.subscribe(on_change)

    def unsubscribe(self, handle: int) -> bool:
        return self._broadcaster.unsubscribe(handle)

    def snapshot(self) -> InventorySnapshot:
        # Read the sequence first: events after it may already be reflected in
        # the rows, which is harmless because viewers apply by version.
        sequence = self._broadcaster.sequence
        return self._repository.snapshot(sequence=sequence)

    # --- reads -----------------------------------------------------------

    def get_room(self, room_id: str) -> Room:
        return self._require_room(room_id)

    def list_rooms(
        self,
        building: Optional[str] = None,
        floor: Optional[int] = None,
        status: Optional[RoomStatus] = None,
    ) -> list[Room]:
        return self._repository.list_rooms(building=building, floor=floor, status=status)

    def get_user(self, user_id: str) -> User:
        return self._require_user(user_id)

    def list_users(self) -> list[User]:
        return self._repository.list_users()

    def ensure_admin(self, user_id: str) -> User:
        return self._require_admin(user_id)

    def search_users(self, query: str) -> list[User]:
        needle = query.strip()
        users = self._repository.list_users()
        if not needle:
            return users
        return [user for user in users if needle in user.name or needle in user.phone]

    def user_summary(self, user_id: str) -> UserSummary:
        user = self._require_user(user_id)
        owned = self._repository.list_rooms(owner_id=user_id, status=RoomStatus.SELECTED)
        return UserSummary(user=user, owned_rooms=owned)

    def pick_random_available(
        self,
        building: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ) -> Room:
        """Suggest a random AVAILABLE room; does not claim it."""
        candidates = self._repository.list_rooms(building=building, status=RoomStatus.AVAILABLE)
        if not candidates:
            raise NoRoomAvailableError(building)
        return (rng or random).choice(candidates)

    def audit_log(
        self,
        acting_admin_id: str,
        room_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        self._require_admin(acting_admin_id)
        return self._repository.list_audit_entries(room_id=room_id, limit=limit)

    # --- single-room transitions ----------------------------------------

    def claim(self, room_id: str, user_id: str) -> Room:
        """Take an AVAILABLE room for ``user_id``; re-claiming an owned room is a no-op."""

        def decide() -> Decision:
            user = self._require_user(user_id)
            room = self._require_room(room_id)
            if room.owner_id == user_id:
                return room, False
            if room.status is RoomStatus.LOCKED:
                raise RoomUnavailableError(room_id, RoomUnavailableError.LOCKED)
            if room.status is RoomStatus.SELECTED:
                raise RoomUnavailableError(room_id, RoomUnavailableError.ALREADY_TAKEN)

            if not user.is_admin:
                owned = self._repository.count_rooms_owned_by(user_id)
                if owned >= user.max_selections:
                    raise QuotaExceededError(user_id, user.max_selections)

            updated = self._repository.apply_room_mutation(
                room_id,
                lambda current: replace(current, status=RoomStatus.SELECTED, owner_id=user_id),
                expected_version=room.version,
                audit_action=AuditAction.CLAIM,
                actor_id=user_id,
            )
            logger.info("Room %s claimed by %s (version %s)", room_id, user_id, updated.version)
            return updated, True

        return self._serialized("claim", room_id, (_room_key(room_id), _user_key(user_id)), decide)

    def release(self, room_id: str, user_id: str) -> Room:
        """Return a room to the pool. Admins may release rooms they do not own."""

        def decide() -> Decision:
            user = self._require_user(user_id)
            room = self._require_room(room_id)
            if room.owner_id == user_id:
                action = AuditAction.RELEASE
            elif user.is_admin and room.status is RoomStatus.SELECTED:
                action = AuditAction.FORCED_RELEASE
            else:
                raise NotOwnerError(room_id, user_id)

            updated = self._repository.apply_room_mutation(
                room_id,
                lambda current: replace(current, status=RoomStatus.AVAILABLE, owner_id=None),
                expected_version=room.version,
                audit_action=action,
                actor_id=user_id,
            )
            if action is AuditAction.FORCED_RELEASE:
                logger.warning(
                    "Room %s force-released by admin %s (previous owner %s)",
                    room_id,
                    user_id,
                    room.owner_id,
                )
            else:
                logger.info("Room %s released by %s", room_id, user_id)
            return updated, True

        return self._serialized("release", room_id, (_room_key(room_id),), decide)

    def set_lock(self, room_id: str, locked: bool, acting_admin_id: str) -> Room:
        """Lock (evicting any owner) or unlock a room. Admin only."""

        def decide() -> Decision:
            self._require_admin(acting_admin_id)
            room = self._require_room(room_id)
            if locked == (room.status is RoomStatus.LOCKED):
                return room, False

            if locked:
                target = RoomStatus.LOCKED
                action = AuditAction.LOCK
            else:
                target = RoomStatus.AVAILABLE
                action = AuditAction.UNLOCK
            updated = self._repository.apply_room_mutation(
                room_id,
                lambda current: replace(current, status=target, owner_id=None),
                expected_version=room.version,
                audit_action=action,
                actor_id=acting_admin_id,
            )
            if room.owner_id is not None:
                logger.warning(
                    "Room %s locked by admin %s; evicted owner %s",
                    room_id,
                    acting_admin_id,
                    room.owner_id,
                )
            else:
                logger.info("Room %s %s by admin %s", room_id, action.value.lower(), acting_admin_id)
            return updated, True

        return self._serialized("set_lock", room_id, (_room_key(room_id),), decide)

    # --- bulk operations -------------------------------------------------

    def bulk_replace_inventory(
        self,
        rooms: Sequence[Room],
        acting_admin_id: str,
        new_users: Sequence[User] = (),
    ) -> list[Room]:
        """Replace every room at once; nothing is written unless all rooms are valid."""
        with self._exclusive("bulk_replace_inventory"):
            self._require_admin(acting_admin_id)
            existing_users = self._repository.list_users()
            known_ids = {user.id for user in existing_users}

            problems: list[str] = []
            for user in new_users:
                if user.id in known_ids:
                    problems.append(f"user {user.id} already exists")
                problems.extend(validate_user(user))
            problems.extend(validate_inventory(rooms, [*existing_users, *new_users]))
            if problems:
                logger.warning(
                    "Inventory replacement by %s rejected with %s problem(s)",
                    acting_admin_id,
                    len(problems),
                )
                raise InventoryValidationError(problems)

            stored = self._repository.replace_rooms(rooms, extra_users=new_users)
            logger.info(
                "Inventory replaced by %s: %s rooms, %s new users",
                acting_admin_id,
                len(stored),
                len(new_users),
            )
            if new_users:
                self._broadcaster.publish_users_changed()
            self._broadcaster.publish_inventory_replaced()
            return stored

    def generate_inventory(self, config: GenerateConfig, acting_admin_id: str) -> list[Room]:
        try:
            rooms = generate_rooms(config)
        except ValueError as exc:
            raise InventoryValidationError([str(exc)]) from exc
        return self.bulk_replace_inventory(rooms, acting_admin_id)

    def generate_special_project(self, acting_admin_id: str) -> list[Room]:
        return self.bulk_replace_inventory(generate_special_project(), acting_admin_id)

    def add_user(self, user: User, acting_admin_id: str) -> User:
        candidate = user if user.id.strip() else replace(user, id=new_user_id())
        with self._keyed("add_user", _user_key(candidate.id)):
            self._require_admin(acting_admin_id)
            problems = validate_user(candidate)
            if self._repository.get_user(candidate.id) is not None:
                problems.append(f"user {candidate.id} already exists")
            if problems:
                raise InventoryValidationError(problems)
            self._repository.add_user(candidate)
            logger.info("User %s added by %s", candidate.id, acting_admin_id)
            self._broadcaster.publish_users_changed()
        return candidate

    def bulk_replace_users(self, users: Sequence[User], acting_admin_id: str) -> list[User]:
        with self._exclusive("bulk_replace_users"):
            self._require_admin(acting_admin_id)
            rooms = self._repository.list_rooms()
            problems = validate_users(users, rooms, acting_admin_id=acting_admin_id)
            if problems:
                logger.warning(
                    "User replacement by %s rejected with %s problem(s)",
                    acting_admin_id,
                    len(problems),
                )
                raise InventoryValidationError(problems)
            self._repository.replace_users(users)
            logger.info("User list replaced by %s: %s users", acting_admin_id, len(users))
            self._broadcaster.publish_users_changed()
        return list(users)

    def reset(self, acting_admin_id: str) -> InventorySnapshot:
        """Restore the default customers and the preset inventory."""
        with self._exclusive("reset"):
            self._require_admin(acting_admin_id)
            self._repository.replace_all(generate_special_project(), default_users())
            logger.warning("All inventory and users reset by %s", acting_admin_id)
            self._broadcaster.publish_users_changed()
            self._broadcaster.publish_inventory_replaced()
        return self.snapshot()

    # --- helpers ---------------------------------------------------------

    def _require_room(self, room_id: str) -> Room:
        room = self._repository.get_room(room_id)
        if room is None:
            raise RoomNotFoundError(room_id)
        return room

    def _require_user(self, user_id: str) -> User:
        user = self._repository.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def _require_admin(self, user_id: str) -> User:
        user = self._require_user(user_id)
        if not user.is_admin:
            raise PermissionDeniedError(user_id)
        return user

    @contextmanager
    def _keyed(self, operation: str, *keys: str) -> Iterator[None]:
        try:
            with self._locks.hold(*keys):
                yield
        except LockTimeoutError as exc:
            raise ConflictError(f"{operation} timed out waiting for its turn") from exc

    @contextmanager
    def _exclusive(self, operation: str) -> Iterator[None]:
        try:
            with self._locks.hold_all():
                yield
        except LockTimeoutError as exc:
            raise ConflictError(f"{operation} timed out waiting for exclusive access") from exc

    def _serialized(
        self,
        operation: str,
        room_id: str,
        keys: Sequence[str],
        decide: Callable[[], Decision],
    ) -> Room:
        last_conflict: Optional[ConflictError] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                with self._keyed(operation, *keys):
                    room, changed = decide()
                    if changed:
                        self._broadcaster.publish_room(room)
                    return room
            except ConflictError as exc:
                if exc.room_id is None:
                    raise
                last_conflict = exc
                logger.warning(
                    "%s on room %s hit a version conflict (attempt %s/%s)",
                    operation,
                    room_id,
                    attempt,
                    self._max_attempts,
                )
        raise ConflictError(
            f"{operation} on room {room_id} kept conflicting after {self._max_attempts} attempts",
            room_id=room_id,
        ) from last_conflict
