"""Domain-level validation rules for inventory and customer lists."""

from __future__ import annotations

import math
from collections import Counter
from typing import Iterable, Optional, Sequence

from unitpicker.domain.models import GenerateConfig, Room, RoomStatus, User


def validate_generate_config(config: GenerateConfig) -> None:
    if config.building_count <= 0:
        raise ValueError("building_count must be > 0")
    if config.floors_per_building <= 0:
        raise ValueError("floors_per_building must be > 0")
    if config.rooms_per_floor <= 0:
        raise ValueError("rooms_per_floor must be > 0")
    if config.rooms_per_floor > 99:
        raise ValueError("rooms_per_floor must be <= 99")
    if not math.isfinite(config.base_area) or config.base_area <= 0:
        raise ValueError("base_area must be a finite number > 0")
    if config.building_prefix and not config.building_prefix.isalnum():
        raise ValueError("building_prefix must be alphanumeric")


def _duplicates(values: Iterable[str]) -> list[str]:
    return sorted(value for value, count in Counter(values).items() if count > 1)


def owned_counts(rooms: Iterable[Room]) -> Counter[str]:
    return Counter(room.owner_id for room in rooms if room.owner_id is not None)


def quota_problems(rooms: Iterable[Room], users: Iterable[User]) -> list[str]:
    """Report non-admin users owning more rooms than their quota allows."""
    counts = owned_counts(rooms)
    problems: list[str] = []
    for user in users:
        if user.is_admin:
            continue
        owned = counts.get(user.id, 0)
        if owned > user.max_selections:
            problems.append(
                f"user {user.id} owns {owned} room(s) but may select {user.max_selections}"
            )
    return problems


def validate_inventory(rooms: Sequence[Room], users: Sequence[User]) -> list[str]:
    """Return every consistency problem found in a candidate room list."""
    problems: list[str] = []
    user_ids = {user.id for user in users}

    for room_id in _duplicates(room.id for room in rooms):
        problems.append(f"duplicate room id {room_id}")
    for building, floor, number in _duplicates_by_location(rooms):
        problems.append(
            f"duplicate room number {number} in building {building} floor {floor}"
        )

    for room in rooms:
        if not room.id.strip():
            problems.append("room id must be non-empty")
        if not room.building.strip() or not room.building.isalnum():
            problems.append(f"room {room.id}: building must be alphanumeric")
        if room.floor <= 0:
            problems.append(f"room {room.id}: floor must be > 0")
        if not room.number.strip():
            problems.append(f"room {room.id}: number must be non-empty")
        if not math.isfinite(room.area) or room.area <= 0:
            problems.append(f"room {room.id}: area must be a finite number > 0")
        if room.status is RoomStatus.SELECTED and room.owner_id is None:
            problems.append(f"room {room.id}: SELECTED room must have an owner")
        if room.status is not RoomStatus.SELECTED and room.owner_id is not None:
            problems.append(f"room {room.id}: only SELECTED rooms may have an owner")
        if room.owner_id is not None and room.owner_id not in user_ids:
            problems.append(f"room {room.id}: owner {room.owner_id} does not exist")

    problems.extend(quota_problems(rooms, users))
    return problems


def _duplicates_by_location(rooms: Sequence[Room]) -> list[tuple[str, int, str]]:
    counter = Counter((room.building, room.floor, room.number) for room in rooms)
    return sorted(key for key, count in counter.items() if count > 1)


def validate_users(
    users: Sequence[User],
    rooms: Sequence[Room],
    acting_admin_id: Optional[str] = None,
) -> list[str]:
    """Return every problem found in a candidate user list against current rooms."""
    problems: list[str] = []
    for user_id in _duplicates(user.id for user in users):
        problems.append(f"duplicate user id {user_id}")

    for user in users:
        problems.extend(validate_user(user))

    by_id = {user.id: user for user in users}
    for owner_id in sorted(owned_counts(rooms)):
        if owner_id not in by_id:
            problems.append(f"user {owner_id} owns rooms and cannot be removed")
    problems.extend(quota_problems(rooms, users))

    if acting_admin_id is not None:
        acting = by_id.get(acting_admin_id)
        if acting is None or not acting.is_admin:
            problems.append(f"acting administrator {acting_admin_id} must remain an administrator")
    return problems


def validate_user(user: User) -> list[str]:
    problems: list[str] = []
    if not user.id.strip():
        problems.append("user id must be non-empty")
    if not user.name.strip():
        problems.append(f"user {user.id}: name must be non-empty")
    if user.max_selections < 0:
        problems.append(f"user {user.id}: max_selections must be >= 0")
    return problems
