"""Inventory generators used by the admin console and the default seed."""

from __future__ import annotations

from unitpicker.domain.constraints import validate_generate_config
from unitpicker.domain.models import (
    GenerateConfig,
    Room,
    RoomStatus,
    User,
    make_room_id,
    make_room_number,
)


SPECIAL_PROJECT_FLOORS = 34
SPECIAL_PROJECT_STANDARD_BUILDINGS = ("1", "2", "3")
SPECIAL_PROJECT_STANDARD_UNITS = 6
SPECIAL_PROJECT_HIGH_DENSITY_BUILDING = "4"
SPECIAL_PROJECT_HIGH_DENSITY_UNITS = 20

DEFAULT_ADMIN = User(
    id="admin",
    name="系统管理员",
    phone="13800000000",
    max_selections=999,
    is_admin=True,
)
DEFAULT_CUSTOMER = User(
    id="user1",
    name="张三",
    phone="13912345678",
    max_selections=1,
    is_admin=False,
)


def _room(building: str, floor: int, unit: int, area: float) -> Room:
    return Room(
        id=make_room_id(building, floor, unit),
        building=building,
        floor=floor,
        number=make_room_number(floor, unit),
        area=round(area, 2),
        status=RoomStatus.AVAILABLE,
        owner_id=None,
    )


def generate_rooms(config: GenerateConfig) -> list[Room]:
    """Build a uniform grid of buildings x floors x units.

    Even units are 5 m² above ``base_area`` and odd units 5 m² below, with
    another 0.5 m² per floor.
    """
    validate_generate_config(config)
    rooms: list[Room] = []
    for building_index in range(1, config.building_count + 1):
        building = f"{config.building_prefix}{building_index}"
        for floor in range(1, config.floors_per_building + 1):
            for unit in range(1, config.rooms_per_floor + 1):
                variance = (5 if unit % 2 == 0 else -5) + floor * 0.5
                rooms.append(_room(building, floor, unit, config.base_area + variance))
    return rooms


def generate_special_project() -> list[Room]:
    """The launch preset: buildings 1-3 with 6 units per floor, building 4 with 20."""
    rooms: list[Room] = []
    for building in SPECIAL_PROJECT_STANDARD_BUILDINGS:
        for floor in range(1, SPECIAL_PROJECT_FLOORS + 1):
            for unit in range(1, SPECIAL_PROJECT_STANDARD_UNITS + 1):
                rooms.append(_room(building, floor, unit, 90 + unit * 2))

    for floor in range(1, SPECIAL_PROJECT_FLOORS + 1):
        for unit in range(1, SPECIAL_PROJECT_HIGH_DENSITY_UNITS + 1):
            rooms.append(
                _room(SPECIAL_PROJECT_HIGH_DENSITY_BUILDING, floor, unit, 50 + unit * 1.5)
            )
    return rooms


def default_users() -> list[User]:
    return [DEFAULT_ADMIN, DEFAULT_CUSTOMER]
