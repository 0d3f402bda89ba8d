"""Tests for inventory, customer list and generator validation rules."""

from __future__ import annotations

import pytest

from unitpicker.domain.constraints import validate_generate_config, validate_inventory, validate_users
from unitpicker.domain.generator import default_users, generate_rooms, generate_special_project
from unitpicker.domain.models import GenerateConfig, Room, RoomStatus, User


ADMIN = User(id="admin", name="系统管理员", phone="13800000000", max_selections=999, is_admin=True)
BUYER = User(id="u1", name="张三", phone="13912345678", max_selections=1)


def valid_config(**overrides) -> GenerateConfig:
    """Return a valid baseline GenerateConfig, optionally overriding fields."""
    defaults = {
        "building_count": 2,
        "floors_per_building": 3,
        "rooms_per_floor": 4,
        "base_area": 90.0,
        "building_prefix": "",
    }
    defaults.update(overrides)
    return GenerateConfig(**defaults)


def room(room_id: str, number: str = "101", **overrides) -> Room:
    fields = {"id": room_id, "building": "1", "floor": 1, "number": number, "area": 90.0}
    fields.update(overrides)
    return Room(**fields)


# --- generator config ---

def test_valid_config_passes() -> None:
    validate_generate_config(valid_config())


@pytest.mark.parametrize(
    "overrides",
    [
        {"building_count": 0},
        {"floors_per_building": -1},
        {"rooms_per_floor": 0},
        {"rooms_per_floor": 100},
        {"base_area": 0},
        {"building_prefix": "A-"},
    ],
)
def test_invalid_config_raises(overrides) -> None:
    with pytest.raises(ValueError):
        validate_generate_config(valid_config(**overrides))


# --- generators ---

def test_generate_rooms_shapes_ids_numbers_and_areas() -> None:
    rooms = generate_rooms(valid_config(building_prefix="A"))

    assert len(rooms) == 2 * 3 * 4
    assert len({r.id for r in rooms}) == len(rooms)
    first = rooms[0]
    assert (first.id, first.building, first.floor, first.number) == ("A1-1-01", "A1", 1, "101")
    # odd unit: base - 5 + floor * 0.5
    assert first.area == 85.5
    second_floor_even = next(r for r in rooms if r.id == "A1-2-02")
    assert second_floor_even.number == "202"
    assert second_floor_even.area == 96.0
    assert all(r.status is RoomStatus.AVAILABLE and r.owner_id is None for r in rooms)


def test_special_project_layout() -> None:
    rooms = generate_special_project()

    assert len(rooms) == 1292
    by_building: dict[str, int] = {}
    for r in rooms:
        by_building[r.building] = by_building.get(r.building, 0) + 1
    assert by_building == {"1": 204, "2": 204, "3": 204, "4": 680}
    top = next(r for r in rooms if r.id == "4-34-20")
    assert top.number == "3420"
    assert top.area == 80.0
    assert next(r for r in rooms if r.id == "2-5-03").area == 96.0
    assert validate_inventory(rooms, default_users()) == []


# --- inventory validation ---

def test_valid_inventory_has_no_problems() -> None:
    rooms = [
        room("1-1-01", status=RoomStatus.SELECTED, owner_id="u1"),
        room("1-1-02", number="102", status=RoomStatus.LOCKED),
    ]
    assert validate_inventory(rooms, [ADMIN, BUYER]) == []


def test_duplicate_ids_and_locations_are_reported() -> None:
    rooms = [room("1-1-01"), room("1-1-01", number="102"), room("1-1-03", number="101")]

    problems = validate_inventory(rooms, [ADMIN])

    assert "duplicate room id 1-1-01" in problems
    assert "duplicate room number 101 in building 1 floor 1" in problems


def test_owner_status_pairing_is_enforced() -> None:
    rooms = [
        room("1-1-01", status=RoomStatus.SELECTED),
        room("1-1-02", number="102", status=RoomStatus.AVAILABLE, owner_id="u1"),
    ]

    problems = validate_inventory(rooms, [ADMIN, BUYER])

    assert "room 1-1-01: SELECTED room must have an owner" in problems
    assert "room 1-1-02: only SELECTED rooms may have an owner" in problems


def test_field_rules_are_enforced() -> None:
    rooms = [room("1-0-01", floor=0, area=0, building="1#", number=" ")]

    problems = validate_inventory(rooms, [ADMIN])

    assert len(problems) == 4


def test_quota_breach_ignores_admins() -> None:
    rooms = [
        room("1-1-01", status=RoomStatus.SELECTED, owner_id="u1"),
        room("1-1-02", number="102", status=RoomStatus.SELECTED, owner_id="u1"),
        room("1-1-03", number="103", status=RoomStatus.SELECTED, owner_id="admin"),
        room("1-1-04", number="104", status=RoomStatus.SELECTED, owner_id="admin"),
    ]

    problems = validate_inventory(rooms, [ADMIN, BUYER])

    assert problems == ["user u1 owns 2 room(s) but may select 1"]


# --- user list validation ---

def test_user_list_must_keep_owners_and_acting_admin() -> None:
    rooms = [room("1-1-01", status=RoomStatus.SELECTED, owner_id="u1")]

    problems = validate_users([ADMIN, ADMIN], rooms, acting_admin_id="boss")

    assert "duplicate user id admin" in problems
    assert "user u1 owns rooms and cannot be removed" in problems
    assert "acting administrator boss must remain an administrator" in problems


def test_user_list_rejects_blank_name_and_negative_quota() -> None:
    problems = validate_users(
        [ADMIN, User(id="u2", name=" ", phone="1", max_selections=-1)],
        [],
        acting_admin_id="admin",
    )

    assert problems == [
        "user u2: name must be non-empty",
        "user u2: max_selections must be >= 0",
    ]


@pytest.mark.parametrize("area", [float("inf"), float("nan")])
def test_non_finite_area_is_reported(area) -> None:
    problems = validate_inventory([room("1-1-01", area=area)], [ADMIN])

    assert problems == ["room 1-1-01: area must be a finite number > 0"]


def test_non_finite_base_area_raises() -> None:
    with pytest.raises(ValueError):
        validate_generate_config(valid_config(base_area=float("inf")))
