from __future__ import annotations

import sqlite3
from contextlib import closing
from dataclasses import replace

import pytest

from unitpicker.domain.errors import ConflictError, InventoryValidationError
from unitpicker.domain.models import Room, RoomStatus, User
from unitpicker.repository.data_repository import InventoryRepository
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.utils.config import get_settings


ADMIN = User(id="admin", name="系统管理员", phone="13800000000", max_selections=999, is_admin=True)
U1 = User(id="u1", name="张三", phone="13912345678", max_selections=1)


def _build_test_settings(tmp_path, filename: str):
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        sqlite_timeout_seconds=0.05,
    )


def _build_repository(tmp_path) -> InventoryRepository:
    repository = InventoryRepository(_build_test_settings(tmp_path, "repository.db"))
    repository.initialize_database()
    repository.replace_all(
        [Room(id="1-1-01", building="1", floor=1, number="101", area=92.0)],
        [ADMIN, U1],
    )
    return repository


def test_locked_database_surfaces_as_conflict(tmp_path):
    repository = _build_repository(tmp_path)
    version = repository.get_room("1-1-01").version

    with closing(sqlite3.connect(repository.database_path, isolation_level=None)) as other:
        other.execute("BEGIN IMMEDIATE;")
        with pytest.raises(ConflictError) as exc:
            repository.apply_room_mutation(
                "1-1-01",
                lambda room: replace(room, status=RoomStatus.LOCKED),
                expected_version=version,
            )
        with pytest.raises(ConflictError):
            repository.add_user(User(id="u2", name="李四", phone="1", max_selections=1))
        other.execute("ROLLBACK;")

    assert exc.value.room_id is None
    assert repository.get_room("1-1-01").status is RoomStatus.AVAILABLE


def test_engine_does_not_retry_a_locked_database(tmp_path):
    repository = _build_repository(tmp_path)
    engine = AllocationEngine(repository=repository, settings=_build_test_settings(tmp_path, "repository.db"))

    with closing(sqlite3.connect(repository.database_path, isolation_level=None)) as other:
        other.execute("BEGIN IMMEDIATE;")
        with pytest.raises(ConflictError):
            engine.claim("1-1-01", "u1")
        other.execute("ROLLBACK;")

    assert engine.claim("1-1-01", "u1").owner_id == "u1"


def test_commit_time_violation_rolls_back_and_is_typed(tmp_path):
    repository = _build_repository(tmp_path)
    before = repository.list_rooms()
    orphaned = Room(
        id="2-1-01",
        building="2",
        floor=1,
        number="101",
        area=60.0,
        status=RoomStatus.SELECTED,
        owner_id="ghost",
    )

    # Owner references are checked when the transaction commits.
    with pytest.raises(InventoryValidationError) as exc:
        repository.replace_rooms([orphaned])

    assert "FOREIGN KEY" in exc.value.problems[0]
    assert repository.list_rooms() == before
    repository.add_user(User(id="u2", name="李四", phone="1", max_selections=1))
    assert repository.get_user("u2") is not None


def test_duplicate_user_is_a_validation_error(tmp_path):
    repository = _build_repository(tmp_path)

    with pytest.raises(InventoryValidationError):
        repository.add_user(User(id="u1", name="重复", phone="1", max_selections=1))
    assert [user.id for user in repository.list_users()] == ["admin", "u1"]
