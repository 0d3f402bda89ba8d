#!/usr/bin/env python3
"""Validate local unit picker environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from unitpicker.domain.errors import QuotaExceededError
from unitpicker.repository.data_repository import InventoryRepository
from unitpicker.services.allocation_service import AllocationEngine
from unitpicker.services.transfer_service import build_room_import, parse_rooms_csv, rooms_to_csv
from unitpicker.utils.config import get_settings

SEPARATOR_LINE = "=" * 44
EXPECTED_SEED_ROOMS = 1292


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="unitpicker-env-")

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable
    package_names = [
        "fastapi",
        "uvicorn",
        "pydantic",
        "pandas",
        "openpyxl",
        "dotenv",
        "httpx",
        "pytest",
    ]
    import_errors: list[str] = []
    for module_name in package_names:
        try:
            importlib.import_module(module_name)
        except ImportError as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "unitpicker_validation.db",
        )
        repository = InventoryRepository(validation_settings)
        engine = AllocationEngine(repository=repository, settings=validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Default seed
        try:
            repository.seed_default_data_if_empty()
            room_count = len(repository.list_rooms())
            if room_count != EXPECTED_SEED_ROOMS:
                raise RuntimeError(f"expected {EXPECTED_SEED_ROOMS} rooms, got {room_count}")
            ok, line = _print_result(f"Default seed: {room_count} rooms", True)
        except Exception as exc:
            ok, line = _print_result("Default seed", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Claim, quota and release round trip
        try:
            engine.claim("1-1-01", "user1")
            try:
                engine.claim("1-1-02", "user1")
                raise RuntimeError("second claim was not rejected by quota")
            except QuotaExceededError:
                pass
            released = engine.release("1-1-01", "user1")
            if released.owner_id is not None:
                raise RuntimeError("release left an owner behind")
            ok, line = _print_result("Claim / quota / release", True)
        except Exception as exc:
            ok, line = _print_result("Claim / quota / release", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: CSV export parses back
        try:
            snapshot = engine.snapshot()
            exported = rooms_to_csv(snapshot.rooms, snapshot.users)
            rooms, _ = build_room_import(parse_rooms_csv(exported), snapshot.users)
            if len(rooms) != len(snapshot.rooms):
                raise RuntimeError(f"expected {len(snapshot.rooms)} rows, got {len(rooms)}")
            ok, line = _print_result("CSV export/import", True, f": {len(rooms)} rows")
        except Exception as exc:
            ok, line = _print_result("CSV export/import", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Unit Picker Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
