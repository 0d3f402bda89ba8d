"""CSV and spreadsheet import/export for rooms and customers."""

from __future__ import annotations

import io
import math
from collections import Counter
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union
from zipfile import BadZipFile

import pandas as pd
from openpyxl.utils.exceptions import InvalidFileException

from unitpicker.domain.errors import InventoryValidationError
from unitpicker.domain.models import Room, RoomStatus, User
from unitpicker.services.allocation_service import AllocationEngine, new_user_id
from unitpicker.utils.logger import get_logger


logger = get_logger(__name__)

ROOM_CSV_COLUMNS = [
    "ID",
    "楼栋",
    "楼层",
    "房号",
    "面积",
    "状态",
    "拥有者ID",
    "拥有者姓名",
    "拥有者电话",
]
ROOM_CSV_REQUIRED_COLUMNS = ROOM_CSV_COLUMNS[:6]
USER_SHEET_COLUMNS = ["客户姓名", "电话号码", "限购数量", "是否管理员", "系统ID"]
USER_SHEET_NAME = "客户名单"
UTF8_BOM = "\ufeff"

_NAME_KEYS = ("客户姓名", "姓名")
_PHONE_KEYS = ("电话号码", "电话")
_QUOTA_KEYS = ("限购数量", "限额")
DEFAULT_IMPORTED_QUOTA = 1


@dataclass(frozen=True)
class RowError:
    line: int
    message: str

    def describe(self) -> str:
        return f"line {self.line}: {self.message}"


@dataclass(frozen=True)
class ParsedRoomRow:
    line: int
    room: Room
    owner_name: str = ""
    owner_phone: str = ""


@dataclass(frozen=True)
class ParsedUserRow:
    line: int
    user: User


RoomRowResult = Union[ParsedRoomRow, RowError]
UserRowResult = Union[ParsedUserRow, RowError]


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(float(value))


def _first(record: Mapping[str, str], keys: Sequence[str]) -> str:
    for key in keys:
        value = str(record.get(key, "") or "").strip()
        if value:
            return value
    return ""


def _parse_int(raw: str) -> Optional[int]:
    try:
        number = float(raw)
    except ValueError:
        return None
    if not number.is_integer():
        return None
    return int(number)


# --- rooms -----------------------------------------------------------------


def rooms_to_csv(rooms: Sequence[Room], users: Sequence[User]) -> bytes:
    """Render the inventory as UTF-8 CSV with a leading BOM."""
    user_by_id = {user.id: user for user in users}
    records = []
    for room in rooms:
        owner = user_by_id.get(room.owner_id) if room.owner_id else None
        records.append(
            [
                room.id,
                room.building,
                str(room.floor),
                room.number,
                _format_number(room.area),
                room.status.value,
                room.owner_id or "",
                owner.name if owner else "",
                owner.phone if owner else "",
            ]
        )
    frame = pd.DataFrame(records, columns=ROOM_CSV_COLUMNS, dtype=str)
    text = frame.to_csv(index=False, lineterminator="\n")
    return (UTF8_BOM + text).encode("utf-8")


def parse_room_row(line: int, record: Mapping[str, str]) -> Optional[RoomRowResult]:
    values = {key: str(value or "").strip() for key, value in record.items()}
    if not any(values.values()):
        return None

    room_id = values.get("ID", "")
    if not room_id:
        return RowError(line, "ID is required")
    building = values.get("楼栋", "")
    if not building:
        return RowError(line, "building is required")
    floor = _parse_int(values.get("楼层", ""))
    if floor is None or floor <= 0:
        return RowError(line, f"floor {values.get('楼层', '')!r} is not a positive integer")
    number = values.get("房号", "")
    if not number:
        return RowError(line, "room number is required")
    try:
        area = float(values.get("面积", ""))
    except ValueError:
        return RowError(line, f"area {values.get('面积', '')!r} is not a number")
    if not math.isfinite(area) or area <= 0:
        return RowError(line, f"area {values.get('面积', '')!r} must be a finite number > 0")

    raw_status = values.get("状态", "") or RoomStatus.AVAILABLE.value
    try:
        status = RoomStatus(raw_status.upper())
    except ValueError:
        return RowError(line, f"unknown status {raw_status!r}")

    owner_id = values.get("拥有者ID", "") or None
    return ParsedRoomRow(
        line=line,
        room=Room(
            id=room_id,
            building=building,
            floor=floor,
            number=number,
            area=area,
            status=status,
            owner_id=owner_id,
        ),
        owner_name=values.get("拥有者姓名", ""),
        owner_phone=values.get("拥有者电话", ""),
    )


def parse_rooms_csv(data: bytes) -> list[RoomRowResult]:
    try:
        frame = pd.read_csv(
            io.BytesIO(data),
            encoding="utf-8-sig",
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
        raise InventoryValidationError([f"unreadable CSV: {exc}"]) from exc

    frame.columns = [str(column).strip() for column in frame.columns]
    missing = [column for column in ROOM_CSV_REQUIRED_COLUMNS if column not in frame.columns]
    if missing:
        raise InventoryValidationError([f"missing column {column}" for column in missing])

    results: list[RoomRowResult] = []
    for offset, record in enumerate(frame.to_dict(orient="records")):
        parsed = parse_room_row(offset + 2, record)
        if parsed is not None:
            results.append(parsed)
    return results


def build_room_import(
    results: Sequence[RoomRowResult],
    existing_users: Sequence[User],
) -> tuple[list[Room], list[User]]:
    """Fold row results into rooms plus owners that must be created.

    Owners unknown to the system are created from the name/phone columns with
    a quota equal to the number of rooms they hold (at least one).
    """
    problems = [result.describe() for result in results if isinstance(result, RowError)]
    rows = [result for result in results if isinstance(result, ParsedRoomRow)]
    if not rows and not problems:
        problems.append("no room rows found")

    known_ids = {user.id for user in existing_users}
    owned = Counter(row.room.owner_id for row in rows if row.room.owner_id)
    new_users: dict[str, User] = {}
    for row in rows:
        owner_id = row.room.owner_id
        if owner_id is None or owner_id in known_ids or owner_id in new_users:
            continue
        if not row.owner_name:
            problems.append(f"line {row.line}: unknown owner {owner_id} has no name")
            continue
        new_users[owner_id] = User(
            id=owner_id,
            name=row.owner_name,
            phone=row.owner_phone,
            max_selections=max(DEFAULT_IMPORTED_QUOTA, owned[owner_id]),
            is_admin=False,
        )

    if problems:
        raise InventoryValidationError(problems)
    return [row.room for row in rows], list(new_users.values())


# --- users -----------------------------------------------------------------


def users_to_xlsx(users: Sequence[User]) -> bytes:
    frame = pd.DataFrame(
        [
            {
                "客户姓名": user.name,
                "电话号码": user.phone,
                "限购数量": user.max_selections,
                "是否管理员": "TRUE" if user.is_admin else "FALSE",
                "系统ID": user.id,
            }
            for user in users
        ],
        columns=USER_SHEET_COLUMNS,
    )
    buffer = io.BytesIO()
    frame.to_excel(buffer, index=False, sheet_name=USER_SHEET_NAME, engine="openpyxl")
    return buffer.getvalue()


def parse_user_row(line: int, record: Mapping[str, str]) -> Optional[UserRowResult]:
    values = {key: str(value or "").strip() for key, value in record.items()}
    if not any(values.values()):
        return None

    name = _first(values, _NAME_KEYS)
    phone = _first(values, _PHONE_KEYS)
    if not name:
        return RowError(line, "customer name is required")
    if not phone:
        return RowError(line, "phone number is required")

    raw_quota = _first(values, _QUOTA_KEYS)
    if raw_quota:
        quota = _parse_int(raw_quota)
        if quota is None or quota < 0:
            return RowError(line, f"quota {raw_quota!r} is not a non-negative integer")
    else:
        quota = DEFAULT_IMPORTED_QUOTA

    is_admin = values.get("是否管理员", "").upper() == "TRUE"
    user_id = values.get("系统ID", "") or new_user_id()
    return ParsedUserRow(
        line=line,
        user=User(id=user_id, name=name, phone=phone, max_selections=quota, is_admin=is_admin),
    )


def parse_users_xlsx(data: bytes) -> list[UserRowResult]:
    try:
        frame = pd.read_excel(io.BytesIO(data), sheet_name=0, dtype=str, engine="openpyxl")
    except (ValueError, KeyError, OSError, BadZipFile, InvalidFileException) as exc:
        raise InventoryValidationError([f"unreadable spreadsheet: {exc}"]) from exc

    frame = frame.fillna("")
    frame.columns = [str(column).strip() for column in frame.columns]
    results: list[UserRowResult] = []
    for offset, record in enumerate(frame.to_dict(orient="records")):
        parsed = parse_user_row(offset + 2, record)
        if parsed is not None:
            results.append(parsed)
    return results


def build_user_import(results: Sequence[UserRowResult]) -> list[User]:
    problems = [result.describe() for result in results if isinstance(result, RowError)]
    users = [result.user for result in results if isinstance(result, ParsedUserRow)]
    if not users and not problems:
        problems.append("no customer rows found")
    if problems:
        raise InventoryValidationError(problems)
    return users


class InventoryTransferService:
    """Moves inventory and customer lists in and out through the engine."""

    def __init__(self, engine: AllocationEngine) -> None:
        self._engine = engine

    def export_rooms_csv(self) -> bytes:
        snapshot = self._engine.snapshot()
        return rooms_to_csv(snapshot.rooms, snapshot.users)

    def import_rooms_csv(self, data: bytes, acting_admin_id: str) -> list[Room]:
        self._engine.ensure_admin(acting_admin_id)
        results = parse_rooms_csv(data)
        rooms, new_users = build_room_import(results, self._engine.list_users())
        stored = self._engine.bulk_replace_inventory(rooms, acting_admin_id, new_users=new_users)
        logger.info("Imported %s rooms from CSV", len(stored))
        return stored

    def export_users_xlsx(self) -> bytes:
        return users_to_xlsx(self._engine.list_users())

    def import_users_xlsx(self, data: bytes, acting_admin_id: str) -> list[User]:
        self._engine.ensure_admin(acting_admin_id)
        users = build_user_import(parse_users_xlsx(data))
        stored = self._engine.bulk_replace_users(users, acting_admin_id)
        logger.info("Imported %s users from spreadsheet", len(stored))
        return stored
