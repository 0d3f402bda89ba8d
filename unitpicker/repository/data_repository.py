"""Repository layer responsible for all database access."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from unitpicker.domain.errors import (
    ConflictError,
    InventoryValidationError,
    RoomNotFoundError,
)
from unitpicker.domain.generator import default_users, generate_special_project
from unitpicker.domain.models import (
    AuditAction,
    AuditEntry,
    InventorySnapshot,
    Room,
    RoomStatus,
    User,
)
from unitpicker.utils.config import Settings, get_settings
from unitpicker.utils.logger import get_logger


logger = get_logger(__name__)

RoomMutation = Callable[[Room], Room]

_VERSION_HIGH_WATER_KEY = "room_version_high_water"
_BUSY_CODES = frozenset({sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED})


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    # Extended result codes keep the primary code in the low byte.
    return (exc.sqlite_errorcode & 0xFF) in _BUSY_CODES


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        id=str(row["id"]),
        building=str(row["building"]),
        floor=int(row["floor"]),
        number=str(row["number"]),
        area=float(row["area"]),
        status=RoomStatus(str(row["status"])),
        owner_id=None if row["owner_id"] is None else str(row["owner_id"]),
        version=int(row["version"]),
    )


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=str(row["id"]),
        name=str(row["name"]),
        phone=str(row["phone"]),
        max_selections=int(row["max_selections"]),
        is_admin=bool(row["is_admin"]),
    )


def _row_to_audit(row: sqlite3.Row) -> AuditEntry:
    return AuditEntry(
        entry_id=int(row["id"]),
        action=AuditAction(str(row["action"])),
        room_id=str(row["room_id"]),
        actor_id=str(row["actor_id"]),
        previous_status=RoomStatus(str(row["previous_status"])),
        previous_owner_id=row["previous_owner_id"],
        new_status=RoomStatus(str(row["new_status"])),
        new_owner_id=row["new_owner_id"],
        version=int(row["version"]),
        created_at=str(row["created_at"]),
    )


class InventoryRepository:
    """Encapsulates SQLite access so the allocation engine stays storage-agnostic.

    Every write runs inside ``BEGIN IMMEDIATE`` so writers are serialized by
    SQLite itself; WAL journaling lets readers take consistent snapshots
    without blocking them.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.sqlite_timeout_seconds,
            isolation_level=None,
            check_same_thread=False,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        try:
            yield connection
        finally:
            connection.close()

    @contextmanager
    def _transaction(
        self,
        operation: str,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Run one transaction and translate driver errors for callers.

        A busy or locked database becomes ``ConflictError`` (retryable after
        a re-query), a constraint violation ``InventoryValidationError`` and
        anything else ``RuntimeError``.
        """
        try:
            with self._connect() as conn:
                conn.execute("BEGIN IMMEDIATE;" if immediate else "BEGIN;")
                try:
                    yield conn
                    conn.execute("COMMIT;")
                except BaseException:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK;")
                    raise
        except sqlite3.IntegrityError as exc:
            raise InventoryValidationError([f"{operation} rejected by store: {exc}"]) from exc
        except sqlite3.OperationalError as exc:
            if _is_busy(exc):
                raise ConflictError(f"{operation} could not lock the database: {exc}") from exc
            raise RuntimeError(f"{operation} failed: {exc}") from exc
        except sqlite3.Error as exc:
            raise RuntimeError(f"{operation} failed: {exc}") from exc

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode = WAL;")
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS Users (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        phone TEXT NOT NULL DEFAULT '',
                        max_selections INTEGER NOT NULL CHECK (max_selections >= 0),
                        is_admin INTEGER NOT NULL DEFAULT 0 CHECK (is_admin IN (0, 1))
                    );

                    CREATE TABLE IF NOT EXISTS Rooms (
                        id TEXT PRIMARY KEY,
                        building TEXT NOT NULL,
                        floor INTEGER NOT NULL CHECK (floor > 0),
                        number TEXT NOT NULL,
                        area REAL NOT NULL CHECK (area > 0),
                        status TEXT NOT NULL
                            CHECK (status IN ('AVAILABLE', 'SELECTED', 'LOCKED')),
                        owner_id TEXT
                            REFERENCES Users(id) DEFERRABLE INITIALLY DEFERRED,
                        version INTEGER NOT NULL DEFAULT 0,
                        CHECK ((status = 'SELECTED') = (owner_id IS NOT NULL)),
                        UNIQUE (building, floor, number)
                    );

                    CREATE TABLE IF NOT EXISTS AuditLog (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        action TEXT NOT NULL,
                        room_id TEXT NOT NULL,
                        actor_id TEXT NOT NULL,
                        previous_status TEXT NOT NULL,
                        previous_owner_id TEXT,
                        new_status TEXT NOT NULL,
                        new_owner_id TEXT,
                        version INTEGER NOT NULL,
                        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS InventoryMeta (
                        key TEXT PRIMARY KEY,
                        value INTEGER NOT NULL
                    );

                    CREATE INDEX IF NOT EXISTS idx_rooms_owner ON Rooms(owner_id);
                    CREATE INDEX IF NOT EXISTS idx_rooms_building_floor
                        ON Rooms(building, floor);
                    CREATE INDEX IF NOT EXISTS idx_audit_room ON AuditLog(room_id);
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_default_data_if_empty(self) -> bool:
        """Install the default customers and preset inventory on a fresh database."""
        with self._transaction("Default data seeding") as conn:
            user_count = int(
                conn.execute("SELECT COUNT(*) AS count FROM Users;").fetchone()["count"]
            )
            room_count = int(
                conn.execute("SELECT COUNT(*) AS count FROM Rooms;").fetchone()["count"]
            )
            if user_count or room_count:
                logger.info("Inventory already present; skipping seed")
                return False
            self._write_users(conn, default_users())
            rooms = generate_special_project()
            self._write_rooms(conn, rooms)
        logger.info("Default seed completed with %s rooms", len(rooms))
        return True

    # --- reads -------------------------------------------------------------

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM Rooms WHERE id = ?;", (room_id,)).fetchone()
            return None if row is None else _row_to_room(row)

    def list_rooms(
        self,
        building: Optional[str] = None,
        floor: Optional[int] = None,
        status: Optional[RoomStatus] = None,
        owner_id: Optional[str] = None,
    ) -> List[Room]:
        clauses: list[str] = []
        params: list[object] = []
        if building is not None:
            clauses.append("building = ?")
            params.append(building)
        if floor is not None:
            clauses.append("floor = ?")
            params.append(floor)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(owner_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM Rooms {where} ORDER BY rowid ASC;",
                tuple(params),
            ).fetchall()
            return [_row_to_room(row) for row in rows]

    def count_rooms_owned_by(self, user_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM Rooms WHERE owner_id = ? AND status = 'SELECTED';",
                (user_id,),
            ).fetchone()
            return int(row["count"])

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM Users WHERE id = ?;", (user_id,)).fetchone()
            return None if row is None else _row_to_user(row)

    def list_users(self) -> List[User]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM Users ORDER BY rowid ASC;").fetchall()
            return [_row_to_user(row) for row in rows]

    def snapshot(self, sequence: int = 0) -> InventorySnapshot:
        """Read rooms and users inside one read transaction."""
        with self._transaction("Snapshot read", immediate=False) as conn:
            rooms = [
                _row_to_room(row)
                for row in conn.execute("SELECT * FROM Rooms ORDER BY rowid ASC;").fetchall()
            ]
            users = [
                _row_to_user(row)
                for row in conn.execute("SELECT * FROM Users ORDER BY rowid ASC;").fetchall()
            ]
        return InventorySnapshot(rooms=rooms, users=users, sequence=sequence)

    def list_audit_entries(
        self,
        room_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        with self._connect() as conn:
            if room_id is None:
                rows = conn.execute(
                    "SELECT * FROM AuditLog ORDER BY id DESC LIMIT ?;",
                    (limit,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM AuditLog WHERE room_id = ? ORDER BY id DESC LIMIT ?;",
                    (room_id, limit),
                ).fetchall()
            return [_row_to_audit(row) for row in rows]

    # --- writes ------------------------------------------------------------

    def apply_room_mutation(
        self,
        room_id: str,
        mutate_fn: RoomMutation,
        expected_version: int,
        audit_action: Optional[AuditAction] = None,
        actor_id: Optional[str] = None,
    ) -> Room:
        """Compare-and-swap a single room.

        Raises ``RoomNotFoundError`` for an unknown id and ``ConflictError``
        when the stored version no longer equals ``expected_version``.
        """
        with self._transaction(f"Update of room {room_id}") as conn:
            row = conn.execute("SELECT * FROM Rooms WHERE id = ?;", (room_id,)).fetchone()
            if row is None:
                raise RoomNotFoundError(room_id)
            current = _row_to_room(row)
            if current.version != expected_version:
                raise ConflictError(
                    f"Room {room_id} changed concurrently",
                    room_id=room_id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )

            mutated = mutate_fn(current)
            updated = replace(
                current,
                status=mutated.status,
                owner_id=mutated.owner_id,
                version=current.version + 1,
            )
            cursor = conn.execute(
                """
                UPDATE Rooms
                SET status = ?, owner_id = ?, version = ?
                WHERE id = ? AND version = ?;
                """,
                (
                    updated.status.value,
                    updated.owner_id,
                    updated.version,
                    room_id,
                    expected_version,
                ),
            )
            if cursor.rowcount != 1:
                raise ConflictError(
                    f"Room {room_id} changed concurrently",
                    room_id=room_id,
                    expected_version=expected_version,
                )

            if audit_action is not None:
                self._write_audit(
                    conn,
                    AuditEntry(
                        action=audit_action,
                        room_id=room_id,
                        actor_id=actor_id or "",
                        previous_status=current.status,
                        previous_owner_id=current.owner_id,
                        new_status=updated.status,
                        new_owner_id=updated.owner_id,
                        version=updated.version,
                    ),
                )
            return updated

    def replace_rooms(
        self,
        rooms: Sequence[Room],
        extra_users: Sequence[User] = (),
    ) -> List[Room]:
        """Atomically swap the whole inventory, optionally adding new users."""
        with self._transaction("Inventory replacement") as conn:
            if extra_users:
                self._insert_users(conn, extra_users)
            return self._write_rooms(conn, rooms)

    def replace_users(self, users: Sequence[User]) -> None:
        with self._transaction("User list replacement") as conn:
            self._write_users(conn, users)

    def replace_all(self, rooms: Sequence[Room], users: Sequence[User]) -> List[Room]:
        with self._transaction("Inventory reset") as conn:
            self._write_users(conn, users)
            return self._write_rooms(conn, rooms)

    def add_user(self, user: User) -> User:
        with self._transaction(f"Creation of user {user.id}") as conn:
            self._insert_users(conn, [user])
        return user

    # --- helpers -----------------------------------------------------------

    def _next_version_base(self, conn: sqlite3.Connection) -> int:
        stored = conn.execute(
            "SELECT value FROM InventoryMeta WHERE key = ?;",
            (_VERSION_HIGH_WATER_KEY,),
        ).fetchone()
        current_max = conn.execute("SELECT MAX(version) AS max_version FROM Rooms;").fetchone()
        candidates = [0]
        if stored is not None:
            candidates.append(int(stored["value"]))
        if current_max is not None and current_max["max_version"] is not None:
            candidates.append(int(current_max["max_version"]))
        return max(candidates)

    def _write_rooms(self, conn: sqlite3.Connection, rooms: Sequence[Room]) -> List[Room]:
        # Replacement rooms start above every version ever handed out, so a
        # caller holding a pre-replacement version can never match.
        new_version = self._next_version_base(conn) + 1
        stored = [replace(room, version=new_version) for room in rooms]
        conn.execute("DELETE FROM Rooms;")
        conn.executemany(
            """
            INSERT INTO Rooms (id, building, floor, number, area, status, owner_id, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                (
                    room.id,
                    room.building,
                    room.floor,
                    room.number,
                    room.area,
                    room.status.value,
                    room.owner_id,
                    room.version,
                )
                for room in stored
            ],
        )
        conn.execute(
            """
            INSERT INTO InventoryMeta (key, value) VALUES (?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value;
            """,
            (_VERSION_HIGH_WATER_KEY, new_version),
        )
        return stored

    def _write_users(self, conn: sqlite3.Connection, users: Sequence[User]) -> None:
        conn.execute("DELETE FROM Users;")
        self._insert_users(conn, users)

    def _insert_users(self, conn: sqlite3.Connection, users: Iterable[User]) -> None:
        conn.executemany(
            """
            INSERT INTO Users (id, name, phone, max_selections, is_admin)
            VALUES (?, ?, ?, ?, ?);
            """,
            [
                (user.id, user.name, user.phone, user.max_selections, int(user.is_admin))
                for user in users
            ],
        )

    def _write_audit(self, conn: sqlite3.Connection, entry: AuditEntry) -> None:
        conn.execute(
            """
            INSERT INTO AuditLog (
                action,
                room_id,
                actor_id,
                previous_status,
                previous_owner_id,
                new_status,
                new_owner_id,
                version
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                entry.action.value,
                entry.room_id,
                entry.actor_id,
                entry.previous_status.value,
                entry.previous_owner_id,
                entry.new_status.value,
                entry.new_owner_id,
                entry.version,
            ),
        )
