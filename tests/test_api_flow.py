from __future__ import annotations

import io
from dataclasses import replace

import pandas as pd
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from unitpicker.main import create_app
from unitpicker.utils.config import get_settings


ADMIN_SECRET = "secret-admin-token"


def _build_test_settings(tmp_path, filename: str, admin_secret=ADMIN_SECRET):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        admin_secret=admin_secret,
        seed_demo_data=True,
    )


def _build_test_app(tmp_path, admin_secret=ADMIN_SECRET) -> FastAPI:
    return create_app(_build_test_settings(tmp_path, "api_flow.db", admin_secret))


def _login(client: TestClient, user_id: str, admin_secret=None) -> dict[str, str]:
    payload = {"user_id": user_id}
    if admin_secret is not None:
        payload["admin_secret"] = admin_secret
    response = client.post("/login", json=payload)
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def test_customer_selection_flow(tmp_path):
    app = _build_test_app(tmp_path)
    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "ok"}

        candidates = client.get("/login/candidates", params={"query": "张三"}).json()
        assert [candidate["id"] for candidate in candidates] == ["user1"]

        customer = _login(client, "user1")
        admin = _login(client, "admin", ADMIN_SECRET)

        claimed = client.post("/rooms/1-1-01/claim", headers=customer)
        assert claimed.status_code == 200
        assert claimed.json()["status"] == "SELECTED"
        assert claimed.json()["owner_id"] == "user1"

        over_quota = client.post("/rooms/1-1-02/claim", headers=customer)
        assert over_quota.status_code == 409
        assert over_quota.json()["detail"]["kind"] == "QuotaExceeded"
        assert over_quota.json()["detail"]["max_selections"] == 1

        me = client.get("/me", headers=customer).json()
        assert [room["id"] for room in me["owned_rooms"]] == ["1-1-01"]
        assert me["remaining_selections"] == 0

        assert client.post("/rooms/1-1-01/release", headers=customer).status_code == 200
        assert client.post("/admin/rooms/1-1-02/lock", headers=admin).json()["status"] == "LOCKED"

        locked = client.post("/rooms/1-1-02/claim", headers=customer)
        assert locked.status_code == 409
        assert locked.json()["detail"] == {
            "kind": "RoomUnavailable",
            "detail": "Room 1-1-02 is locked",
            "reason": "LOCKED",
        }

        not_owner = client.post("/rooms/1-1-03/release", headers=customer)
        assert not_owner.status_code == 403
        assert not_owner.json()["detail"]["kind"] == "NotOwner"

        missing = client.post("/rooms/9-9-99/claim", headers=customer)
        assert missing.status_code == 404
        assert missing.json()["detail"]["kind"] == "NotFound"

        available = client.get(
            "/rooms",
            params={"building": "1", "floor": 1, "status": "AVAILABLE"},
            headers=customer,
        ).json()
        assert [room["id"] for room in available] == ["1-1-01", "1-1-03", "1-1-04", "1-1-05", "1-1-06"]

        suggestion = client.post("/rooms/random", json={"building": "4"}, headers=customer)
        assert suggestion.status_code == 200
        assert suggestion.json()["building"] == "4"

        audit = client.get("/admin/audit", params={"room_id": "1-1-02"}, headers=admin).json()
        assert audit[0]["action"] == "LOCK"


def test_sessions_and_admin_gate(tmp_path):
    app = _build_test_app(tmp_path)
    with TestClient(app) as client:
        assert client.get("/me").status_code == 401
        assert client.get("/me", headers={"Authorization": "Bearer nope"}).status_code == 401

        assert client.post("/login", json={"user_id": "admin"}).status_code == 401
        assert (
            client.post("/login", json={"user_id": "admin", "admin_secret": "wrong"}).status_code
            == 401
        )
        assert client.post("/login", json={"user_id": "ghost"}).status_code == 404

        customer = _login(client, "user1")
        forbidden = client.get("/admin/users", headers=customer)
        assert forbidden.status_code == 403
        assert forbidden.json()["detail"]["kind"] == "Forbidden"

        assert client.post("/logout", headers=customer).status_code == 204
        assert client.get("/me", headers=customer).status_code == 401


def test_admin_login_disabled_without_secret(tmp_path):
    app = _build_test_app(tmp_path, admin_secret=None)
    with TestClient(app) as client:
        response = client.post("/login", json={"user_id": "admin", "admin_secret": "anything"})
        assert response.status_code == 401
        assert "ADMIN_SECRET" in response.json()["detail"]


def test_websocket_streams_snapshot_then_events(tmp_path):
    app = _build_test_app(tmp_path)
    with TestClient(app) as client:
        customer = _login(client, "user1")
        token = customer["Authorization"].split(" ", 1)[1]

        with client.websocket_connect(f"/ws/rooms?token={token}") as websocket:
            first = websocket.receive_json()
            assert first["type"] == "snapshot"
            assert len(first["rooms"]) == 1292
            assert first["sequence"] == 0

            assert client.post("/rooms/1-1-01/claim", headers=customer).status_code == 200
            event = websocket.receive_json()

        assert event == {
            "type": "event",
            "sequence": 1,
            "kind": "ROOM_CHANGED",
            "room_id": "1-1-01",
            "new_status": "SELECTED",
            "new_owner_id": "user1",
            "new_version": 2,
        }


def test_websocket_rejects_unknown_token(tmp_path):
    app = _build_test_app(tmp_path)
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/rooms?token=bogus") as websocket:
                websocket.receive_json()


def test_inventory_admin_endpoints(tmp_path):
    app = _build_test_app(tmp_path)
    with TestClient(app) as client:
        admin = _login(client, "admin", ADMIN_SECRET)

        generated = client.post(
            "/admin/inventory/generate",
            json={
                "building_count": 1,
                "floors_per_building": 2,
                "rooms_per_floor": 3,
                "base_area": 88,
                "building_prefix": "B",
            },
            headers=admin,
        )
        assert generated.json() == {"room_count": 6}

        bad_prefix = client.post(
            "/admin/inventory/generate",
            json={"building_count": 1, "floors_per_building": 1, "rooms_per_floor": 1,
                  "base_area": 88, "building_prefix": "B-"},
            headers=admin,
        )
        assert bad_prefix.status_code == 422

        exported = client.get("/admin/inventory/export", headers=admin)
        assert exported.status_code == 200
        assert "filename*=UTF-8''" in exported.headers["content-disposition"]
        assert exported.content.startswith(b"\xef\xbb\xbf")
        assert exported.content.count(b"\n") == 7

        rejected = client.post(
            "/admin/inventory/import",
            content="ID,楼栋,楼层,房号,面积,状态\nX-1-01,X,0,101,90,AVAILABLE\n".encode("utf-8"),
            headers={**admin, "Content-Type": "text/csv"},
        )
        assert rejected.status_code == 422
        assert rejected.json()["detail"]["kind"] == "ValidationError"
        assert rejected.json()["detail"]["problems"][0].startswith("line 2:")

        reimported = client.post(
            "/admin/inventory/import",
            content=exported.content,
            headers={**admin, "Content-Type": "text/csv"},
        )
        assert reimported.json() == {"room_count": 6}

        assert client.post("/admin/inventory/special", headers=admin).json() == {"room_count": 1292}

        reset = client.post("/admin/reset", headers=admin).json()
        assert len(reset["rooms"]) == 1292
        assert {user["id"] for user in reset["users"]} == {"admin", "user1"}


def test_user_admin_endpoints(tmp_path):
    app = _build_test_app(tmp_path)
    with TestClient(app) as client:
        admin = _login(client, "admin", ADMIN_SECRET)

        created = client.post(
            "/admin/users",
            json={"name": "李四", "phone": "13700000000", "max_selections": 2},
            headers=admin,
        )
        assert created.status_code == 201
        new_id = created.json()["id"]
        assert new_id.startswith("u-")

        duplicate = client.post(
            "/admin/users",
            json={"id": "user1", "name": "重复"},
            headers=admin,
        )
        assert duplicate.status_code == 422

        exported = client.get("/admin/users/export", headers=admin)
        assert exported.status_code == 200
        frame = pd.read_excel(io.BytesIO(exported.content), dtype=str)
        assert list(frame.columns) == ["客户姓名", "电话号码", "限购数量", "是否管理员", "系统ID"]
        assert set(frame["系统ID"]) == {"admin", "user1", new_id}

        kept = frame[frame["系统ID"] != new_id]
        buffer = io.BytesIO()
        kept.to_excel(buffer, index=False, engine="openpyxl")
        imported = client.post(
            "/admin/users/import",
            content=buffer.getvalue(),
            headers={**admin, "Content-Type": "application/octet-stream"},
        )
        assert imported.json() == {"user_count": 2}
        ids = {user["id"] for user in client.get("/admin/users", headers=admin).json()}
        assert ids == {"admin", "user1"}


def test_malformed_uploads_are_rejected_without_changes(tmp_path):
    app = _build_test_app(tmp_path)
    with TestClient(app) as client:
        admin = _login(client, "admin", ADMIN_SECRET)
        rooms_before = client.get("/snapshot", headers=admin).json()["rooms"]

        for area in ("inf", "nan"):
            rejected = client.post(
                "/admin/inventory/import",
                content=f"ID,楼栋,楼层,房号,面积,状态\n1-1-01,1,1,101,{area},AVAILABLE\n".encode("utf-8"),
                headers={**admin, "Content-Type": "text/csv"},
            )
            assert rejected.status_code == 422
            assert rejected.json()["detail"]["kind"] == "ValidationError"
            assert "finite" in rejected.json()["detail"]["problems"][0]

        for body in (b"not a workbook", b""):
            rejected = client.post(
                "/admin/users/import",
                content=body,
                headers={**admin, "Content-Type": "application/octet-stream"},
            )
            assert rejected.status_code == 422
            assert rejected.json()["detail"]["problems"][0].startswith("unreadable spreadsheet")

        assert client.get("/snapshot", headers=admin).json()["rooms"] == rooms_before
        assert {user["id"] for user in client.get("/admin/users", headers=admin).json()} == {"admin", "user1"}
