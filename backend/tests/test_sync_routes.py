from __future__ import annotations

import json

from cardsync.core.config import settings


def _put(client, headers, version, data=None):
    payload = {"encryptedData": data or {"iv": "aXY=", "data": f"ciphertext-{version}"}, "version": version}
    return client.put("/sync/data", json=payload, headers=headers)


def test_sync_requires_bearer(client):
    assert client.get("/sync/data").status_code == 401
    assert client.put("/sync/data", json={"encryptedData": {}, "version": 1}).status_code == 401


def test_sync_read_before_any_write(client, login):
    headers = login()
    res = client.get("/sync/data", headers=headers)

    assert res.status_code == 200
    assert res.json() == {"encryptedData": None, "version": 0, "updatedAt": None}


def test_sync_write_then_read_uses_camel_case(client, login):
    headers = login()

    res = _put(client, headers, 1, {"iv": "aXY=", "data": "Y2lwaGVy"})
    assert res.status_code == 200
    assert res.json() == {"success": True, "version": 1}

    read = client.get("/sync/data", headers=headers).json()
    assert read["encryptedData"] == {"iv": "aXY=", "data": "Y2lwaGVy"}
    assert read["version"] == 1
    assert read["updatedAt"]


def test_stale_version_returns_409_with_current_version(client, login):
    headers = login()
    assert _put(client, headers, 5).status_code == 200

    res = _put(client, headers, 3)
    assert res.status_code == 409
    assert res.json() == {"error": "CONFLICT", "message": "Version conflict", "currentVersion": 5}

    assert _put(client, headers, 5).status_code == 409
    assert _put(client, headers, 6).status_code == 200
    assert client.get("/sync/data", headers=headers).json()["version"] == 6


def test_version_must_be_positive(client, login):
    headers = login()
    res = _put(client, headers, 0)
    assert res.status_code == 422


def test_oversized_payload_is_413(client, login, monkeypatch):
    headers = login()
    monkeypatch.setattr(settings, "SYNC_MAX_PAYLOAD_BYTES", 256)

    res = _put(client, headers, 1, {"data": "x" * 1024})
    assert res.status_code == 413
    assert res.json()["error"] == "PAYLOAD_TOO_LARGE"
    assert res.json()["details"] == {"max_bytes": 256}

    # Nothing was stored.
    monkeypatch.setattr(settings, "SYNC_MAX_PAYLOAD_BYTES", 1024 * 1024)
    assert client.get("/sync/data", headers=headers).json()["version"] == 0


def test_sync_blobs_are_isolated_between_users(client, users, login):
    mine = login(users[0])
    theirs = login(users[1])

    assert _put(client, mine, 3).status_code == 200
    assert client.get("/sync/data", headers=theirs).json()["version"] == 0
    assert _put(client, theirs, 1).status_code == 200


def test_delete_user_data_resets_sync_and_devices(client, login):
    headers = login()
    _put(client, headers, 4)
    client.post("/auth/device/register", json={"deviceId": "d1", "name": "Phone"}, headers=headers)

    res = client.delete("/user/data", headers=headers)
    assert res.status_code == 200
    assert res.json()["success"] is True

    assert client.get("/sync/data", headers=headers).json()["version"] == 0
    assert client.get("/auth/devices", headers=headers).json() == []

    # The account survives and can sync again from version 1.
    assert _put(client, headers, 1).status_code == 200


def test_export_returns_blob_and_devices(client, login):
    headers = login()
    _put(client, headers, 2, {"data": "payload"})
    client.post("/auth/device/register", json={"deviceId": "d1", "name": "Phone"}, headers=headers)

    res = client.get("/user/export", headers=headers)
    assert res.status_code == 200
    body = res.json()
    assert body["syncData"] == {"data": "payload"}
    assert body["version"] == 2
    assert [d["deviceId"] for d in body["devices"]] == ["d1"]
    assert body["exportedAt"]
    json.dumps(body)
