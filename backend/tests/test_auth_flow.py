from __future__ import annotations

from cardsync.services import refresh_cookie


def _set_cookie_header(res) -> str:
    return res.headers.get("set-cookie", "")


def test_auth_register_login_refresh_logout(client):
    email = "NewUser@Example.com"
    password = "derived-credential-123"

    res = client.post("/auth/register", json={"email": email, "password": password})
    assert res.status_code == 201
    assert res.json()["email"] == "newuser@example.com"

    # Login should set refresh cookie and return access token
    res2 = client.post("/auth/login", json={"email": "newuser@example.com", "password": password})
    assert res2.status_code == 200
    body = res2.json()
    assert isinstance(body.get("access_token"), str) and body["access_token"]
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 3600
    assert "refresh_token" not in body

    # Refresh should rotate and return a new access token
    res3 = client.post("/auth/refresh")
    assert res3.status_code == 200
    assert res3.json()["access_token"] != body["access_token"]

    # Logout clears cookie
    res4 = client.post("/auth/logout", headers={"Authorization": f"Bearer {res3.json()['access_token']}"})
    assert res4.status_code == 200
    assert res4.json()["message"] == "Logged out"


def test_refresh_cookie_attributes(client, users, password):
    res = client.post("/auth/login", json={"email": users[0].email, "password": password})
    assert res.status_code == 200

    cookie = _set_cookie_header(res)
    assert cookie.startswith(f"{refresh_cookie.cookie_name()}=")
    assert "HttpOnly" in cookie
    assert "SameSite=strict" in cookie
    assert "Path=/auth" in cookie
    assert f"Max-Age={30 * 24 * 3600}" in cookie


def test_logout_clears_cookie_with_same_attributes(client, login):
    headers = login()
    res = client.post("/auth/logout", headers=headers)

    cookie = _set_cookie_header(res)
    assert "Max-Age=0" in cookie
    assert "HttpOnly" in cookie
    assert "Path=/auth" in cookie


def test_auth_refresh_missing_cookie_is_401(client):
    # Clear cookies for this client session
    client.cookies.clear()
    res = client.post("/auth/refresh")
    assert res.status_code == 401
    assert res.headers.get("www-authenticate") == "Bearer"


def test_login_failures_share_one_response(client, users):
    wrong_password = client.post("/auth/login", json={"email": users[0].email, "password": "nope-nope-nope"})
    unknown_email = client.post("/auth/login", json={"email": "ghost@example.com", "password": "nope-nope-nope"})

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json()


def test_rotated_refresh_cookie_replay_kills_family(client, login):
    login()
    cookie_key = refresh_cookie.cookie_name()
    old_cookie = client.cookies.get(cookie_key)
    assert isinstance(old_cookie, str) and old_cookie

    # Refresh rotates
    res = client.post("/auth/refresh")
    assert res.status_code == 200
    new_cookie = client.cookies.get(cookie_key)
    assert new_cookie and new_cookie != old_cookie

    # Put back the old cookie => reuse, and the replay looks like any other bad token
    client.cookies.clear()
    client.cookies.set(cookie_key, old_cookie, path=refresh_cookie.cookie_path())
    replay = client.post("/auth/refresh")
    assert replay.status_code == 401

    client.cookies.clear()
    client.cookies.set(cookie_key, "garbage", path=refresh_cookie.cookie_path())
    assert client.post("/auth/refresh").json() == replay.json()

    # The legitimate successor was revoked with the family
    client.cookies.clear()
    client.cookies.set(cookie_key, new_cookie, path=refresh_cookie.cookie_path())
    assert client.post("/auth/refresh").status_code == 401


def test_logout_blacklists_access_token(client, login):
    headers = login()
    assert client.get("/auth/devices", headers=headers).status_code == 200

    assert client.post("/auth/logout", headers=headers).status_code == 200

    assert client.get("/auth/devices", headers=headers).status_code == 401
    assert client.post("/auth/refresh").status_code == 401


def test_logout_without_credentials_still_succeeds(client):
    client.cookies.clear()
    res = client.post("/auth/logout")
    assert res.status_code == 200


def test_logout_all_invalidates_every_session(client, login):
    first = login()
    first_cookie = client.cookies.get(refresh_cookie.cookie_name())
    second = login()

    res = client.post("/auth/logout-all", headers=second)
    assert res.status_code == 200

    assert client.get("/auth/devices", headers=first).status_code == 401
    assert client.get("/auth/devices", headers=second).status_code == 401

    client.cookies.clear()
    client.cookies.set(refresh_cookie.cookie_name(), first_cookie, path=refresh_cookie.cookie_path())
    assert client.post("/auth/refresh").status_code == 401

    # Logging in again afterwards works.
    fresh = login()
    assert client.get("/auth/devices", headers=fresh).status_code == 200


def test_logout_all_requires_bearer(client):
    assert client.post("/auth/logout-all").status_code == 401


def test_register_duplicate_email_is_generic_400(client, users):
    res = client.post("/auth/register", json={"email": users[0].email.upper(), "password": "another-password"})
    assert res.status_code == 400
    assert res.json()["message"] == "Registration failed"


# -----------------------------
# Devices
# -----------------------------
def test_device_register_list_and_remove(client, login):
    headers = login()

    res = client.post("/auth/device/register", json={"deviceId": "browser-1", "name": "Laptop"}, headers=headers)
    assert res.status_code == 200
    assert res.json()["deviceId"] == "browser-1"

    # Re-registering the same device updates it instead of duplicating.
    res2 = client.post("/auth/device/register", json={"deviceId": "browser-1", "name": "Work laptop"}, headers=headers)
    assert res2.status_code == 200

    listed = client.get("/auth/devices", headers=headers).json()
    assert [(d["deviceId"], d["name"]) for d in listed] == [("browser-1", "Work laptop")]

    assert client.delete("/auth/device/browser-1", headers=headers).status_code == 200
    assert client.get("/auth/devices", headers=headers).json() == []


def test_devices_are_isolated_between_users(client, users, login):
    mine = login(users[0])
    theirs = login(users[1])

    assert client.post("/auth/device/register", json={"deviceId": "shared", "name": "A"}, headers=mine).status_code == 200

    conflict = client.post("/auth/device/register", json={"deviceId": "shared", "name": "B"}, headers=theirs)
    assert conflict.status_code == 409
    assert client.delete("/auth/device/shared", headers=theirs).status_code == 404
    assert client.get("/auth/devices", headers=theirs).json() == []
