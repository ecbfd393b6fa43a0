from pathlib import Path


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["type"] == "terminal-integrated"
    assert body["sessions"] == 0


def test_setup_flow(client, settings):
    assert client.get("/api/auth/setup-status").json() == {"hasUsers": False, "needsSetup": True}

    resp = client.post("/api/auth/setup", json={"username": "admin", "password": "s3cret"})
    assert resp.status_code == 201
    user = resp.json()["user"]
    assert user["username"] == "admin"
    assert Path(user["workingDirectory"]) == (Path(settings.HOME_ROOT) / "admin").resolve()
    assert "password" not in user and "password_hash" not in user

    assert client.get("/api/auth/setup-status").json() == {"hasUsers": True, "needsSetup": False}

    again = client.post("/api/auth/setup", json={"username": "mallory", "password": "x"})
    assert again.status_code == 409
    assert again.json()["detail"] == "Setup already completed"


def test_login(client, admin_token, login):
    bad = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid credentials"

    unknown = client.post("/api/auth/login", json={"username": "ghost", "password": "nope"})
    assert unknown.status_code == 401

    resp = client.post("/api/auth/login", json={"username": "admin", "password": "s3cret"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["user"]["username"] == "admin"
    assert resp.cookies.get("auth_token") == body["token"]


def test_session_requires_token(client, admin_token):
    resp = client.get("/api/auth/session")
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Authentication required"

    resp = client.get("/api/auth/session", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Invalid or expired token"


def test_session_with_bearer_token(client, auth_headers):
    resp = client.get("/api/auth/session", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "admin"


def test_session_with_cookie(client, admin_token, login):
    login(client, "admin", "s3cret")
    resp = client.get("/api/auth/session")
    assert resp.status_code == 200
    assert resp.json()["user"]["username"] == "admin"

    client.post("/api/auth/logout")
    client.cookies.clear()
    assert client.get("/api/auth/session").status_code == 401


def test_validate(client, auth_headers):
    resp = client.post("/api/auth/validate", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["valid"] is True
    assert client.post("/api/auth/validate").status_code == 401


def test_create_and_list_users(client, auth_headers, tmp_path):
    target = tmp_path / "work" / "bob"
    resp = client.post(
        "/api/auth/users",
        json={"username": "bob", "password": "pw", "workingDirectory": str(target), "geminiApiKey": "k-7"},
        headers=auth_headers,
    )
    assert resp.status_code == 201
    created = resp.json()["user"]
    assert created["workingDirectory"] == str(target.resolve())
    assert created["hasApiKey"] is True
    assert target.is_dir()

    dup = client.post("/api/auth/users", json={"username": "bob", "password": "pw2"}, headers=auth_headers)
    assert dup.status_code == 409

    listed = client.get("/api/auth/users", headers=auth_headers).json()["users"]
    assert sorted(u["username"] for u in listed) == ["admin", "bob"]
    assert all("k-7" not in u.values() for u in listed)


def test_create_user_requires_session(client, admin_token):
    resp = client.post("/api/auth/users", json={"username": "bob", "password": "pw"})
    assert resp.status_code == 401


def test_invalid_username_is_rejected(client, auth_headers):
    resp = client.post("/api/auth/users", json={"username": "../evil", "password": "pw"}, headers=auth_headers)
    assert resp.status_code == 422


def test_corrupt_registry_is_unavailable(client, settings):
    path = Path(settings.REGISTRY_PATH)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"garbage " * 256)

    assert client.get("/api/auth/setup-status").status_code == 503
    resp = client.post("/api/auth/setup", json={"username": "admin", "password": "pw"})
    assert resp.status_code == 503
    assert resp.json()["detail"] == "User registry unavailable"
