import os

# Console-only logging while the suite runs.
os.environ["WARPIO_LOG_DIR"] = ""

import pytest
from fastapi.testclient import TestClient

from warpio_gateway.core.tokens import SessionTokens
from warpio_gateway.db import UserRegistry
from warpio_gateway.models.user import SessionClaims
from warpio_gateway.services.user_service import UserService
from warpio_gateway.utils.config import Settings


@pytest.fixture
def settings(tmp_path):
    return Settings(
        REGISTRY_PATH=str(tmp_path / "storage" / "users.db"),
        HOME_ROOT=str(tmp_path / "homes"),
        SESSION_SECRET="test-secret",
        LOG_DIR="",
        TOOL_DISCOVERY="static",
        DEFAULT_TOOLS=[],
        MCP_SERVERS="",
        TERMINAL_COMMAND="/bin/cat",
        TERMINAL_ARGS="",
        STARTUP_NOTICE_INTERVAL=0,
        UPLOAD_MAX_BYTES=1024,
    )


@pytest.fixture
def user_service(tmp_path):
    return UserService(UserRegistry(str(tmp_path / "users.db")), home_root=str(tmp_path / "homes"))


@pytest.fixture
def tokens():
    return SessionTokens(b"unit-test-secret", ttl_seconds=3600)


@pytest.fixture
def claims(tmp_path):
    home = tmp_path / "alice"
    home.mkdir()
    return SessionClaims(user_id="user-abc", username="alice", working_directory=str(home), api_key="k-123")


@pytest.fixture
def client(settings):
    from warpio_gateway.main import create_app

    with TestClient(create_app(settings)) as test_client:
        yield test_client


def _login(client, username, password):
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


@pytest.fixture
def admin_token(client):
    resp = client.post("/api/auth/setup", json={"username": "admin", "password": "s3cret"})
    assert resp.status_code == 201, resp.text
    token = _login(client, "admin", "s3cret")
    # Tests authenticate explicitly; drop the cookie set by login.
    client.cookies.clear()
    return token


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def login():
    return _login

