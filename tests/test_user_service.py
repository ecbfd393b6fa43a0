import os

import pytest

from warpio_gateway.db import RegistryError, UserRegistry
from warpio_gateway.models.user import UserCreate
from warpio_gateway.services.user_service import (
    DuplicateUsernameError,
    HomeDirectoryError,
    SetupCompletedError,
    UserService,
)


def test_create_user_prepares_home(user_service, tmp_path):
    user = user_service.create_user(UserCreate(username="alice", password="pw"))
    assert user.id.startswith("user-")
    assert user.home_directory == str((tmp_path / "homes" / "alice").resolve())
    assert os.path.isdir(user.home_directory)
    assert user.has_api_key is False


def test_create_user_with_explicit_home_and_key(user_service, tmp_path):
    target = tmp_path / "projects" / "bob"
    user = user_service.create_user(
        UserCreate(username="bob", password="pw", workingDirectory=str(target), geminiApiKey="k-1")
    )
    assert user.home_directory == str(target.resolve())
    assert target.is_dir()
    assert user.has_api_key is True


def test_duplicate_username_leaves_registry_unchanged(user_service):
    user_service.create_user(UserCreate(username="alice", password="pw"))
    with pytest.raises(DuplicateUsernameError):
        user_service.create_user(UserCreate(username="alice", password="other"))
    users = user_service.list_users()
    assert [u.username for u in users] == ["alice"]
    assert user_service.authenticate("alice", "pw") is not None
    assert user_service.authenticate("alice", "other") is None


def test_unusable_home_is_rejected(user_service, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(HomeDirectoryError):
        user_service.create_user(UserCreate(username="carol", password="pw", workingDirectory=str(blocker)))
    assert user_service.has_any_user() is False


def test_authenticate(user_service):
    created = user_service.create_user(UserCreate(username="alice", password="pw", geminiApiKey="k-9"))

    claims = user_service.authenticate("alice", "pw")
    assert claims.user_id == created.id
    assert claims.working_directory == created.home_directory
    assert claims.api_key == "k-9"

    assert user_service.authenticate("alice", "wrong") is None
    assert user_service.authenticate("nobody", "pw") is None


def test_authenticate_records_last_login(user_service):
    created = user_service.create_user(UserCreate(username="alice", password="pw"))
    assert user_service.get_user(created.id).last_login is None
    user_service.authenticate("alice", "pw")
    assert user_service.get_user(created.id).last_login is not None


def test_password_is_stored_hashed(user_service):
    user_service.create_user(UserCreate(username="alice", password="plain-text"))
    with user_service.registry.connect() as conn:
        stored = conn.execute("SELECT password_hash FROM users").fetchone()[0]
    assert stored != "plain-text"
    assert stored.startswith("$2")


def test_public_record_hides_secrets(user_service):
    user_service.create_user(UserCreate(username="alice", password="pw", geminiApiKey="k-1"))
    dumped = user_service.list_users()[0].model_dump(by_alias=True)
    assert set(dumped) == {"username", "id", "workingDirectory", "hasApiKey", "createdAt", "lastLogin"}
    assert "k-1" not in dumped.values()


def test_first_user_only_once(user_service):
    assert user_service.has_any_user() is False
    user_service.create_first_user(UserCreate(username="root", password="pw"))
    assert user_service.has_any_user() is True
    with pytest.raises(SetupCompletedError):
        user_service.create_first_user(UserCreate(username="second", password="pw"))
    assert [u.username for u in user_service.list_users()] == ["root"]


def test_corrupt_registry_is_an_error_not_empty(tmp_path):
    path = tmp_path / "users.db"
    path.write_bytes(b"this is not a sqlite database " * 64)
    service = UserService(UserRegistry(str(path)), home_root=str(tmp_path / "homes"))

    with pytest.raises(RegistryError):
        service.has_any_user()
    with pytest.raises(RegistryError):
        service.create_first_user(UserCreate(username="intruder", password="pw"))
    with pytest.raises(RegistryError):
        service.authenticate("anyone", "pw")
