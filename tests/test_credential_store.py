"""Tests for the credential store."""

from __future__ import annotations

import json

import pytest

from sqlwayfarer.core.exceptions import NotFoundError, StorageReadError, StorageWriteError, ValidationError
from sqlwayfarer.models.connection_profile import ConnectionConfig, ConnectionProfile
from sqlwayfarer.services.credential_store import CredentialStore

from .conftest import MemoryStorage

CONNECTIONS_KEY = "sqlwayfarer.connections"


@pytest.mark.anyio
async def test_save_redirects_password_to_secret_medium(
    store: CredentialStore, secrets: MemoryStorage, config_storage: MemoryStorage
) -> None:
    result = await store.save_connection({"name": "A", "password": "p", "server": "s"})

    assert result.success
    assert result.message == "Connection 'A' saved successfully!"
    assert await store.get_connection_password("A") == "p"
    assert secrets.data["sqlwayfarer.password.A"] == "p"

    profile = store.get_connection("A")
    assert profile is not None
    assert not hasattr(profile, "password")
    assert "password" not in profile.to_dict()

    persisted = json.loads(config_storage.data[CONNECTIONS_KEY])
    assert persisted == {"A": {"name": "A", "server": "s", "useConnectionString": False}}


@pytest.mark.anyio
async def test_saved_profiles_never_expose_passwords(store: CredentialStore) -> None:
    for index in range(3):
        await store.save_connection(
            ConnectionConfig(name=f"db{index}", server="host", username="sa", password=f"secret{index}")
        )

    for profile in store.get_saved_connections():
        assert "password" not in profile.model_dump()
        assert "secret" not in profile.model_dump_json()


@pytest.mark.anyio
async def test_save_without_password_writes_no_secret(store: CredentialStore, secrets: MemoryStorage) -> None:
    result = await store.save_connection({"name": "trusted", "server": "host", "password": ""})

    assert result.success
    assert secrets.calls == []
    assert await store.get_connection_password("trusted") is None


@pytest.mark.anyio
async def test_save_requires_name_before_any_io(
    store: CredentialStore, secrets: MemoryStorage, config_storage: MemoryStorage
) -> None:
    result = await store.save_connection({"name": "  ", "server": "host", "password": "pw"})

    assert not result.success
    assert result.message == "Failed to save connection: Connection name is required"
    assert isinstance(result.error, ValidationError)
    assert secrets.calls == []
    assert config_storage.calls == []


@pytest.mark.anyio
async def test_resave_overwrites_in_place(store: CredentialStore) -> None:
    await store.save_connection({"name": "first", "server": "a", "password": "one"})
    await store.save_connection({"name": "second", "server": "b"})
    await store.save_connection({"name": "first", "server": "c", "password": "two"})

    assert [p.name for p in store.get_saved_connections()] == ["first", "second"]
    assert store.get_connection("first").server == "c"
    assert await store.get_connection_password("first") == "two"
    assert store.get_connection_count() == 2


@pytest.mark.anyio
async def test_registry_write_failure_is_reported_and_rolled_back(
    store: CredentialStore, config_storage: MemoryStorage
) -> None:
    await store.save_connection({"name": "kept", "server": "a"})
    config_storage.fail_writes_for.add(CONNECTIONS_KEY)

    result = await store.save_connection({"name": "lost", "server": "b"})

    assert not result.success
    assert result.message == "Failed to save connection: disk full"
    assert isinstance(result.error, StorageWriteError)
    assert not store.has_connection("lost")
    assert store.has_connection("kept")


@pytest.mark.anyio
async def test_secret_write_failure_keeps_profile_out_of_registry(
    store: CredentialStore, secrets: MemoryStorage, config_storage: MemoryStorage
) -> None:
    secrets.fail_writes_for.add("*")

    result = await store.save_connection({"name": "A", "server": "s", "password": "p"})

    assert not result.success
    assert isinstance(result.error, StorageWriteError)
    assert not store.has_connection("A")
    assert CONNECTIONS_KEY not in config_storage.data


@pytest.mark.anyio
async def test_delete_removes_profile_and_secret(store: CredentialStore, secrets: MemoryStorage) -> None:
    await store.save_connection({"name": "A", "password": "p", "server": "s"})

    result = await store.delete_connection("A")

    assert result.success
    assert result.message == "Connection 'A' deleted successfully!"
    assert store.has_connection("A") is False
    assert await store.get_connection_password("A") is None
    assert "sqlwayfarer.password.A" not in secrets.data


@pytest.mark.anyio
async def test_delete_unknown_connection_is_not_found(store: CredentialStore) -> None:
    result = await store.delete_connection("missing")

    assert not result.success
    assert result.message == "Failed to delete connection: Connection 'missing' not found"
    assert isinstance(result.error, NotFoundError)


@pytest.mark.anyio
async def test_delete_tolerates_secret_medium_failure(store: CredentialStore, secrets: MemoryStorage) -> None:
    await store.save_connection({"name": "A", "server": "s"})
    secrets.fail_deletes = True

    result = await store.delete_connection("A")

    assert result.success
    assert not store.has_connection("A")


@pytest.mark.anyio
async def test_initialize_loads_persisted_registry(secrets: MemoryStorage) -> None:
    payload = {
        "prod": {"name": "prod", "server": "db01", "port": "1433", "username": "app", "encrypt": True},
        "local": {"server": "localhost", "trustServerCertificate": True},
    }
    config_storage = MemoryStorage({CONNECTIONS_KEY: json.dumps(payload)})
    store = CredentialStore(secrets, config_storage, namespace="sqlwayfarer")

    await store.initialize()

    assert [p.name for p in store.get_saved_connections()] == ["prod", "local"]
    local = store.get_connection("local")
    assert local == ConnectionProfile(name="local", server="localhost", trust_server_certificate=True)
    assert store.get_connection("prod").encrypt is True


@pytest.mark.anyio
async def test_initialize_drops_stray_passwords_from_payload(secrets: MemoryStorage) -> None:
    payload = {"old": {"server": "db", "password": "leaked"}}
    store = CredentialStore(secrets, MemoryStorage({CONNECTIONS_KEY: json.dumps(payload)}), namespace="sqlwayfarer")

    await store.initialize()

    assert "leaked" not in store.get_connection("old").model_dump_json()


@pytest.mark.anyio
@pytest.mark.parametrize("payload", ["{not json", "[1, 2]", '{"x": 5}', '{"x": {"port": [1]}}'])
async def test_initialize_rejects_malformed_payload(secrets: MemoryStorage, payload: str) -> None:
    store = CredentialStore(secrets, MemoryStorage({CONNECTIONS_KEY: payload}), namespace="sqlwayfarer")

    with pytest.raises(StorageReadError):
        await store.initialize()

    assert store.get_connection_count() == 0


@pytest.mark.anyio
async def test_initialize_reports_unreadable_medium(secrets: MemoryStorage) -> None:
    config_storage = MemoryStorage({CONNECTIONS_KEY: json.dumps({"a": {"server": "s"}})})
    config_storage.fail_reads = True
    store = CredentialStore(secrets, config_storage, namespace="sqlwayfarer")

    with pytest.raises(StorageReadError):
        await store.initialize()

    assert store.get_saved_connections() == []


@pytest.mark.anyio
async def test_missing_secret_read_failure_returns_none(store: CredentialStore, secrets: MemoryStorage) -> None:
    await store.save_connection({"name": "A", "server": "s", "password": "p"})
    secrets.fail_reads = True

    assert await store.get_connection_password("A") is None
    assert await store.has_password("A") is False


@pytest.mark.anyio
async def test_clear_all_connections(store: CredentialStore, secrets: MemoryStorage, config_storage: MemoryStorage) -> None:
    await store.save_connection({"name": "A", "server": "s", "password": "p"})
    await store.save_connection({"name": "B", "server": "s", "password": "q"})

    result = await store.clear_all_connections()

    assert result.success
    assert store.get_connection_count() == 0
    assert secrets.data == {}
    assert json.loads(config_storage.data[CONNECTIONS_KEY]) == {}


@pytest.mark.anyio
async def test_single_medium_keeps_keyspaces_apart(secrets: MemoryStorage) -> None:
    store = CredentialStore(secrets, namespace="custom")

    await store.save_connection({"name": "A", "server": "s", "password": "p"})

    assert set(secrets.data) == {"custom.password.A", "custom.connections"}
    assert "p" not in json.loads(secrets.data["custom.connections"])["A"].values()


@pytest.mark.anyio
async def test_returned_profiles_are_copies(store: CredentialStore) -> None:
    await store.save_connection({"name": "A", "server": "s"})

    profile = store.get_connection("A")
    profile.server = "changed"

    assert store.get_connection("A").server == "s"


@pytest.mark.anyio
async def test_failed_resave_restores_previous_password(
    store: CredentialStore, config_storage: MemoryStorage
) -> None:
    await store.save_connection({"name": "A", "server": "s", "password": "old"})
    config_storage.fail_writes_for.add(CONNECTIONS_KEY)

    result = await store.save_connection({"name": "A", "server": "s", "password": "new"})

    assert not result.success
    assert await store.get_connection_password("A") == "old"


@pytest.mark.anyio
async def test_failed_first_save_removes_new_password(
    store: CredentialStore, secrets: MemoryStorage, config_storage: MemoryStorage
) -> None:
    config_storage.fail_writes_for.add(CONNECTIONS_KEY)

    result = await store.save_connection({"name": "A", "server": "s", "password": "p"})

    assert not result.success
    assert "sqlwayfarer.password.A" not in secrets.data
    assert not store.has_connection("A")
