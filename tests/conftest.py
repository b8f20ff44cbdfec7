"""Shared fixtures: in-memory storage media and a recording fake driver."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import anyio
import pytest

from sqlwayfarer.core import config as config_module
from sqlwayfarer.core.exceptions import DriverConnectError, DriverQueryError, StorageReadError, StorageWriteError
from sqlwayfarer.database.session import ConnectionSession
from sqlwayfarer.models.results import QueryResult
from sqlwayfarer.services.credential_store import CredentialStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SQLWAYFARER_HOME", str(tmp_path / "home"))
    monkeypatch.setattr(config_module, "_settings", None)


class MemoryStorage:
    """Dict-backed medium with switchable failures."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(data or {})
        self.fail_reads = False
        self.fail_writes_for: set[str] = set()
        self.fail_deletes = False
        self.calls: list[tuple[str, str]] = []

    async def get(self, key: str) -> str | None:
        self.calls.append(("get", key))
        if self.fail_reads:
            raise StorageReadError("medium unavailable", key=key)
        return self.data.get(key)

    async def store(self, key: str, value: str) -> None:
        self.calls.append(("store", key))
        if key in self.fail_writes_for or "*" in self.fail_writes_for:
            raise StorageWriteError("disk full", key=key)
        self.data[key] = value

    async def delete(self, key: str) -> None:
        self.calls.append(("delete", key))
        if self.fail_deletes:
            raise StorageWriteError("medium locked", key=key)
        self.data.pop(key, None)


class FakeRequest:
    def __init__(self, handle: "FakeHandle") -> None:
        self._handle = handle
        self.inputs: dict[str, Any] = {}

    def input(self, name: str, value: Any) -> "FakeRequest":
        self.inputs[name] = value
        return self

    async def query(self, text: str) -> QueryResult:
        driver = self._handle.driver
        driver.queries.append((self._handle, text, list(self.inputs.items())))
        driver.events.append("query-start")
        if driver.query_delay:
            await anyio.sleep(driver.query_delay)
        driver.events.append(f"query-end closed={self._handle.closed}")
        if self._handle.closed:
            raise DriverQueryError("Connection is closed", query=text)
        if driver.query_error:
            raise DriverQueryError(driver.query_error, query=text)
        return QueryResult(columns=("value",), rows=[{"value": 1}], rowcount=1)


class FakeHandle:
    def __init__(self, driver: "FakeDriver", connection_string: str) -> None:
        self.driver = driver
        self.connection_string = connection_string
        self.closed = False

    def request(self) -> FakeRequest:
        return FakeRequest(self)

    async def close(self) -> None:
        self.driver.closes.append(self)
        self.driver.events.append("close")
        if self.closed:
            raise DriverConnectError("Connection already closed")
        self.closed = True
        if self.driver.close_error:
            raise DriverConnectError(self.driver.close_error)


class FakeDriver:
    """Records every open and close; tracks the peak of simultaneously open handles."""

    def __init__(self) -> None:
        self.opened: list[FakeHandle] = []
        self.closes: list[FakeHandle] = []
        self.queries: list[tuple[FakeHandle, str, list[tuple[str, Any]]]] = []
        self.connect_error: str | None = None
        self.close_error: str | None = None
        self.query_error: str | None = None
        self.max_open = 0
        self.connect_delay = 0.0
        self.query_delay = 0.0
        self.events: list[str] = []

    @property
    def open_handles(self) -> list[FakeHandle]:
        return [handle for handle in self.opened if not handle.closed]

    async def connect(self, connection_string: str) -> FakeHandle:
        if self.connect_delay:
            await anyio.sleep(self.connect_delay)
        if self.connect_error:
            raise DriverConnectError(self.connect_error)
        handle = FakeHandle(self, connection_string)
        self.opened.append(handle)
        self.max_open = max(self.max_open, len(self.open_handles))
        return handle


@pytest.fixture
def secrets() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def config_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def store(secrets: MemoryStorage, config_storage: MemoryStorage) -> CredentialStore:
    return CredentialStore(secrets, config_storage, namespace="sqlwayfarer")


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def session(store: CredentialStore, driver: FakeDriver) -> ConnectionSession:
    return ConnectionSession(store, driver=driver)
