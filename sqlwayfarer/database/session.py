"""
Connection session: connection strings and the single active handle
"""

import asyncio
import re
from typing import Any, Mapping, Optional, Union

from sqlwayfarer.core.constants import (
    ConnectionStatus,
    MSG_CONNECTED,
    MSG_DISCONNECTED,
    MSG_NOT_CONNECTED,
    MSG_TEST_OK,
)
from sqlwayfarer.core.exceptions import (
    WayfarerError,
    CredentialNotFoundError,
    DriverConnectError,
    NoActiveConnectionError,
    NotFoundError,
)
from sqlwayfarer.core.logger import get_logger
from sqlwayfarer.database.driver import ConnectionHandle, DatabaseDriver, SqlServerDriver
from sqlwayfarer.models.connection_profile import ConnectionProfile, ConnectionConfig
from sqlwayfarer.models.results import OperationResult, QueryResult
from sqlwayfarer.services.credential_store import CredentialStore

logger = get_logger('database.session')

ConfigInput = Union[ConnectionConfig, ConnectionProfile, dict]

_PASSWORD_PATTERN = re.compile(
    r'((?:password|pwd)\s*=\s*)(?:"(?:[^"]|"")*"|\{(?:[^}]|\}\})*\}|[^;]*)',
    re.IGNORECASE,
)


class ConnectionSession:
    """
    Owns at most one live database connection

    Lifecycle operations (connect, disconnect, test, dispose) report
    failures as OperationResult values and are serialized by a per-session
    lock, so two overlapping connects cannot both install a handle. Query
    operations raise, and are serialized on their own lock because a pyodbc
    connection does not accept concurrent requests.

    The active handle is detached before it is closed: once this session
    starts closing a handle, get_active_connection() no longer returns it.
    The close itself waits on the query lock, so a query already running on
    the handle finishes first. Locks are always taken lifecycle first, then
    query.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        driver: Optional[DatabaseDriver] = None,
    ):
        self._credential_store = credential_store
        self._driver = driver or SqlServerDriver()
        self._active: Optional[ConnectionHandle] = None
        self._status = ConnectionStatus.DISCONNECTED
        self._lifecycle_lock = asyncio.Lock()
        self._query_lock = asyncio.Lock()

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def is_connected(self) -> bool:
        return self._active is not None

    def get_active_connection(self) -> Optional[ConnectionHandle]:
        """Raw handle for query dispatch by collaborators, None if disconnected"""
        return self._active

    # === Connection strings ===

    async def build_connection_string(self, config: ConfigInput) -> str:
        """
        Build a connection string, filling the password from secure storage
        when the config omits it

        Raises:
            CredentialNotFoundError: If a loaded (saved) connection has no
                stored password
        """
        connection_string, _ = await self._build(ConnectionConfig.coerce(config))
        return connection_string

    async def _build(self, config: ConnectionConfig) -> tuple[str, str]:
        if config.use_connection_string:
            return config.connection_string or "", config.password_value()

        password = await self._resolve_password(config)

        connection_string = f"Server={config.server}"
        if config.port:
            connection_string += f",{config.port}"
        if config.database:
            connection_string += f";Database={config.database}"

        if config.username and password:
            connection_string += f";User Id={_ado_value(config.username)};Password={_ado_value(password)}"
        else:
            connection_string += ";Integrated Security=true"

        if config.encrypt is not None:
            connection_string += f";Encrypt={_bool_text(config.encrypt)}"
        if config.trust_server_certificate is not None:
            connection_string += f";TrustServerCertificate={_bool_text(config.trust_server_certificate)}"

        return connection_string, password

    async def _resolve_password(self, config: ConnectionConfig) -> str:
        password = config.password_value()
        if password or not config.name:
            return password

        # An explicit empty password counts as absent
        stored = await self._credential_store.get_connection_password(config.name)
        if stored:
            return stored
        if config.is_loaded_connection:
            raise CredentialNotFoundError("Password not found in secure storage", name=config.name)
        return ""

    # === Lifecycle ===

    async def test_connection(self, config: ConfigInput) -> OperationResult:
        """Open and immediately close a throwaway connection"""
        async with self._lifecycle_lock:
            secret = ""
            try:
                config = ConnectionConfig.coerce(config)
                connection_string, secret = await self._build(config)
                handle = await self._driver.connect(connection_string)
                await handle.close()
            except Exception as e:
                message = _redact(_error_message(e), secret)
                logger.info(f"Connection test failed for {_describe(config)}: {message}")
                return OperationResult.fail(f"Connection test failed: {message}", _as_error(e, message))

        logger.info(f"Connection test succeeded for {_describe(config)}")
        return OperationResult.ok(MSG_TEST_OK)

    async def connect(self, config: ConfigInput) -> OperationResult:
        """Close any active connection, then open and keep a new one"""
        async with self._lifecycle_lock:
            return await self._connect(config)

    async def _connect(self, config: ConfigInput) -> OperationResult:
        self._status = ConnectionStatus.CONNECTING
        await self._release_active("reconnect")

        secret = ""
        try:
            config = ConnectionConfig.coerce(config)
            connection_string, secret = await self._build(config)
            handle = await self._driver.connect(connection_string)
        except Exception as e:
            self._active = None
            self._status = ConnectionStatus.DISCONNECTED
            message = _redact(_error_message(e), secret)
            logger.error(f"Connection failed for {_describe(config)}: {message}")
            return OperationResult.fail(f"Connection failed: {message}", _as_error(e, message))

        self._active = handle
        self._status = ConnectionStatus.CONNECTED
        logger.info(f"Connected to {_describe(config)}")
        return OperationResult.ok(MSG_CONNECTED)

    async def connect_with_saved(self, name: str) -> OperationResult:
        """Connect using a saved profile and its stored password"""
        async with self._lifecycle_lock:
            profile = self._credential_store.get_connection(name)
            if profile is None:
                error = NotFoundError(f"Connection '{name}' not found", name=name)
                return OperationResult.fail(
                    f"Failed to connect with saved connection: {error.message}", error
                )

            password = await self._credential_store.get_connection_password(name)
            if not password:
                error = CredentialNotFoundError(f"Password not found for connection '{name}'", name=name)
                return OperationResult.fail(
                    f"Failed to connect with saved connection: {error.message}", error
                )

            config = ConnectionConfig.from_profile(profile, password=password, is_loaded_connection=True)
            return await self._connect(config)

    async def disconnect(self) -> OperationResult:
        """Close the active connection; succeeds when there is none"""
        async with self._lifecycle_lock:
            handle = self._active
            if handle is None:
                self._status = ConnectionStatus.DISCONNECTED
                return OperationResult.ok(MSG_NOT_CONNECTED)

            self._active = None
            self._status = ConnectionStatus.DISCONNECTED
            try:
                await self._close_handle(handle)
            except Exception as e:
                message = _error_message(e)
                logger.error(f"Disconnect failed: {message}")
                return OperationResult.fail(f"Disconnect failed: {message}", _as_error(e, message))

        logger.info("Disconnected")
        return OperationResult.ok(MSG_DISCONNECTED)

    async def dispose(self) -> None:
        """Scoped teardown; never raises"""
        async with self._lifecycle_lock:
            handle = self._active
            self._active = None
            self._status = ConnectionStatus.DISCONNECTED
            if handle is None:
                return
            try:
                await self._close_handle(handle)
            except Exception as e:
                logger.error(f"Error closing connection during dispose: {e}")

    async def _release_active(self, reason: str) -> None:
        handle = self._active
        if handle is None:
            return
        self._active = None
        try:
            await self._close_handle(handle)
        except Exception as e:
            # Superseded by the new connect attempt
            logger.warning(f"Failed to close previous connection before {reason}: {e}")

    async def _close_handle(self, handle: ConnectionHandle) -> None:
        async with self._query_lock:
            await handle.close()

    # === Queries ===

    async def execute_query(self, text: str) -> QueryResult:
        """
        Execute a query on the active connection

        Raises:
            NoActiveConnectionError: If not connected
            DriverQueryError: If the query fails
        """
        async with self._query_lock:
            handle = self._require_active()
            return await handle.request().query(text)

    async def execute_prepared_query(
        self,
        text: str,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> QueryResult:
        """
        Execute a parameterized query on the active connection

        Each entry of ``parameters`` is bound as a named input, in the
        mapping's insertion order, before the query runs.
        """
        async with self._query_lock:
            request = self._require_active().request()
            for name, value in (parameters or {}).items():
                request.input(name, value)
            return await request.query(text)

    def _require_active(self) -> ConnectionHandle:
        handle = self._active
        if handle is None:
            raise NoActiveConnectionError()
        return handle

    # === Display ===

    def get_connection_for_display(self, name: str) -> Optional[ConnectionProfile]:
        """Saved profile for form population; never carries a password"""
        return self._credential_store.get_connection(name)

    async def __aenter__(self) -> 'ConnectionSession':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.dispose()
        return False


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def _error_message(exc: Exception) -> str:
    if isinstance(exc, WayfarerError):
        return exc.message
    return str(exc)


def _as_error(exc: Exception, message: str) -> WayfarerError:
    if isinstance(exc, WayfarerError) and exc.message == message:
        return exc
    return DriverConnectError(message)


def _ado_value(value: str) -> str:
    """Double-quote values the connection string would otherwise split"""
    if any(ch in value for ch in ';{}"\'') or value != value.strip():
        return '"' + value.replace('"', '""') + '"'
    return value


def _redact(message: str, secret: str) -> str:
    """Mask any password keyword value and the resolved password as a whole token"""
    if secret:
        message = re.sub(rf'(?<!\w){re.escape(secret)}(?!\w)', "***", message)
    return _PASSWORD_PATTERN.sub(lambda m: f"{m.group(1)}***", message)


def _describe(config: Any) -> str:
    if isinstance(config, ConnectionConfig):
        if config.use_connection_string:
            return f"'{config.name or 'connection string'}'"
        target = config.server or "(no server)"
        if config.database:
            target += f"/{config.database}"
        return f"'{config.name}' ({target})" if config.name else target
    return "connection"
