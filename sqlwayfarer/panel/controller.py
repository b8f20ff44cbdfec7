"""
Message-style request/response surface consumed by the panel UI
"""

from typing import Any, Awaitable, Callable, Dict, Optional, Union

from sqlwayfarer.core.config import Settings, get_settings
from sqlwayfarer.core.constants import PASSWORD_PLACEHOLDER
from sqlwayfarer.core.exceptions import StorageReadError, ValidationError
from sqlwayfarer.core.logger import get_logger
from sqlwayfarer.database.driver import DatabaseDriver, SqlServerDriver
from sqlwayfarer.database.session import ConnectionSession
from sqlwayfarer.models.connection_profile import ConnectionConfig
from sqlwayfarer.models.results import OperationResult
from sqlwayfarer.services.credential_store import CredentialStore, create_credential_store

logger = get_logger('panel.controller')

Message = Dict[str, Any]
Handler = Callable[[Message], Awaitable[Message]]


class PanelController:
    """
    Routes UI messages to the credential store and connection session

    Every request carries a ``command``; every response carries the
    response command the UI listens for. Nothing raised below this layer
    reaches the transport: failures come back as ``success: False`` or as
    an ``error`` message.
    """

    def __init__(self, credential_store: CredentialStore, session: ConnectionSession):
        self.credential_store = credential_store
        self.session = session
        self._handlers: Dict[str, Handler] = {
            'loadConnections': self._handle_load_connections,
            'saveConnection': self._handle_save_connection,
            'deleteConnection': self._handle_delete_connection,
            'testConnection': self._handle_test_connection,
            'connect': self._handle_connect,
            'connectWithSaved': self._handle_connect_with_saved,
            'disconnect': self._handle_disconnect,
            'loadConnectionForDisplay': self._handle_load_connection_for_display,
        }

    @property
    def commands(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    async def start(self) -> Message:
        """Load saved connections; a broken registry is reported, not raised"""
        try:
            await self.credential_store.initialize()
        except StorageReadError as e:
            return _error(e.message)
        except Exception as e:
            logger.exception("Failed to load saved connections")
            return _error(f"Failed to load saved connections: {e}")
        return await self._handle_load_connections({})

    async def handle_message(self, message: Message) -> Message:
        """Dispatch one UI message and return its response"""
        command = message.get('command') if isinstance(message, dict) else None
        handler = self._handlers.get(command) if isinstance(command, str) else None
        if handler is None:
            logger.warning(f"Unknown command: {command}")
            return _error(f"Unknown command: {command}")

        try:
            return await handler(message)
        except Exception as e:
            logger.exception(f"Error processing request '{command}'")
            return _error(f"Error processing request: {e}")

    async def dispose(self) -> None:
        await self.session.dispose()

    # === Handlers ===

    async def _handle_load_connections(self, message: Message) -> Message:
        return {
            'command': 'savedConnectionsLoaded',
            'connections': self._connections_payload(),
        }

    async def _handle_save_connection(self, message: Message) -> Message:
        result = await self.credential_store.save_connection(message.get('connectionConfig') or {})
        return self._with_connections('connectionSaved', result)

    async def _handle_delete_connection(self, message: Message) -> Message:
        result = await self.credential_store.delete_connection(message.get('connectionName') or '')
        return self._with_connections('connectionDeleted', result)

    async def _handle_test_connection(self, message: Message) -> Message:
        config = _form_config(message.get('connectionConfig'))
        if isinstance(config, OperationResult):
            result = OperationResult.fail(f"Connection test failed: {config.message}", config.error)
        else:
            result = await self.session.test_connection(config)
        return {'command': 'testConnectionResult', **result.to_dict()}

    async def _handle_connect(self, message: Message) -> Message:
        config = _form_config(message.get('connectionConfig'))
        if isinstance(config, OperationResult):
            result = OperationResult.fail(f"Connection failed: {config.message}", config.error)
        else:
            result = await self.session.connect(config)
        return self._status(result)

    async def _handle_connect_with_saved(self, message: Message) -> Message:
        result = await self.session.connect_with_saved(message.get('connectionName') or '')
        return self._status(result)

    async def _handle_disconnect(self, message: Message) -> Message:
        result = await self.session.disconnect()
        return self._status(result)

    async def _handle_load_connection_for_display(self, message: Message) -> Message:
        name = message.get('connectionName') or ''
        profile = self.session.get_connection_for_display(name)
        if profile is None:
            return {'command': 'connectionLoadedForDisplay', 'connection': None}

        connection = profile.to_dict()
        connection['password'] = ''
        connection['passwordPlaceholder'] = PASSWORD_PLACEHOLDER
        connection['hasStoredPassword'] = await self.credential_store.has_password(name)
        return {'command': 'connectionLoadedForDisplay', 'connection': connection}

    # === Helpers ===

    def _connections_payload(self) -> list[dict]:
        return [profile.to_dict() for profile in self.credential_store.get_saved_connections()]

    def _status(self, result: OperationResult) -> Message:
        return {'command': 'connectionStatus', **result.to_dict(), 'connected': self.session.is_connected()}

    def _with_connections(self, command: str, result: OperationResult) -> Message:
        response = {'command': command, **result.to_dict()}
        if result.success:
            response['connections'] = self._connections_payload()
        return response


def _form_config(raw: Any) -> Union[ConnectionConfig, OperationResult]:
    """Apply form defaults; an invalid form becomes a failed result"""
    try:
        config = ConnectionConfig.coerce(raw if raw is not None else {})
    except ValidationError as e:
        return OperationResult.fail(e.message, e)
    if config.use_connection_string:
        return config
    return config.with_form_defaults()


def _error(message: str) -> Message:
    return {'command': 'error', 'message': message}


def create_panel_controller(
    settings: Optional[Settings] = None,
    driver: Optional[DatabaseDriver] = None,
) -> PanelController:
    """Wire a controller on the configured storage media and driver"""
    settings = settings or get_settings()
    credential_store = create_credential_store(settings)
    session = ConnectionSession(credential_store, driver=driver or SqlServerDriver(settings.database))
    return PanelController(credential_store, session)
