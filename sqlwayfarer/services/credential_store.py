"""
Secret-isolated persistence of named connection profiles
"""

import asyncio
import json
from typing import Optional, List, Dict, Union

from sqlwayfarer.core.config import Settings, get_settings
from sqlwayfarer.core.constants import CONNECTIONS_KEY, PASSWORD_KEY, MSG_CLEARED
from sqlwayfarer.core.exceptions import (
    WayfarerError,
    ValidationError,
    NotFoundError,
    StorageError,
    StorageReadError,
    StorageWriteError,
)
from sqlwayfarer.core.logger import get_logger, LogContext
from sqlwayfarer.models.connection_profile import ConnectionProfile, ConnectionConfig
from sqlwayfarer.models.results import OperationResult
from sqlwayfarer.services.storage import (
    StateStorage,
    create_config_storage,
    create_secret_storage,
)

logger = get_logger('services.credential_store')

ProfileInput = Union[ConnectionConfig, ConnectionProfile, dict]


class CredentialStore:
    """
    Manages saved connection profiles and their passwords

    Profiles live in the connection registry, serialized as one JSON object
    under ``<namespace>.connections``. Passwords never enter the registry:
    they are written to the secret medium under
    ``<namespace>.password.<name>`` and read back only on demand.

    Every mutation persists the whole registry snapshot. On save the secret
    is written before the registry; if the registry write then fails, the
    previous secret is put back (or the new one removed) on a best-effort
    basis, so an interrupted save leaves at worst an orphaned secret.
    """

    def __init__(
        self,
        secret_storage: StateStorage,
        config_storage: Optional[StateStorage] = None,
        namespace: Optional[str] = None,
    ):
        self._secrets = secret_storage
        self._config = config_storage or secret_storage
        self._namespace = namespace or get_settings().storage.namespace
        self._profiles: Dict[str, ConnectionProfile] = {}
        self._write_lock = asyncio.Lock()

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def connections_key(self) -> str:
        return CONNECTIONS_KEY.format(namespace=self._namespace)

    def password_key(self, name: str) -> str:
        return PASSWORD_KEY.format(namespace=self._namespace, name=name)

    # === Loading / persistence ===

    async def initialize(self) -> None:
        """
        Load the connection registry from durable storage

        Raises:
            StorageReadError: If the medium is unreadable or the payload is
                not a JSON object of profiles. The registry is left empty.
        """
        self._profiles = {}
        with LogContext(logger, "Loading saved connections"):
            try:
                payload = await self._config.get(self.connections_key)
            except StorageReadError:
                raise
            except Exception as e:
                raise StorageReadError(
                    f"Failed to load saved connections: {e}", key=self.connections_key
                ) from e

            if not payload:
                logger.info("No saved connections found, starting fresh")
                return

            self._profiles = self._parse_registry(payload)
            logger.info(f"Loaded {len(self._profiles)} connection profiles")

    def _parse_registry(self, payload: str) -> Dict[str, ConnectionProfile]:
        try:
            data = json.loads(payload)
            if not isinstance(data, dict):
                raise ValueError("expected a JSON object keyed by connection name")

            profiles: Dict[str, ConnectionProfile] = {}
            for name, entry in data.items():
                if not isinstance(entry, dict):
                    raise ValueError(f"entry '{name}' is not an object")
                # Registry key is authoritative for the profile name
                profiles[name] = ConnectionProfile.from_dict({**entry, 'name': name})
            return profiles
        except ValueError as e:
            raise StorageReadError(
                f"Failed to load saved connections: {e}", key=self.connections_key
            ) from e

    async def _persist(self) -> None:
        data = {name: profile.to_dict() for name, profile in self._profiles.items()}
        payload = json.dumps(data, indent=2)
        try:
            await self._config.store(self.connections_key, payload)
        except StorageError:
            raise
        except Exception as e:
            raise StorageWriteError(f"{e}", key=self.connections_key) from e
        logger.debug(f"Saved {len(self._profiles)} connection profiles")

    # === Mutations ===

    async def save_connection(self, profile: ProfileInput) -> OperationResult:
        """
        Save (or overwrite) a profile, redirecting its password to the
        secret medium

        Returns:
            OperationResult, never raises
        """
        try:
            config = ConnectionConfig.coerce(profile)
        except ValidationError as e:
            return OperationResult.fail(f"Failed to save connection: {e.message}", e)

        name = config.name
        if not name:
            error = ValidationError("Connection name is required", field="name")
            return OperationResult.fail(f"Failed to save connection: {error.message}", error)

        password = config.password_value()
        stripped = config.profile()

        async with self._write_lock:
            previous = dict(self._profiles)
            previous_password = await self.get_connection_password(name) if password else None
            secret_written = False
            try:
                if password:
                    await self._secrets.store(self.password_key(name), password)
                    secret_written = True
                self._profiles[name] = stripped
                await self._persist()
            except Exception as e:
                self._profiles = previous
                if secret_written:
                    await self._restore_password(name, previous_password)
                error = _as_write_error(e)
                logger.error(f"Failed to save connection '{name}': {error.message}")
                return OperationResult.fail(f"Failed to save connection: {error.message}", error)

        logger.info(f"Saved connection profile: {name}")
        return OperationResult.ok(f"Connection '{name}' saved successfully!")

    async def _restore_password(self, name: str, password: Optional[str]) -> None:
        """Put back the secret a failed save overwrote, or remove the new one"""
        key = self.password_key(name)
        try:
            if password:
                await self._secrets.store(key, password)
            else:
                await self._secrets.delete(key)
        except Exception as e:
            logger.warning(f"Could not restore stored password for '{name}': {e}")

    async def delete_connection(self, name: str) -> OperationResult:
        """
        Delete a profile and its stored password

        Returns:
            OperationResult, never raises
        """
        if not name:
            error = ValidationError("Connection name is required", field="name")
            return OperationResult.fail(f"Failed to delete connection: {error.message}", error)

        async with self._write_lock:
            if name not in self._profiles:
                error = NotFoundError(f"Connection '{name}' not found", name=name)
                return OperationResult.fail(f"Failed to delete connection: {error.message}", error)

            try:
                await self._secrets.delete(self.password_key(name))
            except Exception as e:
                # Best-effort: an orphaned secret is harmless, a kept profile is not
                logger.warning(f"Could not delete stored password for '{name}': {e}")

            previous = dict(self._profiles)
            del self._profiles[name]
            try:
                await self._persist()
            except Exception as e:
                self._profiles = previous
                error = _as_write_error(e)
                logger.error(f"Failed to delete connection '{name}': {error.message}")
                return OperationResult.fail(f"Failed to delete connection: {error.message}", error)

        logger.info(f"Deleted connection profile: {name}")
        return OperationResult.ok(f"Connection '{name}' deleted successfully!")

    async def clear_all_connections(self) -> OperationResult:
        """
        Delete every stored password, then empty and persist the registry

        Returns:
            OperationResult, never raises
        """
        async with self._write_lock:
            try:
                for name in list(self._profiles):
                    await self._secrets.delete(self.password_key(name))
            except Exception as e:
                error = _as_write_error(e)
                logger.error(f"Failed to clear stored passwords: {error.message}")
                return OperationResult.fail(f"Failed to clear connections: {error.message}", error)

            previous = dict(self._profiles)
            self._profiles = {}
            try:
                await self._persist()
            except Exception as e:
                self._profiles = previous
                error = _as_write_error(e)
                logger.error(f"Failed to clear connections: {error.message}")
                return OperationResult.fail(f"Failed to clear connections: {error.message}", error)

        logger.warning(f"Cleared all saved connections ({len(previous)} removed)")
        return OperationResult.ok(MSG_CLEARED)

    # === Queries ===

    def get_saved_connections(self) -> List[ConnectionProfile]:
        """All profiles in insertion order, without secrets"""
        return [profile.model_copy() for profile in self._profiles.values()]

    def get_connection(self, name: str) -> Optional[ConnectionProfile]:
        """Get a profile by name"""
        profile = self._profiles.get(name)
        return profile.model_copy() if profile else None

    async def get_connection_password(self, name: str) -> Optional[str]:
        """
        Retrieve the stored password for a profile

        Returns:
            Password string, or None if there is none or it cannot be read
        """
        try:
            password = await self._secrets.get(self.password_key(name))
        except Exception as e:
            logger.error(f"Failed to retrieve password for connection '{name}': {e}")
            return None
        return password or None

    async def has_password(self, name: str) -> bool:
        """Check if a password is stored for a profile"""
        return await self.get_connection_password(name) is not None

    def has_connection(self, name: str) -> bool:
        return name in self._profiles

    def get_connection_count(self) -> int:
        return len(self._profiles)


def _as_write_error(exc: Exception) -> WayfarerError:
    if isinstance(exc, StorageWriteError):
        return exc
    message = exc.message if isinstance(exc, WayfarerError) else str(exc)
    return StorageWriteError(message)


def create_credential_store(settings: Optional[Settings] = None) -> CredentialStore:
    """Build a CredentialStore on the media selected in settings"""
    settings = settings or get_settings()
    return CredentialStore(
        secret_storage=create_secret_storage(settings),
        config_storage=create_config_storage(settings),
        namespace=settings.storage.namespace,
    )
