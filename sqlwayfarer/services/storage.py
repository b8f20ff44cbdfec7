"""
Durable key/value media backing the credential store

Two media are provided:
- KeyringStorage: the operating system's secure credential storage
  (Windows Credential Manager, macOS Keychain, Secret Service on Linux)
- FileStorage: one file per key under a directory, for non-secret state

Both expose the same small async surface so the credential store does not
care which medium holds which keyspace.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable
from urllib.parse import quote

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from sqlwayfarer.core.config import Settings, get_settings
from sqlwayfarer.core.constants import SecretBackend
from sqlwayfarer.core.exceptions import StorageReadError, StorageWriteError
from sqlwayfarer.core.logger import get_logger

logger = get_logger('services.storage')


@runtime_checkable
class StateStorage(Protocol):
    """Protocol implemented by durable media."""

    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None when the key is absent."""

    async def store(self, key: str, value: str) -> None:
        """Write (or overwrite) a value."""

    async def delete(self, key: str) -> None:
        """Remove a key; removing an absent key is not an error."""


class KeyringStorage:
    """OS keyring medium, keys map to keyring usernames under one service"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        try:
            backend = keyring.get_keyring()
            logger.info(f"Keyring backend: {backend.__class__.__name__}")
        except Exception as e:
            logger.warning(f"Keyring may not be available: {e}")

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(keyring.get_password, self.service_name, key)
        except KeyringError as e:
            raise StorageReadError(f"Failed to read from keyring: {e}", key=key) from e

    async def store(self, key: str, value: str) -> None:
        try:
            await asyncio.to_thread(keyring.set_password, self.service_name, key, value)
        except KeyringError as e:
            raise StorageWriteError(f"Failed to write to keyring: {e}", key=key) from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self.service_name, key)
        except PasswordDeleteError:
            # Entry doesn't exist, that's OK
            return
        except KeyringError as e:
            raise StorageWriteError(f"Failed to delete from keyring: {e}", key=key) from e


class FileStorage:
    """
    Directory medium: one file per key, replaced atomically on write

    Keys are percent-encoded into file names, so profile names with path
    separators cannot escape the directory.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / quote(key, safe='.-_ ')

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def store(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    def _read(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageReadError(f"Failed to read {path}: {e}", key=key) from e

    def _write(self, key: str, value: str) -> None:
        path = self._path(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix='.tmp-')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(value)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageWriteError(f"Failed to write {path}: {e}", key=key) from e

    def _remove(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise StorageWriteError(f"Failed to delete {path}: {e}", key=key) from e


def create_secret_storage(settings: Optional[Settings] = None) -> StateStorage:
    """Build the secret medium selected in settings"""
    settings = settings or get_settings()
    if settings.storage.secret_backend == SecretBackend.FILE:
        logger.warning("Secrets are stored in plain files; use the keyring backend outside development")
        return FileStorage(settings.data_dir / 'secrets')
    return KeyringStorage(settings.storage.keyring_service)


def create_config_storage(settings: Optional[Settings] = None) -> StateStorage:
    """Build the medium holding the non-secret connection registry"""
    settings = settings or get_settings()
    return FileStorage(settings.data_dir)
