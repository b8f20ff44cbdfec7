"""
Application configuration management using Pydantic Settings
"""

import json
import os
import sys
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqlwayfarer.core.constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_NAMESPACE,
    DEFAULT_QUERY_TIMEOUT,
    DEFAULT_CONNECTION_TIMEOUT,
    SecretBackend,
)


def get_app_dir() -> Path:
    """
    Get application data directory.
    SQLWAYFARER_HOME overrides the OS-specific user data folder.
    """
    override = os.environ.get('SQLWAYFARER_HOME')
    if override:
        return Path(override)

    if sys.platform == 'win32':
        base = Path(os.environ.get('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
    elif sys.platform == 'darwin':
        base = Path.home() / 'Library' / 'Application Support'
    else:
        base = Path.home() / '.config'

    return base / APP_NAME.replace(' ', '')


def ensure_app_dirs(app_dir: Optional[Path] = None) -> Path:
    """Create necessary application directories"""
    app_dir = app_dir or get_app_dir()

    (app_dir / 'config').mkdir(parents=True, exist_ok=True)
    (app_dir / 'data').mkdir(parents=True, exist_ok=True)
    (app_dir / 'logs').mkdir(parents=True, exist_ok=True)

    return app_dir


class StorageSettings(BaseSettings):
    """Durable medium settings"""

    namespace: str = Field(default=DEFAULT_NAMESPACE, min_length=1)
    keyring_service: str = Field(default=APP_NAME.replace(' ', ''))
    secret_backend: SecretBackend = Field(default=SecretBackend.KEYRING)

    @field_validator('namespace')
    @classmethod
    def validate_namespace(cls, v: str) -> str:
        return v.strip().rstrip('.')


class DatabaseSettings(BaseSettings):
    """Database connection settings"""

    query_timeout: int = Field(default=DEFAULT_QUERY_TIMEOUT, ge=1, le=600)
    connection_timeout: int = Field(default=DEFAULT_CONNECTION_TIMEOUT, ge=1, le=120)
    odbc_driver: Optional[str] = Field(default=None)
    echo_sql: bool = Field(default=False)


class LoggingSettings(BaseSettings):
    """Logging settings"""

    level: str = Field(default="INFO")
    file_enabled: bool = Field(default=True)
    retention_days: int = Field(default=7, ge=1, le=30)

    @field_validator('level')
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v = v.upper()
        if v not in valid_levels:
            v = 'INFO'
        return v


class Settings(BaseSettings):
    """Main application settings"""

    model_config = SettingsConfigDict(
        env_prefix='SQLWAYFARER_',
        env_nested_delimiter='__',
        extra='ignore',
    )

    storage: StorageSettings = Field(default_factory=StorageSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    app_dir: Path = Field(default_factory=get_app_dir)

    @property
    def config_dir(self) -> Path:
        return self.app_dir / 'config'

    @property
    def data_dir(self) -> Path:
        return self.app_dir / 'data'

    @property
    def logs_dir(self) -> Path:
        return self.app_dir / 'logs'

    @property
    def settings_file(self) -> Path:
        return self.config_dir / CONFIG_FILE

    def save(self) -> None:
        """Save settings to JSON file"""
        ensure_app_dirs(self.app_dir)

        data = self.model_dump(exclude={'app_dir'}, mode='json')

        with open(self.settings_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, default=str)

    @classmethod
    def load(cls) -> 'Settings':
        """Load settings from JSON file"""
        settings_file = get_app_dir() / 'config' / CONFIG_FILE

        if settings_file.exists():
            try:
                with open(settings_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
                if isinstance(data, dict):
                    return cls(**data)
            except (OSError, ValueError) as e:
                from sqlwayfarer.core.logger import get_logger
                get_logger('core.config').warning(f"Ignoring unreadable settings file: {e}")

        return cls()


# Global settings instance (cached)
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get global settings instance (singleton)"""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def reset_settings() -> Settings:
    """Drop the cached settings so the next get_settings() reloads them"""
    global _settings
    _settings = None
    return get_settings()
