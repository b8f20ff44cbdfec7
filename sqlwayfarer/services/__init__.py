"""
Services module - Profile and secret persistence
"""

from sqlwayfarer.services.credential_store import CredentialStore, create_credential_store
from sqlwayfarer.services.storage import (
    StateStorage,
    KeyringStorage,
    FileStorage,
    create_secret_storage,
    create_config_storage,
)

__all__ = [
    "CredentialStore",
    "create_credential_store",
    "StateStorage",
    "KeyringStorage",
    "FileStorage",
    "create_secret_storage",
    "create_config_storage",
]
