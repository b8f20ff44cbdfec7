"""
Application constants and enumerations
"""

from enum import Enum
from typing import Final

# =============================================================================
# Application Info
# =============================================================================

APP_NAME: Final[str] = "SQL Wayfarer"
APP_VERSION: Final[str] = "0.3.0"

# =============================================================================
# File Paths
# =============================================================================

CONFIG_FILE: Final[str] = "settings.json"
LOG_FILE: Final[str] = "sqlwayfarer.log"

# =============================================================================
# Storage Keys
# =============================================================================

DEFAULT_NAMESPACE: Final[str] = "sqlwayfarer"
CONNECTIONS_KEY: Final[str] = "{namespace}.connections"
PASSWORD_KEY: Final[str] = "{namespace}.password.{name}"

# =============================================================================
# Database Constants
# =============================================================================

DEFAULT_QUERY_TIMEOUT: Final[int] = 30  # seconds
DEFAULT_CONNECTION_TIMEOUT: Final[int] = 15  # seconds

# Form defaults applied by the UI layer, never by the string builder
DEFAULT_ENCRYPT: Final[bool] = False
DEFAULT_TRUST_SERVER_CERTIFICATE: Final[bool] = True

# ODBC Driver preferences (newest to oldest)
ODBC_DRIVER_PREFERENCES: Final[list[str]] = [
    "ODBC Driver 18 for SQL Server",
    "ODBC Driver 17 for SQL Server",
    "ODBC Driver 13 for SQL Server",
    "SQL Server Native Client 11.0",
    "SQL Server",
]

# =============================================================================
# User-facing messages
# =============================================================================

MSG_CONNECTED: Final[str] = "Connected successfully!"
MSG_DISCONNECTED: Final[str] = "Disconnected successfully!"
MSG_NOT_CONNECTED: Final[str] = "No active connection to disconnect."
MSG_TEST_OK: Final[str] = "Connection test successful!"
MSG_CLEARED: Final[str] = "All connections cleared successfully!"
PASSWORD_PLACEHOLDER: Final[str] = "(stored separately)"

# =============================================================================
# Enumerations
# =============================================================================


class ConnectionStatus(str, Enum):
    """Connection session status"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class SecretBackend(str, Enum):
    """Durable medium used for secrets"""
    KEYRING = "keyring"
    FILE = "file"
