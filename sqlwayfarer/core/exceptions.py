"""
Custom exceptions for SQL Wayfarer
"""

from typing import Optional, Any


class WayfarerError(Exception):
    """Base exception for all application errors"""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(WayfarerError):
    """Missing or invalid required field, rejected before any I/O"""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs):
        details = {"field": field, **kwargs} if field else kwargs
        super().__init__(message, details)


class NotFoundError(WayfarerError):
    """Operation on an unknown connection profile"""

    def __init__(self, message: str, name: Optional[str] = None, **kwargs):
        details = {"name": name, **kwargs} if name else kwargs
        super().__init__(message, details)


class CredentialNotFoundError(NotFoundError):
    """No stored password for a profile that requires one"""
    pass


# =============================================================================
# Storage Errors
# =============================================================================


class StorageError(WayfarerError):
    """Durable medium errors"""

    def __init__(self, message: str, key: Optional[str] = None, **kwargs):
        details = {"key": key, **kwargs} if key else kwargs
        super().__init__(message, details)


class StorageReadError(StorageError):
    """Medium unreadable or persisted payload malformed"""
    pass


class StorageWriteError(StorageError):
    """Medium rejected a write"""
    pass


# =============================================================================
# Database Errors
# =============================================================================


class DriverError(WayfarerError):
    """Base driver error, message carries the driver message verbatim"""
    pass


class DriverConnectError(DriverError):
    """Driver failed to open or close a connection"""
    pass


class DriverQueryError(DriverError):
    """Query execution failed"""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        details = {"query": query[:500] if query else None, **kwargs}
        super().__init__(message, details)


class NoActiveConnectionError(WayfarerError):
    """Query attempted with no live handle"""

    def __init__(self, message: str = "No active connection"):
        super().__init__(message)
