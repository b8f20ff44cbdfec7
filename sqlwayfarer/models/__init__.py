"""
Data models module
"""

from sqlwayfarer.models.connection_profile import ConnectionProfile, ConnectionConfig
from sqlwayfarer.models.results import OperationResult, QueryResult

__all__ = [
    "ConnectionProfile",
    "ConnectionConfig",
    "OperationResult",
    "QueryResult",
]
