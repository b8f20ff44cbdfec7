"""
Database module - SQL Server driver adapter and connection session
"""

from sqlwayfarer.database.driver import (
    ConnectionHandle,
    DatabaseDriver,
    QueryRequest,
    SqlServerDriver,
    get_available_odbc_drivers,
    get_best_odbc_driver,
)
from sqlwayfarer.database.session import ConnectionSession

__all__ = [
    "ConnectionHandle",
    "DatabaseDriver",
    "QueryRequest",
    "SqlServerDriver",
    "get_available_odbc_drivers",
    "get_best_odbc_driver",
    "ConnectionSession",
]
