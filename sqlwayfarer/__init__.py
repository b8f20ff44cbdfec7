"""
SQL Wayfarer - secure connection lifecycle for SQL Server schema browsing
"""

__version__ = "0.3.0"
__app_name__ = "SQL Wayfarer"
