"""
SQL Server driver adapter

Wraps pyodbc (through a single SQLAlchemy connection, no pooling) behind
the small asynchronous surface the connection session relies on:

    handle = await driver.connect(connection_string)
    result = await handle.request().input("id", 5).query("SELECT ... @id")
    await handle.close()

Connection strings arrive in ADO form (``Server=...;User Id=...``) and are
rewritten to ODBC keywords before they reach pyodbc.
"""

import asyncio
import re
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

import pyodbc
from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from sqlwayfarer.core.config import DatabaseSettings, get_settings
from sqlwayfarer.core.constants import ODBC_DRIVER_PREFERENCES
from sqlwayfarer.core.exceptions import DriverConnectError, DriverQueryError
from sqlwayfarer.core.logger import get_logger
from sqlwayfarer.models.results import QueryResult

logger = get_logger('database.driver')


# =============================================================================
# Driver seam
# =============================================================================


@runtime_checkable
class QueryRequest(Protocol):
    """A single query on a handle, with named inputs"""

    def input(self, name: str, value: Any) -> 'QueryRequest':
        """Bind a named parameter."""

    async def query(self, text: str) -> QueryResult:
        """Execute the query text with the bound inputs."""


@runtime_checkable
class ConnectionHandle(Protocol):
    """A live database connection"""

    def request(self) -> QueryRequest:
        """Start a new request on this connection."""

    async def close(self) -> None:
        """Close the connection."""


@runtime_checkable
class DatabaseDriver(Protocol):
    """Opens connection handles from connection strings"""

    async def connect(self, connection_string: str) -> ConnectionHandle:
        """Open a connection; raises DriverConnectError on failure."""


# =============================================================================
# ODBC helpers
# =============================================================================


def get_available_odbc_drivers() -> List[str]:
    """Get list of available SQL Server ODBC drivers"""
    try:
        drivers = pyodbc.drivers()
        return [d for d in drivers if 'SQL Server' in d]
    except Exception as e:
        logger.error(f"Failed to get ODBC drivers: {e}")
        return []


def get_best_odbc_driver() -> Optional[str]:
    """Get the best available ODBC driver"""
    available = get_available_odbc_drivers()

    for preferred in ODBC_DRIVER_PREFERENCES:
        if preferred in available:
            return preferred

    # Return first available if no preferred found
    return available[0] if available else None


# ADO keyword -> ODBC keyword
_KEYWORDS = {
    'server': 'SERVER',
    'data source': 'SERVER',
    'address': 'SERVER',
    'database': 'DATABASE',
    'initial catalog': 'DATABASE',
    'user id': 'UID',
    'uid': 'UID',
    'user': 'UID',
    'password': 'PWD',
    'pwd': 'PWD',
    'encrypt': 'Encrypt',
    'trustservercertificate': 'TrustServerCertificate',
    'trust server certificate': 'TrustServerCertificate',
    'connect timeout': 'Connect Timeout',
    'connection timeout': 'Connect Timeout',
    'application name': 'APP',
    'app': 'APP',
    'driver': 'DRIVER',
}

_TRUE = {'true', 'yes', 'sspi', '1'}


def _odbc_value(value: str) -> str:
    """Brace-quote values that ODBC would otherwise split"""
    if any(ch in value for ch in ';{}=') or value != value.strip():
        return '{' + value.replace('}', '}}') + '}'
    return value


def _driver_value(value: str) -> str:
    return '{' + value.strip('{}') + '}'


# key = value, where value may be {braced}, "double" or 'single' quoted
_SEGMENT_PATTERN = re.compile(
    r"""\s*(?P<key>[^=;]+?)\s*=\s*
    (?P<value>\{(?:[^}]|\}\})*\}|"(?:[^"]|"")*"|'(?:[^']|'')*'|[^;]*?)
    \s*(?:;|$)""",
    re.VERBOSE,
)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == '{' and value[-1] == '}':
        return value[1:-1].replace('}}', '}')
    if len(value) >= 2 and value[0] == value[-1] and value[0] in '"\'':
        quote = value[0]
        return value[1:-1].replace(quote * 2, quote)
    return value


def parse_connection_string(connection_string: str) -> List[Tuple[str, str]]:
    """
    Split ``key=value;key=value`` into ordered pairs

    Quoted values (``{...}``, ``"..."``, ``'...'``) may contain ``;`` and
    come back unquoted. Parse errors name the segment position only, never
    its contents, since segments can hold passwords.
    """
    pairs = []
    position = 0
    length = len(connection_string)
    while position < length:
        if connection_string[position] in '; \t\r\n':
            position += 1
            continue
        match = _SEGMENT_PATTERN.match(connection_string, position)
        if match is None:
            raise DriverConnectError(
                f"Malformed connection string segment {len(pairs) + 1}"
            )
        pairs.append((match.group('key'), _unquote(match.group('value'))))
        position = match.end()
    return pairs


def to_odbc_connection_string(connection_string: str, driver: Optional[str] = None) -> str:
    """
    Rewrite an ADO-style SQL Server connection string to ODBC keywords

    Raises:
        DriverConnectError: If no SQL Server ODBC driver can be found
    """
    parts: Dict[str, str] = {}
    for key, value in parse_connection_string(connection_string):
        lowered = key.lower()
        if lowered in ('integrated security', 'trusted_connection'):
            if value.lower() in _TRUE:
                parts['Trusted_Connection'] = 'yes'
            continue
        odbc_key = _KEYWORDS.get(lowered, key)
        if odbc_key in ('Encrypt', 'TrustServerCertificate'):
            value = 'yes' if value.lower() in _TRUE else 'no'
        parts[odbc_key] = value

    if 'DRIVER' not in parts:
        driver = driver or get_best_odbc_driver()
        if not driver:
            raise DriverConnectError("No SQL Server ODBC driver found")
        parts = {'DRIVER': driver, **parts}

    return ';'.join(
        f"{key}={_driver_value(value) if key == 'DRIVER' else _odbc_value(value)}"
        for key, value in parts.items()
    )


# Literals, quoted identifiers and comments are matched first so that an
# @name inside them is left alone; only the last alternative captures
_SQL_TOKEN_PATTERN = re.compile(
    r"""'(?:[^']|'')*'
    |\[(?:[^\]]|\]\])*\]
    |"(?:[^"]|"")*"
    |--[^\n]*
    |/\*.*?\*/
    |(?<![@\w])@(?P<name>[A-Za-z_]\w*)""",
    re.VERBOSE | re.DOTALL,
)


def bind_named_parameters(text: str, parameters: Dict[str, Any]) -> Tuple[str, Tuple[Any, ...]]:
    """
    Turn ``@name`` placeholders of bound inputs into positional markers

    Only names present in ``parameters`` are rewritten, so local T-SQL
    variables and ``@@`` globals pass through untouched, as does anything
    inside string literals, quoted identifiers and comments. Names match
    case-insensitively, as T-SQL identifiers do.
    """
    if not parameters:
        return text, ()

    lookup = {name.lstrip('@').lower(): name for name in parameters}
    values: List[Any] = []

    def _replace(match: 're.Match[str]') -> str:
        name = match.group('name')
        key = lookup.get(name.lower()) if name else None
        if key is None:
            return match.group(0)
        values.append(parameters[key])
        return '?'

    return _SQL_TOKEN_PATTERN.sub(_replace, text), tuple(values)


def _driver_message(exc: BaseException) -> str:
    """The underlying driver message, without SQLAlchemy decoration"""
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    return str(exc)


# =============================================================================
# pyodbc implementation
# =============================================================================


class SqlServerRequest:
    """Request on a SqlServerHandle; inputs bind in insertion order"""

    def __init__(self, handle: 'SqlServerHandle'):
        self._handle = handle
        self._inputs: Dict[str, Any] = {}

    def input(self, name: str, value: Any) -> 'SqlServerRequest':
        self._inputs[name] = value
        return self

    async def query(self, text: str) -> QueryResult:
        return await self._handle.execute(text, self._inputs)


class SqlServerHandle:
    """One live SQL Server connection"""

    def __init__(self, engine: Engine, connection: Connection):
        self._engine = engine
        self._connection = connection
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def request(self) -> SqlServerRequest:
        return SqlServerRequest(self)

    async def execute(self, text: str, parameters: Optional[Dict[str, Any]] = None) -> QueryResult:
        if self._closed:
            raise DriverQueryError("Connection is closed", query=text)
        return await asyncio.to_thread(self._execute, text, parameters or {})

    def _execute(self, text: str, parameters: Dict[str, Any]) -> QueryResult:
        sql, values = bind_named_parameters(text, parameters)
        try:
            if values:
                result = self._connection.exec_driver_sql(sql, values)
            else:
                result = self._connection.exec_driver_sql(sql)

            if result.returns_rows:
                columns = tuple(result.keys())
                rows = [dict(row) for row in result.mappings()]
                return QueryResult(columns=columns, rows=rows, rowcount=len(rows))

            return QueryResult(rowcount=result.rowcount)
        except (SQLAlchemyError, pyodbc.Error) as e:
            raise DriverQueryError(_driver_message(e), query=text) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await asyncio.to_thread(self._close)

    def _close(self) -> None:
        try:
            self._connection.close()
        except (SQLAlchemyError, pyodbc.Error) as e:
            raise DriverConnectError(_driver_message(e)) from e
        finally:
            self._engine.dispose()


class SqlServerDriver:
    """Opens single, unpooled pyodbc connections to SQL Server"""

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        self._settings = settings or get_settings().database

    async def connect(self, connection_string: str) -> SqlServerHandle:
        odbc_connect = to_odbc_connection_string(connection_string, self._settings.odbc_driver)
        return await asyncio.to_thread(self._connect, odbc_connect)

    def _connect(self, odbc_connect: str) -> SqlServerHandle:
        engine = create_engine(
            URL.create("mssql+pyodbc", query={"odbc_connect": odbc_connect}),
            poolclass=NullPool,
            isolation_level="AUTOCOMMIT",
            connect_args={"timeout": self._settings.connection_timeout},
            echo=self._settings.echo_sql,
        )
        try:
            connection = engine.connect()
        except (SQLAlchemyError, pyodbc.Error) as e:
            engine.dispose()
            raise DriverConnectError(_driver_message(e)) from e

        try:
            # Session-wide, so every request on this handle inherits it
            connection.exec_driver_sql(f"SET LOCK_TIMEOUT {self._settings.query_timeout * 1000}")
        except (SQLAlchemyError, pyodbc.Error) as e:
            connection.close()
            engine.dispose()
            raise DriverConnectError(_driver_message(e)) from e
        return SqlServerHandle(engine, connection)
