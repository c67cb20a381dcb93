"""
dbhub: one API for several independently configured database backends.

    from dbhub import ConnectionManager

    db = ConnectionManager()
    rows = db.select("SELECT * FROM users WHERE id = %s", [1], "mysql")
    db.run_in_transaction(lambda tx: tx.insert("INSERT INTO t (a) VALUES (%s)", [1]))
"""

from dbhub.core.backends import (
    BackendConfig,
    BackendRegistry,
    DriverEnum,
    MySQLOptions,
    PostgresOptions,
    SQLiteOptions,
)
from dbhub.core.exceptions import (
    ConfigError,
    ConnectionError,
    DatabaseError,
    NestedTransactionError,
    QueryError,
)
from dbhub.core.instrumentation import QueryLogEntry, QueryLogger
from dbhub.core.pool import ConnectionFactory, ConnectionHandle
from dbhub.engines.sql import BoundQueries, StatementKind, classify
from dbhub.manager import ConnectionManager, get_connection_manager

__all__ = [
    "BackendConfig",
    "BackendRegistry",
    "DriverEnum",
    "MySQLOptions",
    "PostgresOptions",
    "SQLiteOptions",
    "DatabaseError",
    "ConfigError",
    "ConnectionError",
    "QueryError",
    "NestedTransactionError",
    "QueryLogEntry",
    "QueryLogger",
    "ConnectionFactory",
    "ConnectionHandle",
    "BoundQueries",
    "StatementKind",
    "classify",
    "ConnectionManager",
    "get_connection_manager",
]
