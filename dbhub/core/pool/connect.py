"""
Driver sessions for configured backends.

Uses pymysql (mysql), psycopg (pgsql) or sqlite3 (sqlite file / in-memory) based on
``BackendConfig.driver``. Every session is opened in autocommit mode with mapping
rows; transactions are started explicitly (see ``begin_statement``).
"""

import logging
import sqlite3
from typing import Any

import psycopg
import pymysql
import pymysql.cursors
from psycopg.rows import dict_row

from dbhub.core.backends import BackendConfig, DriverEnum
from dbhub.core.exceptions import ConnectionError

_log = logging.getLogger(__name__)

# DB-API errors raised by the supported drivers.
DRIVER_ERRORS: tuple[type[Exception], ...] = (
    pymysql.err.Error,
    psycopg.Error,
    sqlite3.Error,
)

MYSQL_STRICT_SQL_MODE = (
    "ONLY_FULL_GROUP_BY,STRICT_TRANS_TABLES,NO_ZERO_IN_DATE,NO_ZERO_DATE,"
    "ERROR_FOR_DIVISION_BY_ZERO,NO_ENGINE_SUBSTITUTION"
)
MYSQL_LENIENT_SQL_MODE = "NO_ENGINE_SUBSTITUTION"


def _connect_mysql(config: BackendConfig) -> Any:
    opts = config.options
    cursorclass = (
        pymysql.cursors.DictCursor if opts.buffered else pymysql.cursors.SSDictCursor
    )
    kwargs: dict[str, Any] = {
        "host": config.host,
        "port": int(config.port or 3306),
        "database": config.database,
        "user": config.username,
        "password": config.password.get_secret_value(),
        "charset": config.charset or "utf8mb4",
        "connect_timeout": max(int(config.connect_timeout_seconds), 1),
        "cursorclass": cursorclass,
        "autocommit": True,
        "sql_mode": MYSQL_STRICT_SQL_MODE if config.strict else MYSQL_LENIENT_SQL_MODE,
    }
    if config.collation:
        kwargs["collation"] = config.collation
    if config.statement_timeout_seconds:
        timeout_ms = int(config.statement_timeout_seconds * 1000)
        kwargs["init_command"] = f"SET SESSION max_execution_time = {timeout_ms}"
    return pymysql.connect(**kwargs)


def _connect_postgres(config: BackendConfig) -> Any:
    opts = config.options
    pg_options = [f"-c search_path={opts.search_path}"]
    if config.statement_timeout_seconds:
        pg_options.append(
            f"-c statement_timeout={int(config.statement_timeout_seconds * 1000)}"
        )
    kwargs: dict[str, Any] = {
        "host": config.host,
        "port": int(config.port or 5432),
        "dbname": config.database,
        "user": config.username,
        "password": config.password.get_secret_value(),
        "connect_timeout": max(int(config.connect_timeout_seconds), 1),
        "sslmode": opts.sslmode,
        "options": " ".join(pg_options),
        "autocommit": True,
        "row_factory": dict_row,
    }
    if config.charset:
        kwargs["client_encoding"] = config.charset
    if opts.emulate_prepares:
        kwargs["prepare_threshold"] = None
    return psycopg.connect(**kwargs)


def _connect_sqlite(config: BackendConfig) -> Any:
    conn = sqlite3.connect(
        config.database,
        timeout=config.connect_timeout_seconds,
        isolation_level=None,  # autocommit; BEGIN is explicit
        check_same_thread=False,
    )
    if config.options.foreign_keys:
        conn.execute("PRAGMA foreign_keys = ON")
    return conn


def connect(config: BackendConfig) -> Any:
    """
    Open one driver session for *config*.

    Raises ConnectionError for unreachable hosts, rejected credentials, connect
    timeouts and unsupported drivers. Never retries.
    """
    _log.debug("Opening %s session for %s", config.driver.value, config.name)
    try:
        if config.driver == DriverEnum.MYSQL:
            return _connect_mysql(config)
        if config.driver == DriverEnum.PGSQL:
            return _connect_postgres(config)
        if config.driver in (DriverEnum.SQLITE, DriverEnum.MEMORY):
            return _connect_sqlite(config)
    except (*DRIVER_ERRORS, OSError) as e:
        raise ConnectionError(
            f"Could not connect to '{config.name}': {e}", connection=config.name
        ) from e
    raise ConnectionError(
        f"Unsupported driver: {config.driver}", connection=config.name
    )


def begin_statement(driver: DriverEnum) -> str:
    if driver == DriverEnum.MYSQL:
        return "START TRANSACTION"
    return "BEGIN"


def server_version(conn: Any, driver: DriverEnum) -> str:
    """Server version string reported by the driver session."""
    if driver == DriverEnum.MYSQL:
        return conn.get_server_info()
    if driver == DriverEnum.PGSQL:
        # e.g. 160002 -> "16.2"
        v = conn.info.server_version
        return f"{v // 10000}.{v % 10000}"
    return sqlite3.sqlite_version


def execute(conn: Any, sql: str, params: Any = None) -> Any:
    """Execute SQL and return the open cursor (closed here only if execute fails)."""
    cur = conn.cursor()
    try:
        if params is not None:
            cur.execute(sql, params)
        else:
            cur.execute(sql)
    except BaseException:
        close_quiet(cur)
        raise
    return cur


def cursor_to_dicts(cursor: Any) -> list[dict[str, Any]]:
    """Rows as a list of dicts. Dict rows (pymysql/psycopg) pass through; tuples are zipped."""
    desc = cursor.description
    if not desc:
        return []
    names = [d[0] for d in desc]
    rows: list[dict[str, Any]] = []
    for row in cursor.fetchall():
        if isinstance(row, dict):
            rows.append(row)
        else:
            rows.append(dict(zip(names, row, strict=True)))
    return rows


def close_quiet(obj: Any) -> None:
    try:
        obj.close()
    except Exception:
        pass
