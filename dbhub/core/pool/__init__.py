"""
Driver sessions and per-backend pooling.

No driver layer of our own: pymysql, psycopg and sqlite3 do the network/file I/O;
BackendConfig (driver, host, ...) is enough to open a session.
"""

from .connect import DRIVER_ERRORS, connect, cursor_to_dicts, execute, server_version
from .factory import ConnectionFactory
from .handle import ConnectionHandle
from .health import describe, health_check, probe

__all__ = [
    "DRIVER_ERRORS",
    "connect",
    "execute",
    "cursor_to_dicts",
    "server_version",
    "health_check",
    "probe",
    "describe",
    "ConnectionFactory",
    "ConnectionHandle",
]
