"""
Error taxonomy for the connection manager.

Nothing here retries. Callers decide whether to report, log and continue, or abort.
"""


class DatabaseError(Exception):
    """Base class for every error raised by dbhub."""

    pass


class ConfigError(DatabaseError, ValueError):
    """Unknown connection name, or missing/invalid backend configuration."""

    pass


class ConnectionError(DatabaseError):  # noqa: A001
    """Backend unreachable, credentials rejected, connect timeout, or no free pooled session."""

    def __init__(self, message: str, *, connection: str | None = None) -> None:
        super().__init__(message)
        self.connection = connection


class QueryError(DatabaseError):
    """Statement failed on the backend. ``str(exc)`` is the driver's own message."""

    def __init__(
        self,
        message: str,
        *,
        sql: str | None = None,
        connection: str | None = None,
    ) -> None:
        super().__init__(message)
        self.sql = sql
        self.connection = connection


class NestedTransactionError(DatabaseError):
    """Transaction control used with no open transaction on the calling thread."""

    pass
