"""
Query router: run a statement with bound parameters on a named connection.

- READ (SELECT/SHOW/DESCRIBE/EXPLAIN): list[dict]
- WRITE (INSERT/UPDATE/DELETE): affected row count
- OTHER: rows when the statement produced a result set, else the row count

Every execution is timed and handed to the QueryLogger, failures included.
Driver errors surface as QueryError with the driver's message; nothing is retried.
Bindings use the driver's paramstyle (``%s`` for mysql/pgsql, ``?`` for sqlite).
"""

import time
from collections.abc import Callable, Iterator
from typing import Any

from dbhub.core.exceptions import QueryError
from dbhub.core.instrumentation import QueryLogger
from dbhub.core.pool import DRIVER_ERRORS, ConnectionHandle, cursor_to_dicts, execute
from dbhub.core.pool.connect import close_quiet

from .classify import StatementKind, classify

Bindings = dict[str, Any] | list[Any] | tuple[Any, ...] | None

_DEFAULT_BATCH_SIZE = 1000


def _rowcount(cur: Any) -> int:
    rc = cur.rowcount
    return rc if rc is not None and rc >= 0 else 0


class QueryRouter:
    """Routes statements to ConnectionHandles resolved by name."""

    def __init__(
        self,
        resolve: Callable[[str | None], ConnectionHandle],
        query_logger: QueryLogger,
        *,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._resolve = resolve
        self._logger = query_logger
        self._clock = clock

    def _run(
        self,
        sql: str,
        bindings: Bindings,
        connection: str | None,
        consume: Callable[[Any], Any],
    ) -> Any:
        handle = self._resolve(connection)
        start = self._clock()
        error: str | None = None
        try:
            with handle.session() as conn:
                cur = execute(conn, sql, bindings)
                try:
                    return consume(cur)
                finally:
                    close_quiet(cur)
        except DRIVER_ERRORS as e:
            error = str(e)
            raise QueryError(error, sql=sql, connection=handle.name) from e
        except Exception as e:
            error = str(e) or type(e).__name__
            raise
        finally:
            elapsed_ms = (self._clock() - start) * 1000
            self._logger.record(
                self._logger.entry(sql, bindings, elapsed_ms, handle.name, error=error)
            )

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    def select(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> list[dict[str, Any]]:
        return self._run(sql, bindings, connection, cursor_to_dicts)

    def select_one(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> dict[str, Any] | None:
        rows = self.select(sql, bindings, connection)
        return rows[0] if rows else None

    def affecting_statement(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> int:
        return self._run(sql, bindings, connection, _rowcount)

    def insert(self, sql: str, bindings: Bindings = None, connection: str | None = None) -> int:
        return self.affecting_statement(sql, bindings, connection)

    def update(self, sql: str, bindings: Bindings = None, connection: str | None = None) -> int:
        return self.affecting_statement(sql, bindings, connection)

    def delete(self, sql: str, bindings: Bindings = None, connection: str | None = None) -> int:
        return self.affecting_statement(sql, bindings, connection)

    def insert_get_id(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> Any:
        """Run an INSERT and return the generated key (``cursor.lastrowid``).

        psycopg has no lastrowid; on pgsql use ``INSERT ... RETURNING id`` with select_one.
        """
        return self._run(sql, bindings, connection, lambda cur: cur.lastrowid)

    def statement(self, sql: str, bindings: Bindings = None, connection: str | None = None) -> Any:
        """Raw pass-through: rows if the statement returned a result set, else the row count."""

        def consume(cur: Any) -> Any:
            if cur.description:
                return cursor_to_dicts(cur)
            return _rowcount(cur)

        return self._run(sql, bindings, connection, consume)

    def execute(self, sql: str, bindings: Bindings = None, connection: str | None = None) -> Any:
        """Dispatch on the statement's leading keyword."""
        kind = classify(sql)
        if kind == StatementKind.READ:
            return self.select(sql, bindings, connection)
        if kind == StatementKind.WRITE:
            return self.affecting_statement(sql, bindings, connection)
        return self.statement(sql, bindings, connection)

    def cursor(
        self,
        sql: str,
        bindings: Bindings = None,
        connection: str | None = None,
        *,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> Iterator[dict[str, Any]]:
        """
        Stream rows in batches of ``fetchmany(batch_size)``.

        The session stays checked out until the generator is exhausted or closed;
        with an unbuffered backend (analytics) rows are not held in client memory.
        """
        handle = self._resolve(connection)
        start = self._clock()
        error: str | None = None
        try:
            with handle.session() as conn:
                cur = execute(conn, sql, bindings)
                try:
                    names = [d[0] for d in cur.description or ()]
                    while True:
                        batch = cur.fetchmany(batch_size)
                        if not batch:
                            break
                        for row in batch:
                            if not isinstance(row, dict):
                                row = dict(zip(names, row, strict=True))
                            yield row
                finally:
                    close_quiet(cur)
        except DRIVER_ERRORS as e:
            error = str(e)
            raise QueryError(error, sql=sql, connection=handle.name) from e
        except Exception as e:
            error = str(e) or type(e).__name__
            raise
        finally:
            elapsed_ms = (self._clock() - start) * 1000
            self._logger.record(
                self._logger.entry(sql, bindings, elapsed_ms, handle.name, error=error)
            )

    def on(self, connection: str | None) -> "BoundQueries":
        return BoundQueries(self, connection)


class BoundQueries:
    """The router's primitives bound to one connection name (what a unit of work receives)."""

    def __init__(self, router: QueryRouter, connection: str | None) -> None:
        self._router = router
        self.connection = connection

    def select(self, sql: str, bindings: Bindings = None) -> list[dict[str, Any]]:
        return self._router.select(sql, bindings, self.connection)

    def select_one(self, sql: str, bindings: Bindings = None) -> dict[str, Any] | None:
        return self._router.select_one(sql, bindings, self.connection)

    def insert(self, sql: str, bindings: Bindings = None) -> int:
        return self._router.insert(sql, bindings, self.connection)

    def insert_get_id(self, sql: str, bindings: Bindings = None) -> Any:
        return self._router.insert_get_id(sql, bindings, self.connection)

    def update(self, sql: str, bindings: Bindings = None) -> int:
        return self._router.update(sql, bindings, self.connection)

    def delete(self, sql: str, bindings: Bindings = None) -> int:
        return self._router.delete(sql, bindings, self.connection)

    def statement(self, sql: str, bindings: Bindings = None) -> Any:
        return self._router.statement(sql, bindings, self.connection)

    def execute(self, sql: str, bindings: Bindings = None) -> Any:
        return self._router.execute(sql, bindings, self.connection)

    def cursor(
        self, sql: str, bindings: Bindings = None, *, batch_size: int = _DEFAULT_BATCH_SIZE
    ) -> Iterator[dict[str, Any]]:
        return self._router.cursor(sql, bindings, self.connection, batch_size=batch_size)
