"""
Transaction coordinator: run a unit of work atomically on one connection.

``run_in_transaction(work, connection)`` begins, calls ``work(db)`` with queries bound
to that connection, commits, and returns the result. Any exception rolls back and
is re-raised unchanged.

Nesting: a unit of work that calls ``run_in_transaction`` again on the same
connection (same thread) gets a savepoint. The inner failure rolls back to the
savepoint only; the outer unit of work decides whether to continue or re-raise.
Different connections are independent; there is no cross-connection atomicity.
"""

import logging
from collections.abc import Callable
from typing import TypeVar

from dbhub.core.exceptions import DatabaseError
from dbhub.core.pool import ConnectionHandle

from .router import BoundQueries, QueryRouter

_log = logging.getLogger(__name__)

T = TypeVar("T")


class TransactionCoordinator:
    def __init__(
        self,
        resolve: Callable[[str | None], ConnectionHandle],
        router: QueryRouter,
    ) -> None:
        self._resolve = resolve
        self._router = router

    def run_in_transaction(
        self,
        work: Callable[[BoundQueries], T],
        connection: str | None = None,
    ) -> T:
        handle = self._resolve(connection)
        level = handle.begin()
        _log.debug("Transaction level %d opened on %s", level, handle.name)
        try:
            result = work(self._router.on(handle.name))
        except BaseException:
            self._rollback_quiet(handle, level)
            raise
        handle.commit()
        _log.debug("Transaction level %d committed on %s", level, handle.name)
        return result

    @staticmethod
    def _rollback_quiet(handle: ConnectionHandle, level: int) -> None:
        """Roll back; a failing rollback is only logged so the error from *work* propagates."""
        try:
            handle.rollback()
            _log.debug("Transaction level %d rolled back on %s", level, handle.name)
        except DatabaseError as e:
            _log.warning("rollback on %s (level %d) failed: %s", handle.name, level, e)

