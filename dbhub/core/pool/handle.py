"""
ConnectionHandle: the live, pooled target for one named backend.

A handle keeps up to ``pool_max_connections`` driver sessions. Sessions are
checked out per statement and returned afterwards; idle sessions are evicted after
a max age and pinged when they have been idle for a while. While a transaction is
open, its session is pinned to the calling thread so every statement of the unit
of work runs on it; nested transactions on the same thread use savepoints.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, NamedTuple

from dbhub.core.backends import BackendConfig, DriverEnum
from dbhub.core.exceptions import ConnectionError, NestedTransactionError, QueryError

from .connect import DRIVER_ERRORS, begin_statement, close_quiet

_log = logging.getLogger(__name__)

_DEFAULT_MAX_AGE_SEC = 600  # 10 minutes

_PING_IDLE_THRESHOLD = 30.0  # only ping sessions idle longer than this (seconds)

SAVEPOINT_PREFIX = "dbhub_sp_"


class _PoolEntry(NamedTuple):
    conn: Any
    created_at: float  # time.monotonic() when the session was opened
    last_used: float   # time.monotonic() when last returned to pool


def _is_broken(conn: Any) -> bool:
    """psycopg exposes ``closed``, pymysql exposes ``open``."""
    return getattr(conn, "closed", False) is True or getattr(conn, "open", True) is False


class _TxState(threading.local):
    conn: Any = None
    created_at: float = 0.0
    level: int = 0


class ConnectionHandle:
    """Pooled sessions for one backend, owned by the ConnectionManager."""

    def __init__(
        self,
        config: BackendConfig,
        opener: Callable[[BackendConfig], Any],
        *,
        initial_conn: Any = None,
        max_age: float = _DEFAULT_MAX_AGE_SEC,
    ) -> None:
        self.config = config
        self._opener = opener
        self._max_age = float(max_age)
        self._idle: list[_PoolEntry] = []
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(config.pool_max_connections)
        self._tx = _TxState()
        self._open_count = 0
        self._closed = False
        self.created_at = datetime.now(timezone.utc)
        self.last_health_check: datetime | None = None
        if initial_conn is not None:
            now = time.monotonic()
            self._idle.append(_PoolEntry(conn=initial_conn, created_at=now, last_used=now))
            self._open_count = 1

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def driver(self) -> DriverEnum:
        return self.config.driver

    @property
    def transaction_level(self) -> int:
        """Open transaction depth for the calling thread (0 = none)."""
        return self._tx.level

    @property
    def open_connections(self) -> int:
        with self._lock:
            return self._open_count

    @property
    def idle_connections(self) -> int:
        with self._lock:
            return len(self._idle)

    def table(self, name: str) -> str:
        return self.config.table(name)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @contextmanager
    def session(self) -> Iterator[Any]:
        """Yield a driver session: the thread's transaction session, or a pooled one."""
        if self._tx.conn is not None:
            yield self._tx.conn
            return
        conn, created_at = self._checkout()
        try:
            yield conn
        finally:
            self._checkin(conn, created_at)

    def _checkout(self) -> tuple[Any, float]:
        if self._closed:
            raise ConnectionError(f"Connection '{self.name}' is closed", connection=self.name)
        if not self._slots.acquire(timeout=self.config.pool_timeout_seconds):
            raise ConnectionError(
                f"No free session for '{self.name}' within "
                f"{self.config.pool_timeout_seconds}s "
                f"(pool_max_connections={self.config.pool_max_connections})",
                connection=self.name,
            )
        try:
            return self._take_idle_or_open()
        except BaseException:
            self._slots.release()
            raise

    def _take_idle_or_open(self) -> tuple[Any, float]:
        now = time.monotonic()
        while True:
            entry = self._pop()
            if entry is None:
                break
            if (now - entry.created_at) > self._max_age:
                self._discard(entry.conn)
                continue
            idle_sec = now - entry.last_used
            if idle_sec > _PING_IDLE_THRESHOLD and not self._is_alive(entry.conn):
                self._discard(entry.conn)
                continue
            return entry.conn, entry.created_at

        conn = self._opener(self.config)
        with self._lock:
            self._open_count += 1
        return conn, time.monotonic()

    def _checkin(self, conn: Any, created_at: float, *, discard: bool = False) -> None:
        try:
            with self._lock:
                keep = not (discard or self._closed or _is_broken(conn))
                if keep and len(self._idle) < self.config.pool_max_connections:
                    self._idle.append(
                        _PoolEntry(conn=conn, created_at=created_at, last_used=time.monotonic())
                    )
                    return
            self._discard(conn)
        finally:
            self._slots.release()

    def _pop(self) -> _PoolEntry | None:
        with self._lock:
            if self._idle:
                return self._idle.pop()
        return None

    def _discard(self, conn: Any) -> None:
        close_quiet(conn)
        with self._lock:
            self._open_count = max(self._open_count - 1, 0)

    @staticmethod
    def _is_alive(conn: Any) -> bool:
        """Lightweight ping: attempt a no-op query to detect broken sessions."""
        try:
            cur = conn.cursor()
            cur.execute("SELECT 1")
            cur.fetchall()
            cur.close()
            return True
        except Exception:
            return False

    def ping(self) -> None:
        """Round-trip ``SELECT 1``; raises QueryError on failure and records the check time."""
        with self.session() as conn:
            try:
                cur = conn.cursor()
                cur.execute("SELECT 1")
                cur.fetchall()
                cur.close()
            except DRIVER_ERRORS as e:
                raise QueryError(str(e), sql="SELECT 1", connection=self.name) from e
        self.last_health_check = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _run_control(self, conn: Any, sql: str) -> None:
        try:
            cur = conn.cursor()
            cur.execute(sql)
            cur.close()
        except DRIVER_ERRORS as e:
            raise QueryError(str(e), sql=sql, connection=self.name) from e

    def begin(self) -> int:
        """Open a transaction (or a savepoint when one is already open). Returns the new level."""
        tx = self._tx
        if tx.level == 0:
            conn, created_at = self._checkout()
            try:
                self._run_control(conn, begin_statement(self.driver))
            except BaseException:
                self._checkin(conn, created_at)
                raise
            tx.conn, tx.created_at = conn, created_at
        else:
            self._run_control(tx.conn, f"SAVEPOINT {SAVEPOINT_PREFIX}{tx.level}")
        tx.level += 1
        return tx.level

    def commit(self) -> None:
        tx = self._tx
        if tx.level == 0:
            raise NestedTransactionError(f"No open transaction on '{self.name}' to commit")
        if tx.level > 1:
            savepoint = f"{SAVEPOINT_PREFIX}{tx.level - 1}"
            tx.level -= 1
            try:
                self._run_control(tx.conn, f"RELEASE SAVEPOINT {savepoint}")
            except QueryError:
                self._rollback_quiet(tx.conn, savepoint)
                raise
            return
        try:
            self._run_control(tx.conn, "COMMIT")
        except QueryError:
            self._rollback_quiet(tx.conn)
            raise
        finally:
            self._unpin()

    def rollback(self) -> None:
        tx = self._tx
        if tx.level == 0:
            raise NestedTransactionError(f"No open transaction on '{self.name}' to roll back")
        if tx.level > 1:
            savepoint = f"{SAVEPOINT_PREFIX}{tx.level - 1}"
            tx.level -= 1
            self._run_control(tx.conn, f"ROLLBACK TO SAVEPOINT {savepoint}")
            self._run_control(tx.conn, f"RELEASE SAVEPOINT {savepoint}")
            return
        try:
            self._run_control(tx.conn, "ROLLBACK")
        except QueryError:
            self._unpin(discard=True)
            raise
        self._unpin()

    def _rollback_quiet(self, conn: Any, savepoint: str | None = None) -> None:
        sql = f"ROLLBACK TO SAVEPOINT {savepoint}" if savepoint else "ROLLBACK"
        try:
            self._run_control(conn, sql)
        except QueryError as e:
            _log.warning("%s after failed commit on %s: %s", sql, self.name, e)

    def _unpin(self, *, discard: bool = False) -> None:
        tx = self._tx
        conn, created_at = tx.conn, tx.created_at
        tx.conn, tx.created_at, tx.level = None, 0.0, 0
        if conn is not None:
            self._checkin(conn, created_at, discard=discard)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close idle sessions and refuse new checkouts. Checked-out sessions close on return."""
        with self._lock:
            self._closed = True
            entries, self._idle = self._idle, []
        for e in entries:
            self._discard(e.conn)

    def __repr__(self) -> str:
        return (
            f"<ConnectionHandle {self.name} driver={self.driver.value} "
            f"open={self._open_count}>"
        )
