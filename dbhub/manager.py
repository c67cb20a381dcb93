"""
ConnectionManager: one entry point for every configured backend.

Owns the name -> ConnectionHandle map. Handles are created lazily, at most once per
backend name, and reused for the lifetime of the manager. A backend that fails to
connect is not cached; the next call retries. Resolving one backend never touches
another, so partial availability (e.g. analytics down, mysql up) is normal.
"""

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any, TypeVar

from dbhub.core.backends import BackendConfig, BackendRegistry
from dbhub.core.config import Settings
from dbhub.core.config import settings as default_settings
from dbhub.core.instrumentation import QueryLogger, format_bytes, memory_usage
from dbhub.core.pool import ConnectionFactory, ConnectionHandle, describe, probe
from dbhub.engines.sql import BoundQueries, QueryRouter, TransactionCoordinator
from dbhub.engines.sql.router import Bindings

_log = logging.getLogger(__name__)

T = TypeVar("T")


class ConnectionManager:
    """Per-name lazy connection registry plus the query/transaction facade."""

    def __init__(
        self,
        registry: BackendRegistry | None = None,
        *,
        factory: ConnectionFactory | None = None,
        query_logger: QueryLogger | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or default_settings
        self.registry = registry or BackendRegistry.from_env(
            env_file=self._settings.model_config.get("env_file"), settings=self._settings
        )
        self._factory = factory or ConnectionFactory(self._settings)
        self.query_logger = query_logger or QueryLogger.from_settings(self._settings)
        self._handles: dict[str, ConnectionHandle] = {}
        self._init_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._initialized = False
        self.router = QueryRouter(self.connection, self.query_logger)
        self.transactions = TransactionCoordinator(self.connection, self.router)

    # ------------------------------------------------------------------
    # Connection registry
    # ------------------------------------------------------------------

    def connection(self, name: str | None = None) -> ConnectionHandle:
        """Return the handle for *name* (default backend when None), creating it once."""
        key = self.registry.canonical(name)
        handle = self._handles.get(key)
        if handle is not None:
            return handle
        with self._init_lock(key):
            handle = self._handles.get(key)
            if handle is None:
                handle = self._create(self.registry.resolve(key))
                with self._lock:
                    self._handles[key] = handle
                    self._initialized = True
        return handle

    def _init_lock(self, key: str) -> threading.Lock:
        with self._lock:
            lock = self._init_locks.get(key)
            if lock is None:
                lock = self._init_locks[key] = threading.Lock()
            return lock

    def _create(self, config: BackendConfig) -> ConnectionHandle:
        handle = self._factory.create(config)
        if self._settings.LOG_CONNECTIONS:
            _log.info(
                "Connected to %s (driver=%s host=%s database=%s)",
                config.name,
                config.driver.value,
                config.host or "N/A",
                config.database,
            )
        return handle

    def register(self, config: BackendConfig) -> None:
        """Add a backend at runtime; it is connected lazily like the others."""
        self.registry.register(config)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def select(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> list[dict[str, Any]]:
        return self.router.select(sql, bindings, connection)

    def select_one(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> dict[str, Any] | None:
        return self.router.select_one(sql, bindings, connection)

    def insert(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> int:
        return self.router.insert(sql, bindings, connection)

    def insert_get_id(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> Any:
        return self.router.insert_get_id(sql, bindings, connection)

    def update(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> int:
        return self.router.update(sql, bindings, connection)

    def delete(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> int:
        return self.router.delete(sql, bindings, connection)

    def statement(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> Any:
        return self.router.statement(sql, bindings, connection)

    def execute(
        self, sql: str, bindings: Bindings = None, connection: str | None = None
    ) -> Any:
        return self.router.execute(sql, bindings, connection)

    def cursor(
        self,
        sql: str,
        bindings: Bindings = None,
        connection: str | None = None,
        *,
        batch_size: int = 1000,
    ) -> Iterator[dict[str, Any]]:
        return self.router.cursor(sql, bindings, connection, batch_size=batch_size)

    def on(self, connection: str | None) -> BoundQueries:
        return self.router.on(connection)

    def run_in_transaction(
        self, work: Callable[[BoundQueries], T], connection: str | None = None
    ) -> T:
        return self.transactions.run_in_transaction(work, connection)

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    def test_connection(self, name: str) -> dict[str, Any]:
        """Round-trip ``SELECT 1``; never raises (see core.pool.health.probe)."""
        return probe(name, self.connection)

    def connections_info(self) -> dict[str, dict[str, Any]]:
        """Status of every configured backend, each resolved independently."""
        return {cfg.name: describe(cfg, self.connection) for cfg in self.registry}

    def stats(self) -> dict[str, Any]:
        with self._lock:
            active = len(self._handles)
        current, peak = memory_usage()
        counts = self.query_logger.counts()
        return {
            "initialized": self._initialized,
            "active_connections": active,
            "memory_usage": format_bytes(current),
            "peak_memory_usage": format_bytes(peak),
            "queries": counts["recorded"],
            "slow_queries": counts["slow"],
            "failed_queries": counts["failed"],
        }

    def close(self) -> None:
        """Close every pooled session and forget all handles (shutdown / tests)."""
        with self._lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for h in handles:
            h.close()


_connection_manager: ConnectionManager | None = None
_manager_lock = threading.Lock()


def get_connection_manager() -> ConnectionManager:
    """Return the process-wide ConnectionManager (thread-safe double-checked locking)."""
    global _connection_manager
    if _connection_manager is None:
        with _manager_lock:
            if _connection_manager is None:
                _connection_manager = ConnectionManager()
    return _connection_manager
