"""Shared fixtures: managers backed by in-memory / file sqlite backends (no server needed)."""

import logging
from collections.abc import Callable, Iterator

import pytest

from dbhub import (
    BackendConfig,
    BackendRegistry,
    ConnectionFactory,
    ConnectionManager,
    QueryLogger,
)

USERS_DDL = (
    "CREATE TABLE users ("
    " id INTEGER PRIMARY KEY AUTOINCREMENT,"
    " name TEXT NOT NULL,"
    " email TEXT UNIQUE"
    ")"
)


def memory_backend(name: str = "testing", **overrides) -> BackendConfig:
    fields = {
        "name": name,
        "driver": "memory",
        "pool_max_connections": 1,
        "pool_timeout_seconds": 2,
    }
    fields.update(overrides)
    return BackendConfig(**fields)


@pytest.fixture
def query_logger() -> QueryLogger:
    return QueryLogger(
        log_queries=True,
        slow_query_threshold_ms=2000,
        sink=logging.getLogger("dbhub.query"),
    )


@pytest.fixture
def make_manager(
    query_logger: QueryLogger,
) -> Iterator[Callable[..., ConnectionManager]]:
    """Build isolated managers; every manager built here is closed after the test."""
    managers: list[ConnectionManager] = []

    def _make(
        *configs: BackendConfig,
        default: str | None = None,
        factory: ConnectionFactory | None = None,
    ) -> ConnectionManager:
        configs = configs or (memory_backend(),)
        registry = BackendRegistry(list(configs), default=default or configs[0].name)
        m = ConnectionManager(registry, factory=factory, query_logger=query_logger)
        managers.append(m)
        return m

    yield _make
    for m in managers:
        m.close()


@pytest.fixture
def memory_config() -> Callable[..., BackendConfig]:
    return memory_backend


@pytest.fixture
def manager(make_manager: Callable[..., ConnectionManager]) -> ConnectionManager:
    """Default backend "testing" (in-memory sqlite) with a users table."""
    m = make_manager()
    m.statement(USERS_DDL)
    return m


@pytest.fixture
def users_ddl() -> str:
    return USERS_DDL
