"""Unit tests for core.instrumentation: QueryLogEntry, QueryLogger, format_bytes, memory_usage."""

import logging
from unittest.mock import MagicMock

import pytest

from dbhub.core import instrumentation
from dbhub.core.config import Settings
from dbhub.core.instrumentation import (
    QueryLogEntry,
    QueryLogger,
    format_bytes,
    memory_usage,
)


@pytest.fixture
def caplog_query(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    caplog.set_level(logging.INFO, logger="dbhub.query")
    return caplog


# --- QueryLogEntry ---


def test_entry_is_slow_above_threshold() -> None:
    slow = QueryLogEntry.build("SELECT 1", None, 2500, "mysql", 2000)
    fast = QueryLogEntry.build("SELECT 1", None, 1500, "mysql", 2000)
    edge = QueryLogEntry.build("SELECT 1", None, 2000, "mysql", 2000)
    assert slow.is_slow is True
    assert fast.is_slow is False
    assert edge.is_slow is False


def test_entry_message() -> None:
    entry = QueryLogEntry.build("SELECT * FROM t WHERE id = ?", [7], 2500.123, "mysql", 2000)
    assert entry.message() == (
        "[SLOW QUERY] Query on 'mysql' (2500.12ms): SELECT * FROM t WHERE id = ? | Params: [7]"
    )
    failed = QueryLogEntry.build("SELECT x", None, 1.0, "pgsql", 2000, error="no such column")
    assert failed.message() == "Query on 'pgsql' (1.00ms): SELECT x | Error: no such column"


# --- QueryLogger ---


def test_slow_query_logged_at_warning(caplog_query: pytest.LogCaptureFixture) -> None:
    ql = QueryLogger()
    ql.record(ql.entry("SELECT sleep(3)", None, 2500, "mysql"))
    ql.record(ql.entry("SELECT 1", None, 1500, "mysql"))
    records = [r for r in caplog_query.records if r.name == "dbhub.query"]
    assert len(records) == 1
    assert records[0].levelno == logging.WARNING
    assert records[0].getMessage().startswith("[SLOW QUERY] Query on 'mysql'")
    assert ql.counts() == {"recorded": 2, "slow": 1, "failed": 0, "dropped": 0}


def test_log_queries_logs_everything_at_info(caplog_query: pytest.LogCaptureFixture) -> None:
    ql = QueryLogger(log_queries=True, log_slow_queries=False)
    ql.record(ql.entry("SELECT 1", {"a": 1}, 3.0, "sqlite"))
    ql.record(ql.entry("SELECT 2", None, 5000, "sqlite"))
    levels = [r.levelno for r in caplog_query.records if r.name == "dbhub.query"]
    assert levels == [logging.INFO, logging.WARNING]
    assert 'Params: {"a": 1}' in caplog_query.records[0].getMessage()


def test_slow_queries_silent_when_both_flags_off(caplog_query: pytest.LogCaptureFixture) -> None:
    ql = QueryLogger(log_queries=False, log_slow_queries=False)
    ql.record(ql.entry("SELECT 2", None, 5000, "sqlite"))
    assert not [r for r in caplog_query.records if r.name == "dbhub.query"]
    assert ql.counts()["slow"] == 1


def test_failed_query_logged_at_warning(caplog_query: pytest.LogCaptureFixture) -> None:
    ql = QueryLogger(log_queries=False, log_slow_queries=False)
    ql.record(ql.entry("SELECT x", None, 1.0, "mysql", error="Unknown column 'x'"))
    records = [r for r in caplog_query.records if r.name == "dbhub.query"]
    assert len(records) == 1
    assert records[0].levelno == logging.WARNING
    assert "Error: Unknown column 'x'" in records[0].getMessage()
    assert ql.counts()["failed"] == 1


def test_disabled_logger_writes_nothing_but_counts(caplog_query: pytest.LogCaptureFixture) -> None:
    ql = QueryLogger(enabled=False, log_queries=True)
    ql.record(ql.entry("SELECT 1", None, 9000, "mysql", error="boom"))
    assert not [r for r in caplog_query.records if r.name == "dbhub.query"]
    assert ql.counts() == {"recorded": 1, "slow": 1, "failed": 1, "dropped": 0}


def test_failing_sink_is_swallowed() -> None:
    sink = MagicMock(spec=logging.Logger)
    sink.info.side_effect = OSError("disk full")
    ql = QueryLogger(log_queries=True, sink=sink)
    ql.record(ql.entry("SELECT 1", None, 1.0, "mysql"))
    assert ql.counts()["dropped"] == 1
    assert ql.counts()["recorded"] == 1


def test_unserialisable_bindings_do_not_raise() -> None:
    sink = MagicMock(spec=logging.Logger)
    ql = QueryLogger(log_queries=True, sink=sink)
    ql.record(ql.entry("SELECT ?", [object()], 1.0, "mysql"))
    sink.info.assert_called_once()


def test_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_QUERIES", "true")
    monkeypatch.setenv("SLOW_QUERY_THRESHOLD", "500")
    monkeypatch.setenv("DB_LOGGING_ENABLED", "(false)")
    ql = QueryLogger.from_settings(Settings(_env_file=None))
    assert ql.log_queries is True
    assert ql.enabled is False
    assert ql.slow_query_threshold_ms == 500.0


# --- memory ---


@pytest.mark.parametrize(
    ("num", "expected"),
    [
        (0, "0 B"),
        (512, "512 B"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5.0 MB"),
        (3 * 1024**3 + 1, "3.0 GB"),
    ],
)
def test_format_bytes(num: int, expected: str) -> None:
    assert format_bytes(num) == expected


def test_memory_usage() -> None:
    current, peak = memory_usage()
    assert current > 0
    assert peak >= current


def test_memory_usage_without_rusage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(instrumentation, "resource", None)
    current, peak = memory_usage()
    assert peak >= current > 0
