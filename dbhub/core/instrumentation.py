"""
Query instrumentation: one QueryLogEntry per executed statement, written to a log sink.

``QueryLogger.record`` is best-effort. A failing sink is swallowed and counted, so
logging can never break or slow down the caller's statement path.
"""

import json
import logging
import sys
import threading
from typing import Any, NamedTuple

import psutil

from dbhub.core.config import Settings
from dbhub.core.config import settings as default_settings

if sys.platform == "win32":
    resource = None  # peak comes from psutil's peak_wset
else:
    import resource

QUERY_LOGGER_NAME = "dbhub.query"


class QueryLogEntry(NamedTuple):
    sql: str
    bindings: Any
    elapsed_ms: float
    connection_name: str
    is_slow: bool
    error: str | None = None

    @classmethod
    def build(
        cls,
        sql: str,
        bindings: Any,
        elapsed_ms: float,
        connection_name: str,
        threshold_ms: float,
        *,
        error: str | None = None,
    ) -> "QueryLogEntry":
        return cls(
            sql=sql,
            bindings=bindings,
            elapsed_ms=elapsed_ms,
            connection_name=connection_name,
            is_slow=elapsed_ms > threshold_ms,
            error=error,
        )

    def message(self) -> str:
        msg = f"Query on '{self.connection_name}' ({self.elapsed_ms:.2f}ms): {self.sql}"
        if self.bindings:
            msg += f" | Params: {json.dumps(self.bindings, default=str)}"
        if self.is_slow:
            msg = "[SLOW QUERY] " + msg
        if self.error is not None:
            msg += f" | Error: {self.error}"
        return msg


class QueryLogger:
    """
    Writes QueryLogEntry records to ``sink`` (the ``dbhub.query`` logger by default).

    - enabled=False: nothing is written.
    - failed statements: WARNING whenever enabled.
    - slow statements: WARNING when log_slow_queries or log_queries.
    - everything else: INFO only when log_queries.
    """

    def __init__(
        self,
        *,
        enabled: bool = True,
        log_queries: bool = False,
        log_slow_queries: bool = True,
        slow_query_threshold_ms: float = 2000,
        sink: logging.Logger | None = None,
    ) -> None:
        self.enabled = enabled
        self.log_queries = log_queries
        self.log_slow_queries = log_slow_queries
        self.slow_query_threshold_ms = float(slow_query_threshold_ms)
        self._sink = sink or logging.getLogger(QUERY_LOGGER_NAME)
        self._lock = threading.Lock()
        self._counts = {"recorded": 0, "slow": 0, "failed": 0, "dropped": 0}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "QueryLogger":
        s = settings or default_settings
        return cls(
            enabled=s.DB_LOGGING_ENABLED,
            log_queries=s.LOG_QUERIES,
            log_slow_queries=s.LOG_SLOW_QUERIES,
            slow_query_threshold_ms=s.SLOW_QUERY_THRESHOLD,
        )

    def entry(
        self,
        sql: str,
        bindings: Any,
        elapsed_ms: float,
        connection_name: str,
        *,
        error: str | None = None,
    ) -> QueryLogEntry:
        return QueryLogEntry.build(
            sql,
            bindings,
            elapsed_ms,
            connection_name,
            self.slow_query_threshold_ms,
            error=error,
        )

    def record(self, entry: QueryLogEntry) -> None:
        """Best-effort: never raises. Sink failures only bump the ``dropped`` counter."""
        try:
            self._count(entry)
            if not self.enabled:
                return
            if entry.error is not None:
                self._sink.warning(entry.message())
            elif entry.is_slow and (self.log_slow_queries or self.log_queries):
                self._sink.warning(entry.message())
            elif self.log_queries:
                self._sink.info(entry.message())
        except Exception:
            with self._lock:
                self._counts["dropped"] += 1

    def _count(self, entry: QueryLogEntry) -> None:
        with self._lock:
            self._counts["recorded"] += 1
            if entry.is_slow:
                self._counts["slow"] += 1
            if entry.error is not None:
                self._counts["failed"] += 1

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)


# ---------------------------------------------------------------------------
# Process memory
# ---------------------------------------------------------------------------


def format_bytes(num: float, precision: int = 2) -> str:
    """1536 -> "1.5 KB"."""
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while num > 1024 and i < len(units) - 1:
        num /= 1024
        i += 1
    return f"{round(num, precision)} {units[i]}"


def memory_usage() -> tuple[int, int]:
    """(current RSS, peak RSS) of this process in bytes."""
    mem = psutil.Process().memory_info()
    current = mem.rss
    peak = getattr(mem, "peak_wset", None)  # Windows
    if peak is None and resource is not None:
        # ru_maxrss: kilobytes on Linux, bytes on macOS
        maxrss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        peak = maxrss if sys.platform == "darwin" else maxrss * 1024
    if peak is None:
        peak = current
    return current, max(int(peak), current)
