"""
Connection health probes.

Both helpers turn every failure into a structured result so callers can probe
backend health without exception handling.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from dbhub.core.backends import BackendConfig

from .connect import server_version
from .handle import ConnectionHandle

_log = logging.getLogger(__name__)


def health_check(handle: ConnectionHandle) -> bool:
    """
    Run SELECT 1 on the handle and return True if no exception.
    """
    try:
        handle.ping()
        return True
    except Exception:
        return False


def probe(name: str, resolve: Callable[[str], ConnectionHandle]) -> dict[str, Any]:
    """
    Resolve *name* and round-trip ``SELECT 1``.

    Returns {"success", "message", "elapsed_ms", "connection", "server_version"}.
    ``elapsed_ms`` covers resolution plus the round-trip; it is None on failure.
    """
    start = time.perf_counter()
    try:
        handle = resolve(name)
        handle.ping()
        with handle.session() as conn:
            version = server_version(conn, handle.driver)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
        return {
            "success": True,
            "message": "Connection successful",
            "elapsed_ms": elapsed_ms,
            "connection": name,
            "server_version": version,
        }
    except Exception as e:
        _log.info("Connection test for %s failed: %s", name, e)
        return {
            "success": False,
            "message": str(e) or type(e).__name__,
            "elapsed_ms": None,
            "connection": name,
            "server_version": None,
        }


def describe(config: BackendConfig, resolve: Callable[[str], ConnectionHandle]) -> dict[str, Any]:
    """Connection info for one backend: status "connected" with server version, or "error"."""
    info = config.describe()
    try:
        handle = resolve(config.name)
        with handle.session() as conn:
            version = server_version(conn, handle.driver)
        info.update({"status": "connected", "server_version": version})
    except Exception as e:
        info.update({"status": "error", "error": str(e) or type(e).__name__})
    return info
