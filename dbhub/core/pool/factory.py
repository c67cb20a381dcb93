"""
ConnectionFactory: BackendConfig -> ConnectionHandle.

The first session is opened eagerly so an unreachable backend fails at creation
time instead of on the first statement. No retries.
"""

import logging
from typing import Any

from dbhub.core.backends import BackendConfig, DriverEnum
from dbhub.core.config import Settings
from dbhub.core.config import settings as default_settings

from .connect import connect
from .handle import ConnectionHandle

_log = logging.getLogger(__name__)


class ConnectionFactory:
    def __init__(self, settings: Settings | None = None) -> None:
        s = settings or default_settings
        self._max_age = float(s.DB_POOL_MAX_AGE_SEC)

    def open(self, config: BackendConfig) -> Any:
        """Open one more driver session for *config* (raises ConnectionError)."""
        return connect(config)

    def create(self, config: BackendConfig) -> ConnectionHandle:
        conn = self.open(config)
        _log.debug("Opened first session for %s (%s)", config.name, config.driver.value)
        # An in-memory database lives only as long as its single session.
        max_age = float("inf") if config.driver == DriverEnum.MEMORY else self._max_age
        return ConnectionHandle(config, opener=self.open, initial_conn=conn, max_age=max_age)
