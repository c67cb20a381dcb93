"""
Process settings for the connection manager.

Values come from the environment (and an optional ``.env`` file). Literal words
such as ``(true)``, ``empty`` or ``null`` are coerced the same way for settings
and for per-backend records (see ``parse_env_value``).
"""

from typing import Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LITERALS: dict[str, Any] = {
    "true": True,
    "(true)": True,
    "false": False,
    "(false)": False,
    "empty": "",
    "(empty)": "",
    "null": None,
    "(null)": None,
}


def parse_env_value(value: Any) -> Any:
    """
    Coerce a raw environment string.

    ``true``/``(true)`` -> True, ``false``/``(false)`` -> False,
    ``empty``/``(empty)`` -> "", ``null``/``(null)`` -> None (case-insensitive).
    Anything else (including non-strings) is returned unchanged.
    """
    if not isinstance(value, str):
        return value
    key = value.strip().lower()
    if key in _LITERALS:
        return _LITERALS[key]
    return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    DB_CONNECTION: str = "mysql"

    # Query logging
    DB_LOGGING_ENABLED: bool = True
    LOG_QUERIES: bool = False
    LOG_SLOW_QUERIES: bool = True
    SLOW_QUERY_THRESHOLD: int = 2000  # ms
    LOG_CONNECTIONS: bool = True

    # Pooling (per backend)
    DB_POOL_MAX_CONNECTIONS: int = 10
    DB_POOL_TIMEOUT: float = 30.0  # seconds to wait for a free session
    DB_POOL_MAX_AGE_SEC: int = 600

    # Statement timeouts (seconds); None = driver default
    DB_STATEMENT_TIMEOUT: float | None = None
    DB_ANALYTICS_STATEMENT_TIMEOUT: float | None = 600.0

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_literals(cls, value: Any) -> Any:
        return parse_env_value(value)


settings = Settings()  # type: ignore
