"""
Backend configuration registry.

Named, immutable ``BackendConfig`` records (driver, host, credentials, charset,
pool limits, timeouts, strict/lenient mode) plus a tagged driver-option variant per
driver family. ``BackendRegistry.from_env`` builds the standard backends (primary
mysql, secondary, analytics, pgsql, sqlite, in-memory testing) from one snapshot of
the environment.
"""

import logging
import os
import threading
from collections.abc import Iterator, Mapping
from enum import Enum
from typing import Annotated, Any, Literal

from dotenv import dotenv_values
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    model_validator,
)

from dbhub.core.config import Settings, parse_env_value
from dbhub.core.config import settings as default_settings
from dbhub.core.exceptions import ConfigError

_log = logging.getLogger(__name__)

DEFAULT_ALIAS = "default"


class DriverEnum(str, Enum):
    """Supported backend drivers."""

    MYSQL = "mysql"
    PGSQL = "pgsql"
    SQLITE = "sqlite"  # embedded file
    MEMORY = "memory"  # in-memory sqlite

    @property
    def family(self) -> str:
        """Option family: memory shares the sqlite options."""
        if self is DriverEnum.MEMORY:
            return DriverEnum.SQLITE.value
        return self.value


# ---------------------------------------------------------------------------
# Driver option variants
# ---------------------------------------------------------------------------


class MySQLOptions(BaseModel):
    """pymysql session options. ``buffered=False`` streams rows with SSDictCursor."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["mysql"] = "mysql"
    buffered: bool = True


class PostgresOptions(BaseModel):
    """psycopg session options. ``emulate_prepares=True`` disables server-side prepares."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["pgsql"] = "pgsql"
    emulate_prepares: bool = False
    sslmode: str = "prefer"
    search_path: str = "public"


class SQLiteOptions(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["sqlite"] = "sqlite"
    foreign_keys: bool = True


DriverOptions = Annotated[
    MySQLOptions | PostgresOptions | SQLiteOptions,
    Field(discriminator="kind"),
]

_DEFAULT_OPTIONS: dict[str, type[BaseModel]] = {
    "mysql": MySQLOptions,
    "pgsql": PostgresOptions,
    "sqlite": SQLiteOptions,
}


# ---------------------------------------------------------------------------
# BackendConfig
# ---------------------------------------------------------------------------


class BackendConfig(BaseModel):
    """One named backend. Construction fails on invalid driver/option combinations."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., min_length=1)
    driver: DriverEnum
    host: str | None = None
    port: int | None = Field(default=None, ge=1, le=65535)
    database: str = ""
    username: str | None = None
    password: SecretStr = SecretStr("")
    charset: str | None = None
    collation: str | None = None
    prefix: str = ""
    strict: bool = True
    connect_timeout_seconds: float = Field(default=30.0, gt=0)
    statement_timeout_seconds: float | None = Field(default=None, gt=0)
    pool_max_connections: int = Field(default=10, ge=1)
    pool_timeout_seconds: float = Field(default=30.0, gt=0)
    options: DriverOptions

    @model_validator(mode="before")
    @classmethod
    def _fill_default_options(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("options") is not None:
            return data
        try:
            family = DriverEnum(data.get("driver")).family
        except ValueError:
            return data  # driver validation reports it
        return {**data, "options": _DEFAULT_OPTIONS[family]()}

    @model_validator(mode="before")
    @classmethod
    def _memory_database(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("driver") in (DriverEnum.MEMORY, "memory"):
            return {**data, "database": ":memory:"}
        return data

    @model_validator(mode="after")
    def _check_combination(self) -> "BackendConfig":
        if self.options.kind != self.driver.family:
            raise ValueError(
                f"{type(self.options).__name__} cannot be used with driver '{self.driver.value}'"
            )
        if self.driver in (DriverEnum.MYSQL, DriverEnum.PGSQL):
            for field in ("host", "database", "username"):
                if not getattr(self, field):
                    raise ValueError(f"driver '{self.driver.value}' requires {field}")
        if self.driver == DriverEnum.SQLITE and not self.database:
            raise ValueError("driver 'sqlite' requires a database path")
        if self.driver == DriverEnum.MEMORY and self.pool_max_connections != 1:
            raise ValueError(
                "driver 'memory' requires pool_max_connections=1 "
                "(each in-memory session is a separate database)"
            )
        return self

    def table(self, name: str) -> str:
        """Table name with this backend's prefix applied."""
        return f"{self.prefix}{name}"

    def describe(self) -> dict[str, Any]:
        """Non-secret metadata for diagnostics."""
        return {
            "name": self.name,
            "driver": self.driver.value,
            "host": self.host or "N/A",
            "database": self.database,
        }


def build_config(**fields: Any) -> BackendConfig:
    """Construct a BackendConfig, reporting validation failures as ConfigError."""
    try:
        return BackendConfig(**fields)
    except ValidationError as e:
        name = fields.get("name", "?")
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration for backend '{name}': {problems}") from e


# ---------------------------------------------------------------------------
# Environment snapshot
# ---------------------------------------------------------------------------


class EnvSnapshot:
    """Environment values captured once; lookups coerce literal words."""

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        *,
        env_file: str | None = None,
    ) -> None:
        data: dict[str, str] = {}
        if env_file and os.path.exists(env_file):
            # Real environment wins over the file.
            data.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        data.update(os.environ if environ is None else environ)
        self._data = data

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return parse_env_value(raw)


def _standard_backends(env: EnvSnapshot, settings: Settings) -> list[dict[str, Any]]:
    pool_max = env.get("DB_POOL_MAX_CONNECTIONS", settings.DB_POOL_MAX_CONNECTIONS)
    pool_timeout = env.get("DB_POOL_TIMEOUT", settings.DB_POOL_TIMEOUT)
    statement_timeout = env.get("DB_STATEMENT_TIMEOUT", settings.DB_STATEMENT_TIMEOUT)
    common = {
        "pool_max_connections": pool_max,
        "pool_timeout_seconds": pool_timeout,
    }

    def mysql_like(name: str, env_prefix: str, **overrides: Any) -> dict[str, Any]:
        driver = env.get(f"{env_prefix}CONNECTION", "mysql") if env_prefix != "DB_" else "mysql"
        record = {
            "name": name,
            "driver": driver,
            "host": env.get(f"{env_prefix}HOST", "localhost"),
            "port": env.get(f"{env_prefix}PORT", "5432" if driver == "pgsql" else "3306"),
            "database": overrides.pop("database"),
            "username": env.get(f"{env_prefix}USERNAME", overrides.pop("username")),
            "password": env.get(f"{env_prefix}PASSWORD", "") or "",
            "charset": "utf8mb4",
            "collation": "utf8mb4_unicode_ci",
            "strict": True,
            "connect_timeout_seconds": 30,
            "statement_timeout_seconds": statement_timeout,
            **common,
        }
        record.update(overrides)
        if record["driver"] != "mysql":
            record.update(charset="utf8", collation=None)
        return record

    analytics_driver = env.get("DB_ANALYTICS_CONNECTION", "mysql")
    analytics_options = MySQLOptions(buffered=False) if analytics_driver == "mysql" else None

    return [
        mysql_like(
            "mysql",
            "DB_",
            database=env.get("DB_DATABASE", "app"),
            username="root",
        ),
        mysql_like(
            "secondary",
            "DB_SECONDARY_",
            database=env.get("DB_SECONDARY_DATABASE", "secondary_db"),
            username="secondary_user",
        ),
        mysql_like(
            "analytics",
            "DB_ANALYTICS_",
            database=env.get("DB_ANALYTICS_DATABASE", "analytics"),
            username="analytics_user",
            prefix="analytics_",
            strict=False,
            connect_timeout_seconds=60,
            statement_timeout_seconds=env.get(
                "DB_ANALYTICS_STATEMENT_TIMEOUT", settings.DB_ANALYTICS_STATEMENT_TIMEOUT
            ),
            options=analytics_options,
        ),
        {
            "name": "pgsql",
            "driver": env.get("DB_POSTGRES_CONNECTION", "pgsql"),
            "host": env.get("DB_POSTGRES_HOST", "localhost"),
            "port": env.get("DB_POSTGRES_PORT", "5432"),
            "database": env.get("DB_POSTGRES_DATABASE", "postgres_db"),
            "username": env.get("DB_POSTGRES_USERNAME", "postgres_user"),
            "password": env.get("DB_POSTGRES_PASSWORD", "") or "",
            "charset": "utf8",
            "connect_timeout_seconds": 30,
            "statement_timeout_seconds": statement_timeout,
            **common,
        },
        {
            "name": "sqlite",
            "driver": env.get("DB_SQLITE_CONNECTION", "sqlite"),
            "database": env.get("DB_SQLITE_DATABASE", "storage/database.sqlite"),
            "connect_timeout_seconds": 30,
            **common,
        },
        {
            "name": "testing",
            "driver": "memory",
            "pool_max_connections": 1,
            "pool_timeout_seconds": pool_timeout,
        },
    ]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class BackendRegistry:
    """Named backend records and the designated default."""

    def __init__(self, configs: list[BackendConfig], default: str) -> None:
        by_name: dict[str, BackendConfig] = {}
        for cfg in configs:
            if cfg.name in by_name or cfg.name == DEFAULT_ALIAS:
                raise ConfigError(f"Duplicate or reserved backend name: '{cfg.name}'")
            by_name[cfg.name] = cfg
        if default not in by_name:
            raise ConfigError(f"Default connection '{default}' is not configured")
        self._configs = by_name
        self._default = default
        self._lock = threading.Lock()

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        *,
        env_file: str | None = None,
        settings: Settings | None = None,
    ) -> "BackendRegistry":
        """Build the standard backends from one environment snapshot."""
        s = settings or default_settings
        env = EnvSnapshot(environ, env_file=env_file)
        configs = [build_config(**record) for record in _standard_backends(env, s)]
        default = env.get("DB_CONNECTION", s.DB_CONNECTION)
        return cls(configs, default=default)

    @property
    def default(self) -> str:
        return self._default

    def canonical(self, name: str | None = None) -> str:
        """Map ``None``/``"default"`` to the default backend's name; reject unknown names."""
        if name is None or name == DEFAULT_ALIAS:
            return self._default
        if name not in self._configs:
            raise ConfigError(f"Database connection [{name}] not configured.")
        return name

    def resolve(self, name: str | None = None) -> BackendConfig:
        return self._configs[self.canonical(name)]

    def names(self) -> list[str]:
        return list(self._configs)

    def register(self, config: BackendConfig) -> None:
        """Add a backend at runtime. Existing names are never replaced."""
        with self._lock:
            if config.name in self._configs or config.name == DEFAULT_ALIAS:
                raise ConfigError(f"Backend '{config.name}' is already configured")
            configs = dict(self._configs)
            configs[config.name] = config
            self._configs = configs
        _log.debug("Registered backend %s (%s)", config.name, config.driver.value)

    def __contains__(self, name: object) -> bool:
        return name == DEFAULT_ALIAS or name in self._configs

    def __iter__(self) -> Iterator[BackendConfig]:
        return iter(list(self._configs.values()))

    def __len__(self) -> int:
        return len(self._configs)
