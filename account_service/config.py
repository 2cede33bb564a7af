"""Application settings loaded from the environment.

A ``.env`` file is honoured through :func:`dotenv.load_dotenv`, the values
are parsed into :class:`Settings` and validated once so that a bad
deployment fails fast at startup instead of on the first request.
"""

from __future__ import annotations

import os
from enum import Enum
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError

from account_service.errors import ConfigurationError


class DatabaseDriver(str, Enum):
    SQLITE = "sqlite"
    POSTGRES = "postgres"
    MONGO = "mongo"

    @property
    def is_relational(self) -> bool:
        return self is not DatabaseDriver.MONGO


class DatabaseSettings(BaseModel):
    """Connection parameters for every supported driver."""

    model_config = ConfigDict(frozen=True)

    driver: DatabaseDriver = DatabaseDriver.SQLITE
    table_prefix: str = "fx_"
    auto_migrate: bool = False

    sqlite_path: str = "./data/app.db"

    postgres_dsn: Optional[str] = None
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "postgres"
    postgres_password: str = ""
    postgres_database: str = "account_service"
    postgres_sslmode: str = "disable"

    mongo_uri: str = "mongodb://localhost:27017"
    mongo_database: str = "account_service"

    def sqlalchemy_url(self) -> str:
        """Return the async SQLAlchemy URL for the relational drivers."""
        if self.driver is DatabaseDriver.SQLITE:
            return f"sqlite+aiosqlite:///{self.sqlite_path}"
        if self.driver is DatabaseDriver.POSTGRES:
            if self.postgres_dsn:
                return self.postgres_dsn
            return (
                f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_database}"
            )
        raise ConfigurationError(f"driver {self.driver.value!r} has no SQLAlchemy URL")


class JWTSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    secret: str
    algorithm: str = "HS256"
    expiration_minutes: int = 60 * 24
    issuer: str = "account-service"


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: str = "info"
    format: str = "json"
    output: str = "stdout"


class Settings(BaseModel):
    """Top-level settings object passed explicitly through the application."""

    model_config = ConfigDict(frozen=True)

    env: str = "development"
    debug: bool = False
    host: str = "localhost"
    port: int = 8080

    database: DatabaseSettings = DatabaseSettings()
    jwt: JWTSettings
    logging: LoggingSettings = LoggingSettings()

    @property
    def is_development(self) -> bool:
        return self.env == "development"

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"


def _flag(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer") from exc


def _validate(settings: Settings) -> None:
    if not settings.jwt.secret:
        raise ConfigurationError("JWT_SECRET is required")
    if settings.jwt.expiration_minutes <= 0:
        raise ConfigurationError("JWT_EXPIRATION_MINUTES must be positive")

    db = settings.database
    if not db.table_prefix.strip():
        raise ConfigurationError("DB_TABLE_PREFIX is required")

    if db.driver is DatabaseDriver.SQLITE and not db.sqlite_path:
        raise ConfigurationError("SQLITE_PATH is required when using sqlite driver")
    if db.driver is DatabaseDriver.POSTGRES and not db.postgres_dsn:
        if not db.postgres_host:
            raise ConfigurationError("POSTGRES_HOST is required when using postgres driver")
        if not db.postgres_user:
            raise ConfigurationError("POSTGRES_USER is required when using postgres driver")
        if not db.postgres_database:
            raise ConfigurationError("POSTGRES_DATABASE is required when using postgres driver")
    if db.driver is DatabaseDriver.MONGO:
        if not db.mongo_uri:
            raise ConfigurationError("MONGO_URI is required when using mongo driver")
        if not db.mongo_database:
            raise ConfigurationError("MONGO_DATABASE is required when using mongo driver")


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from ``environ`` (defaults to ``os.environ``).

    Raises :class:`ConfigurationError` when a value is missing or invalid.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    driver_name = environ.get("DB_DRIVER", DatabaseDriver.SQLITE.value).strip().lower()
    try:
        driver = DatabaseDriver(driver_name)
    except ValueError as exc:
        supported = ", ".join(d.value for d in DatabaseDriver)
        raise ConfigurationError(
            f"unsupported database driver: {driver_name} (supported: {supported})"
        ) from exc

    try:
        settings = Settings(
            env=environ.get("APP_ENV", "development"),
            debug=_flag(environ.get("APP_DEBUG")),
            host=environ.get("APP_HOST", "localhost"),
            port=_int(environ, "APP_PORT", 8080),
            database=DatabaseSettings(
                driver=driver,
                table_prefix=environ.get("DB_TABLE_PREFIX", "fx_"),
                auto_migrate=_flag(environ.get("DB_AUTO_MIGRATE")),
                sqlite_path=environ.get("SQLITE_PATH", "./data/app.db"),
                postgres_dsn=environ.get("POSTGRES_DSN") or None,
                postgres_host=environ.get("POSTGRES_HOST", "localhost"),
                postgres_port=_int(environ, "POSTGRES_PORT", 5432),
                postgres_user=environ.get("POSTGRES_USER", "postgres"),
                postgres_password=environ.get("POSTGRES_PASSWORD", ""),
                postgres_database=environ.get("POSTGRES_DATABASE", "account_service"),
                postgres_sslmode=environ.get("POSTGRES_SSLMODE", "disable"),
                mongo_uri=environ.get("MONGO_URI", "mongodb://localhost:27017"),
                mongo_database=environ.get("MONGO_DATABASE", "account_service"),
            ),
            jwt=JWTSettings(
                secret=environ.get("JWT_SECRET", ""),
                algorithm=environ.get("JWT_ALGORITHM", "HS256"),
                expiration_minutes=_int(environ, "JWT_EXPIRATION_MINUTES", 60 * 24),
                issuer=environ.get("JWT_ISSUER", "account-service"),
            ),
            logging=LoggingSettings(
                level=environ.get("LOG_LEVEL", "info"),
                format=environ.get("LOG_FORMAT", "json"),
                output=environ.get("LOG_OUTPUT", "stdout"),
            ),
        )
    except PydanticValidationError as exc:
        raise ConfigurationError(f"configuration validation failed: {exc}") from exc

    _validate(settings)
    return settings
