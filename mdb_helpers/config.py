"""
Configuration management for MDB_HELPERS.

The connection URI and connection options come from the environment, and
callers may override any option when they initialize the connection.
Overrides are merged onto the defaults without mutating them.
"""

import os
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    APP_NAME,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_KEEP_ALIVE_MS,
    DEFAULT_RECONNECT_INTERVAL_MS,
    DEFAULT_RECONNECT_TRIES,
    DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
    DEFAULT_SHUTDOWN_TIMEOUT_MS,
    ENV_CONNECTION_STRING,
    ENV_MODE,
    ENV_TEST_CONNECTION_STRING,
    INVALID_DB_NAME_CHARACTERS,
    TEST_MODE,
)
from .exceptions import InvalidConfigurationError

# pymongo refuses heartbeat frequencies below this value
MIN_HEARTBEAT_FREQUENCY_MS = 500


class ConnectionOptions(BaseModel):
    """
    Recognized connection options.

    Both the snake_case names and the camelCase driver-style names
    (keepAlive, connectTimeoutMS, reconnectTries) are accepted.

    Usage:
        options = ConnectionOptions()
        options = merge_connection_options(options, {"connectTimeoutMS": 1000})
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    keep_alive_ms: int = Field(
        DEFAULT_KEEP_ALIVE_MS,
        alias="keepAlive",
        ge=0,
        description="Interval between server heartbeats in milliseconds",
    )
    connect_timeout_ms: int = Field(
        DEFAULT_CONNECT_TIMEOUT_MS,
        alias="connectTimeoutMS",
        ge=1,
        description="Connection timeout in milliseconds",
    )
    reconnect_tries: int = Field(
        DEFAULT_RECONNECT_TRIES,
        alias="reconnectTries",
        ge=0,
        description="How many times an unsuccessful open is retried",
    )
    reconnect_interval_ms: int = Field(
        DEFAULT_RECONNECT_INTERVAL_MS,
        alias="reconnectInterval",
        ge=0,
        description="Wait between two open attempts in milliseconds",
    )
    server_selection_timeout_ms: int = Field(
        DEFAULT_SERVER_SELECTION_TIMEOUT_MS,
        alias="serverSelectionTimeoutMS",
        ge=1,
        description="Server selection timeout in milliseconds",
    )
    db_name: str | None = Field(
        None,
        alias="dbName",
        description="Database name (defaults to the one in the URI)",
    )
    shutdown_timeout_ms: int = Field(
        DEFAULT_SHUTDOWN_TIMEOUT_MS,
        alias="shutdownTimeoutMS",
        ge=1,
        description="Time budget for closing the connection in milliseconds",
    )
    driver_options: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra keyword arguments passed through to the driver client",
    )

    @field_validator("db_name")
    @classmethod
    def validate_db_name(cls, v: str | None) -> str | None:
        """Reject names the server would refuse."""
        if v is None:
            return v
        if not v:
            raise ValueError("database name cannot be empty")
        invalid = sorted({c for c in v if c in INVALID_DB_NAME_CHARACTERS})
        if invalid:
            raise ValueError(f"database name {v!r} contains invalid characters {invalid}")
        return v

    def to_client_kwargs(self) -> dict[str, Any]:
        """
        Translate the options into driver client keyword arguments.

        Returns:
            Keyword arguments for AsyncIOMotorClient
        """
        kwargs: dict[str, Any] = {
            "appname": APP_NAME,
            "connectTimeoutMS": self.connect_timeout_ms,
            "serverSelectionTimeoutMS": self.server_selection_timeout_ms,
            "heartbeatFrequencyMS": max(MIN_HEARTBEAT_FREQUENCY_MS, self.keep_alive_ms),
            "retryWrites": self.reconnect_tries > 0,
            "retryReads": self.reconnect_tries > 0,
        }
        kwargs.update(self.driver_options)
        return kwargs


def merge_connection_options(
    defaults: ConnectionOptions,
    overrides: Mapping[str, Any] | ConnectionOptions | None = None,
) -> ConnectionOptions:
    """
    Merge caller overrides onto default connection options.

    Args:
        defaults: Base options (left untouched)
        overrides: Mapping using either option spelling, or a full
                   ConnectionOptions instance

    Returns:
        New ConnectionOptions instance

    Raises:
        InvalidConfigurationError: If an override is unknown or out of range
    """
    if overrides is None:
        return defaults
    if isinstance(overrides, ConnectionOptions):
        return overrides

    aliases = {
        name: field.alias
        for name, field in ConnectionOptions.model_fields.items()
        if field.alias
    }
    merged = defaults.model_dump(by_alias=True)
    for key, value in overrides.items():
        merged[aliases.get(key, key)] = value
    try:
        parsed = ConnectionOptions.model_validate(merged)
    except ValidationError as e:
        raise InvalidConfigurationError(
            f"Invalid connection options: {e.errors(include_url=False)}",
            config_value=dict(overrides),
        ) from e
    return parsed


class HelpersConfig:
    """
    MDB_HELPERS configuration.

    Reads the connection URI and connection options from environment
    variables. Direct parameters take precedence over the environment.

    Example:
        # Using environment variables
        config = HelpersConfig()
        config.validate()
        manager.init_connection(config.mongo_uri, config.connection_options())

        # In test mode (MDB_HELPERS_ENV=test) the URI comes from
        # MONGO_CONNECTION_STRING_TEST instead of MONGO_CONNECTION_STRING
    """

    def __init__(
        self,
        mongo_uri: str | None = None,
        db_name: str | None = None,
        keep_alive_ms: int | None = None,
        connect_timeout_ms: int | None = None,
        reconnect_tries: int | None = None,
        reconnect_interval_ms: int | None = None,
        shutdown_timeout_ms: int | None = None,
        test_mode: bool | None = None,
    ):
        """
        Initialize configuration.

        Args:
            mongo_uri: MongoDB connection URI (defaults to MONGO_CONNECTION_STRING
                       or MONGO_CONNECTION_STRING_TEST in test mode)
            db_name: Database name (defaults to MONGO_DB_NAME env var)
            keep_alive_ms: Heartbeat interval (defaults to 2000 or MONGO_KEEP_ALIVE_MS)
            connect_timeout_ms: Connect timeout (defaults to 30000 or MONGO_CONNECT_TIMEOUT_MS)
            reconnect_tries: Open retries (defaults to max int or MONGO_RECONNECT_TRIES)
            reconnect_interval_ms: Wait between open attempts (defaults to 1000)
            shutdown_timeout_ms: Close time budget (defaults to 5000)
            test_mode: Force test mode (defaults to MDB_HELPERS_ENV == "test")
        """
        if test_mode is None:
            test_mode = os.getenv(ENV_MODE, "").lower() == TEST_MODE
        self.test_mode = test_mode

        env_key = ENV_TEST_CONNECTION_STRING if test_mode else ENV_CONNECTION_STRING
        self.mongo_uri = mongo_uri or os.getenv(env_key, "")
        self.db_name = db_name or os.getenv("MONGO_DB_NAME") or None
        self.keep_alive_ms = _int_setting(keep_alive_ms, "MONGO_KEEP_ALIVE_MS", DEFAULT_KEEP_ALIVE_MS)
        self.connect_timeout_ms = _int_setting(
            connect_timeout_ms, "MONGO_CONNECT_TIMEOUT_MS", DEFAULT_CONNECT_TIMEOUT_MS
        )
        self.reconnect_tries = _int_setting(
            reconnect_tries, "MONGO_RECONNECT_TRIES", DEFAULT_RECONNECT_TRIES
        )
        self.reconnect_interval_ms = _int_setting(
            reconnect_interval_ms, "MONGO_RECONNECT_INTERVAL_MS", DEFAULT_RECONNECT_INTERVAL_MS
        )
        self.shutdown_timeout_ms = _int_setting(
            shutdown_timeout_ms, "MONGO_SHUTDOWN_TIMEOUT_MS", DEFAULT_SHUTDOWN_TIMEOUT_MS
        )

    @property
    def uri_env_key(self) -> str:
        """Environment variable the URI is read from."""
        return ENV_TEST_CONNECTION_STRING if self.test_mode else ENV_CONNECTION_STRING

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            InvalidConfigurationError: If required configuration is missing or invalid
        """
        if not self.mongo_uri:
            raise InvalidConfigurationError(
                f"mongo_uri is required (set {self.uri_env_key} environment variable "
                f"or pass directly)",
                config_key=self.uri_env_key,
            )

        if self.keep_alive_ms < 0:
            raise InvalidConfigurationError(
                f"keep_alive_ms must be >= 0, got {self.keep_alive_ms}",
                config_key="keep_alive_ms",
                config_value=self.keep_alive_ms,
            )

        if self.connect_timeout_ms < 1:
            raise InvalidConfigurationError(
                f"connect_timeout_ms must be >= 1, got {self.connect_timeout_ms}",
                config_key="connect_timeout_ms",
                config_value=self.connect_timeout_ms,
            )

        if self.reconnect_tries < 0:
            raise InvalidConfigurationError(
                f"reconnect_tries must be >= 0, got {self.reconnect_tries}",
                config_key="reconnect_tries",
                config_value=self.reconnect_tries,
            )

        if self.shutdown_timeout_ms < 1:
            raise InvalidConfigurationError(
                f"shutdown_timeout_ms must be >= 1, got {self.shutdown_timeout_ms}",
                config_key="shutdown_timeout_ms",
                config_value=self.shutdown_timeout_ms,
            )

    def connection_options(self) -> ConnectionOptions:
        """
        Build the ConnectionOptions described by this configuration.

        Raises:
            InvalidConfigurationError: If a value is out of range or the
                                       database name is invalid
        """
        return merge_connection_options(
            ConnectionOptions(),
            {
                "keep_alive_ms": self.keep_alive_ms,
                "connect_timeout_ms": self.connect_timeout_ms,
                "reconnect_tries": self.reconnect_tries,
                "reconnect_interval_ms": self.reconnect_interval_ms,
                "shutdown_timeout_ms": self.shutdown_timeout_ms,
                "db_name": self.db_name,
            },
        )


def _int_setting(value: int | None, env_var: str, default: int) -> int:
    if value is not None:
        return value
    raw = os.getenv(env_var)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            config_key=env_var,
            config_value=raw,
        ) from e
