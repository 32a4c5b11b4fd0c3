"""Environment-driven service configuration.

Variables are read from the process environment, with a local ``.env`` file
filling in anything the environment does not define. Process variables always
win over the file.

Unparseable or out-of-range numeric variables are rejected outright; a bad value
is never replaced by its default.
"""
import re
from ipaddress import IPv4Address
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    IPvAnyAddress,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError
from pydantic_settings import BaseSettings, SettingsConfigDict

from basic_api.errors import (
    ConfigError,
    InvalidAddressError,
    EnvFileEncodingError,
    InvalidEncodingError,
    InvalidNumberError,
    InvalidPortError,
    InvalidRangeError,
    InvalidValueError,
    MissingVariableError,
)

DEFAULT_ENV_FILE = ".env"
DEFAULT_PORT = 3000
DEFAULT_HOST = IPv4Address("0.0.0.0")

U16_MAX = 2**16 - 1
U32_MAX = 2**32 - 1

# Pool defaults
DEFAULT_MAX_CONNECTIONS = 10
DEFAULT_MIN_CONNECTIONS = 2
DEFAULT_ACQUIRE_TIMEOUT_SECS = 3
DEFAULT_CONNECT_TIMEOUT_SECS = 5
DEFAULT_IDLE_TIMEOUT_SECS = 600
DEFAULT_MAX_LIFETIME_SECS = 1800


class PoolSettings(BaseModel):
    """Connection pool tuning. Timeouts are in seconds."""

    model_config = ConfigDict(frozen=True)

    max_connections: int = Field(DEFAULT_MAX_CONNECTIONS, ge=1, le=U32_MAX)
    min_connections: int = Field(DEFAULT_MIN_CONNECTIONS, ge=0, le=U32_MAX)
    acquire_timeout: float = Field(float(DEFAULT_ACQUIRE_TIMEOUT_SECS), gt=0)
    connect_timeout: float = Field(float(DEFAULT_CONNECT_TIMEOUT_SECS), gt=0)
    idle_timeout: Optional[float] = Field(float(DEFAULT_IDLE_TIMEOUT_SECS), gt=0)
    max_lifetime: Optional[float] = Field(float(DEFAULT_MAX_LIFETIME_SECS), gt=0)
    # Lazy pools skip the startup connectivity check
    lazy: bool = False

    @model_validator(mode="after")
    def check_connection_range(self) -> "PoolSettings":
        if self.min_connections > self.max_connections:
            raise InvalidRangeError(self.min_connections, self.max_connections)
        return self


class Config(BaseModel):
    """Validated, read-only service configuration"""

    model_config = ConfigDict(frozen=True)

    database_url: str = Field(min_length=1, repr=False)
    server_port: int = Field(DEFAULT_PORT, ge=0, le=U16_MAX)
    server_host: IPvAnyAddress = DEFAULT_HOST
    pool_settings: PoolSettings = Field(default_factory=PoolSettings)
    # None lets in-flight requests drain for as long as they need
    shutdown_timeout: Optional[float] = Field(None, gt=0)


_DIGITS = re.compile(r"[0-9]+")

_INT_FIELDS = (
    "server_port",
    "database_max_connections",
    "database_min_connections",
    "database_acquire_timeout_secs",
    "database_connect_timeout_secs",
    "database_idle_timeout_secs",
    "database_max_lifetime_secs",
    "server_shutdown_timeout_secs",
)


class Settings(BaseSettings):
    """Raw environment surface. Field names match the variable names."""

    model_config = SettingsConfigDict(
        env_file=DEFAULT_ENV_FILE,
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    database_url: str = Field(min_length=1)
    server_port: int = Field(DEFAULT_PORT, ge=0, le=U16_MAX)
    server_host: IPvAnyAddress = DEFAULT_HOST

    database_max_connections: int = Field(DEFAULT_MAX_CONNECTIONS, ge=1, le=U32_MAX)
    database_min_connections: int = Field(DEFAULT_MIN_CONNECTIONS, ge=0, le=U32_MAX)
    database_acquire_timeout_secs: int = Field(DEFAULT_ACQUIRE_TIMEOUT_SECS, gt=0)
    database_connect_timeout_secs: int = Field(DEFAULT_CONNECT_TIMEOUT_SECS, gt=0)
    database_idle_timeout_secs: int = Field(DEFAULT_IDLE_TIMEOUT_SECS, ge=0)
    database_max_lifetime_secs: int = Field(DEFAULT_MAX_LIFETIME_SECS, ge=0)
    database_connect_lazy: bool = False

    server_shutdown_timeout_secs: Optional[int] = Field(None, gt=0)

    # Before-validators run in reverse order: check_encoding goes first
    @field_validator(*_INT_FIELDS, mode="before")
    @classmethod
    def check_digits(cls, value):
        if isinstance(value, str) and not _DIGITS.fullmatch(value):
            raise PydanticCustomError("int_parsing", "value must be a plain unsigned integer")
        return value

    @field_validator("*", mode="before")
    @classmethod
    def check_encoding(cls, value):
        # os.environ keeps undecodable bytes as lone surrogates
        if isinstance(value, str):
            try:
                value.encode("utf-8")
            except UnicodeEncodeError:
                raise PydanticCustomError("invalid_encoding", "value is not valid unicode")
        return value

    def pool_settings(self) -> PoolSettings:
        """Build pool settings; checks the min/max connection range"""
        return PoolSettings(
            max_connections=self.database_max_connections,
            min_connections=self.database_min_connections,
            acquire_timeout=float(self.database_acquire_timeout_secs),
            connect_timeout=float(self.database_connect_timeout_secs),
            idle_timeout=_optional_duration(self.database_idle_timeout_secs),
            max_lifetime=_optional_duration(self.database_max_lifetime_secs),
            lazy=self.database_connect_lazy,
        )

    def to_config(self) -> Config:
        return Config(
            database_url=self.database_url,
            server_port=self.server_port,
            server_host=self.server_host,
            pool_settings=self.pool_settings(),
            shutdown_timeout=_optional_duration(self.server_shutdown_timeout_secs),
        )


def _optional_duration(seconds: Optional[int]) -> Optional[float]:
    """Zero or unset disables the timeout"""
    if not seconds:
        return None
    return float(seconds)


_NUMBER_ERRORS = ("int_", "float_", "greater_than", "less_than")


def _config_error(exc: ValidationError) -> ConfigError:
    """Translate the first pydantic validation error into a ConfigError"""
    error = exc.errors()[0]
    field = str(error["loc"][0]) if error["loc"] else ""
    name = field.upper()
    kind = error["type"]

    if kind in ("missing", "string_too_short"):
        return MissingVariableError(name)
    if kind == "invalid_encoding":
        return InvalidEncodingError(name)

    value = str(error.get("input"))
    reason = error["msg"]
    if field == "server_port":
        return InvalidPortError(name, value, reason)
    if field == "server_host":
        return InvalidAddressError(name, value, reason)
    if kind.startswith(_NUMBER_ERRORS):
        return InvalidNumberError(name, value, reason)
    return InvalidValueError(name, value, reason)


def load_config(env_file: Optional[str] = DEFAULT_ENV_FILE) -> Config:
    """
    Load configuration from the environment.

    ``env_file`` names a dotenv file consulted for variables missing from the
    process environment; pass None to ignore any file.

    Raises a ConfigError subclass naming the offending variable.
    """
    try:
        settings = Settings(_env_file=env_file)
    except ValidationError as exc:
        raise _config_error(exc) from None
    except UnicodeDecodeError as exc:
        raise EnvFileEncodingError(str(env_file), exc.start) from None
    return settings.to_config()
