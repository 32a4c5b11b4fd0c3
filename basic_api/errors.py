"""Error types raised while bootstrapping the service"""
from typing import Optional


class AppError(Exception):
    """Base class for every startup and serving failure"""


class ConfigError(AppError):
    """Configuration could not be loaded from the environment"""


class MissingVariableError(ConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"missing required environment variable {name}")


class InvalidEncodingError(ConfigError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"environment variable {name} is not valid unicode")


class EnvFileEncodingError(InvalidEncodingError):
    def __init__(self, path: str, position: int):
        self.name = path
        self.position = position
        ConfigError.__init__(self, f"env file {path} is not valid UTF-8 (byte {position})")


class InvalidValueError(ConfigError):
    def __init__(self, name: str, value: str, reason: str):
        self.name = name
        self.value = value
        self.reason = reason
        super().__init__(f"invalid value {value!r} for {name}: {reason}")


class InvalidNumberError(InvalidValueError):
    pass


class InvalidPortError(InvalidNumberError):
    pass


class InvalidAddressError(InvalidValueError):
    pass


class InvalidRangeError(ConfigError):
    def __init__(self, min_connections: int, max_connections: int):
        self.min_connections = min_connections
        self.max_connections = max_connections
        super().__init__(
            f"DATABASE_MIN_CONNECTIONS ({min_connections}) must not exceed "
            f"DATABASE_MAX_CONNECTIONS ({max_connections})"
        )


class PoolError(AppError):
    """The database connection pool could not be constructed"""


class InvalidConnectionStringError(PoolError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"invalid database connection string: {reason}")


class PoolTimeoutError(PoolError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"could not connect to the database within {timeout:g}s")


class PoolConnectError(PoolError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"database unreachable: {reason}")


class ServeError(AppError):
    """The HTTP listener failed to bind or stopped with an error"""


class BindError(ServeError):
    def __init__(self, host: str, port: int, reason: Optional[str] = None):
        self.host = host
        self.port = port
        self.reason = reason
        message = f"could not bind to {host}:{port}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ServerError(ServeError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"server stopped unexpectedly: {reason}")
