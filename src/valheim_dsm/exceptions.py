"""valheim-dsm exceptions."""

from enum import StrEnum
from pathlib import Path
from typing import Any


class ValheimDsmError(Exception):
    """Base exception for valheim-dsm errors."""


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigError(ValheimDsmError):
    """Base exception for configuration errors."""


class ConfigLoadError(ConfigError):
    """Raised when configuration cannot be loaded or parsed."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        """Initialize with error message and optional location context."""
        super().__init__(message)
        self.path: Path | None = path
        self.line: int | None = line
        self.column: int | None = column


class ConfigValidationError(ConfigError):
    """Raised when configuration fails validation."""

    def __init__(
        self,
        message: str,
        *,
        key: str,
        value: Any,  # pyright: ignore[reportAny,reportExplicitAny]
        expected: str,
        source: str | None = None,
    ) -> None:
        """Initialize with error message and validation context."""
        super().__init__(message)
        self.key: str = key
        self.value: Any = value  # pyright: ignore[reportExplicitAny]
        self.expected: str = expected
        self.source: str | None = source


# =============================================================================
# Server Exceptions
# =============================================================================


class ServerError(ValheimDsmError):
    """Base exception for game server supervision errors."""


class ServerStartError(ServerError):
    """Raised when the game server fails to start.

    Attributes:
        server_name: The configured name of the server.
        cause: The underlying exception that caused the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        server_name: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and server context.

        Args:
            message: Human-readable error message.
            server_name: The configured name of the server.
            cause: The underlying exception that caused the failure.
        """
        super().__init__(message)
        self.server_name: str | None = server_name
        self.cause: Exception | None = cause


class ServerStopError(ServerError):
    """Raised when the game server cannot be stopped.

    Attributes:
        pid: Process ID of the server that failed to stop.
        cause: The underlying exception that caused the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        pid: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and process context.

        Args:
            message: Human-readable error message.
            pid: Process ID of the server that failed to stop.
            cause: The underlying exception that caused the failure.
        """
        super().__init__(message)
        self.pid: int | None = pid
        self.cause: Exception | None = cause


class AccessListError(ServerError):
    """Raised when an entry cannot be written to a player access list.

    Attributes:
        entry: The rejected entry.
    """

    def __init__(self, message: str, *, entry: str) -> None:
        """Initialize with error message and the rejected entry."""
        super().__init__(message)
        self.entry: str = entry


class ServerAlreadyRunningError(ServerError):
    """Raised when a start is requested while a server is already active.

    Attributes:
        pid: Process ID of the running server, if known.
    """

    def __init__(self, message: str, *, pid: int | None = None) -> None:
        """Initialize with error message and process context."""
        super().__init__(message)
        self.pid: int | None = pid


class ServerStateError(ServerError):
    """Raised when an operation is invalid for the current process state."""

    def __init__(self, message: str, *, state: str | None = None) -> None:
        """Initialize with error message and the offending state."""
        super().__init__(message)
        self.state: str | None = state


# =============================================================================
# RCON Exceptions
# =============================================================================


class RconErrorCode(StrEnum):
    """Failure classes reported by the RCON client."""

    DISCONNECTED = "disconnected"
    AUTH_FAILED = "auth_failed"
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    PROTOCOL_ERROR = "protocol_error"
    UNKNOWN = "unknown"


class RconError(ValheimDsmError):
    """Raised when an RCON operation fails.

    Attributes:
        code: Failure class of the error.
        cause: The underlying exception, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        code: RconErrorCode = RconErrorCode.DISCONNECTED,
        cause: Exception | None = None,
    ) -> None:
        """Initialize with error message and failure class.

        Args:
            message: Human-readable error message.
            code: Failure class of the error.
            cause: The underlying exception, if any.
        """
        super().__init__(message)
        self.code: RconErrorCode = code
        self.cause: Exception | None = cause


class RconAuthError(RconError):
    """Raised when the server rejects the RCON password."""

    def __init__(self, message: str = "Authentication failed") -> None:
        """Initialize with an auth-failure code."""
        super().__init__(message, code=RconErrorCode.AUTH_FAILED)


class RconProtocolError(RconError):
    """Raised when a packet violates the wire format.

    Attributes:
        declared_size: The length field that failed validation, if known.
    """

    def __init__(self, message: str, *, declared_size: int | None = None) -> None:
        """Initialize with error message and the offending length."""
        super().__init__(message, code=RconErrorCode.PROTOCOL_ERROR)
        self.declared_size: int | None = declared_size
