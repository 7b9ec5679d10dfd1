"""
Exception hierarchy for the rotate-on-write sink.

- RotateError: Base exception for all rotate-on-write errors
- ConfigurationError: Configuration and validation issues
- WriteRejectedError: Payload refused before any filesystem mutation
- RotationError: Failures inside the stat/rename/create/write sequence
- RetentionError: Failures of a background retention pass

Each exception includes:
- error_code: Machine-readable error identifier
- context: Paths and values involved, for debugging
- is_retryable: Whether the operation can be retried
- cause: The underlying OSError, when there is one
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes for categorization and monitoring."""

    # Configuration errors (1xxx)
    CONFIG_INVALID = "ROTATE_1001"
    CONFIG_MISSING = "ROTATE_1002"
    CONFIG_VALIDATION = "ROTATE_1003"

    # Write validation errors (2xxx)
    EXCEEDS_MAX_SIZE = "ROTATE_2001"

    # Rotation errors (3xxx)
    DIRECTORY_CREATE_FAILED = "ROTATE_3001"
    STAT_FAILED = "ROTATE_3002"
    RENAME_FAILED = "ROTATE_3003"
    CREATE_FAILED = "ROTATE_3004"
    WRITE_FAILED = "ROTATE_3005"
    OWNERSHIP_PROPAGATION_FAILED = "ROTATE_3006"

    # Retention errors (4xxx)
    RETENTION_READ_FAILED = "ROTATE_4001"
    RETENTION_DELETE_FAILED = "ROTATE_4002"

    # General errors (9xxx)
    UNKNOWN = "ROTATE_9999"


@dataclass
class RotateError(Exception):
    """
    Base exception for all rotate-on-write errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable error identifier
        context: Additional structured data for debugging
        is_retryable: Whether the operation can be safely retried
        cause: Original exception that caused this error
    """

    message: str
    error_code: ErrorCode = ErrorCode.UNKNOWN
    context: dict[str, Any] = field(default_factory=dict)
    is_retryable: bool = False
    cause: Exception | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        parts = [f"[{self.error_code.value}] {self.message}"]
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f" ({context_str})")
        return "".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"context={self.context!r}, "
            f"is_retryable={self.is_retryable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "context": self.context,
            "is_retryable": self.is_retryable,
            "cause": str(self.cause) if self.cause else None,
        }


@dataclass
class ConfigurationError(RotateError):
    """Raised when configuration is invalid or missing."""

    error_code: ErrorCode = ErrorCode.CONFIG_INVALID

    @classmethod
    def missing_file(cls, path: str) -> ConfigurationError:
        """Create error for missing configuration file."""
        return cls(
            message=f"Configuration file not found: {path}",
            error_code=ErrorCode.CONFIG_MISSING,
            context={"path": path},
        )

    @classmethod
    def validation_failed(cls, field: str, value: Any, reason: str) -> ConfigurationError:
        """Create error for validation failure."""
        return cls(
            message=f"Configuration validation failed for '{field}': {reason}",
            error_code=ErrorCode.CONFIG_VALIDATION,
            context={"field": field, "value": str(value), "reason": reason},
        )


@dataclass
class WriteRejectedError(RotateError):
    """Raised when a payload is refused before touching the filesystem."""

    error_code: ErrorCode = ErrorCode.EXCEEDS_MAX_SIZE

    @classmethod
    def exceeds_max_size(cls, length: int, max_bytes: int) -> WriteRejectedError:
        """Create error for a payload larger than the per-write cap."""
        return cls(
            message=f"write length {length} exceeds maximum file size {max_bytes}",
            error_code=ErrorCode.EXCEEDS_MAX_SIZE,
            context={"length": length, "max_bytes": max_bytes},
        )


@dataclass
class RotationError(RotateError):
    """Raised when a step of the rotate-then-write sequence fails."""

    error_code: ErrorCode = ErrorCode.WRITE_FAILED

    @classmethod
    def directory_create_failed(cls, directory: str, filename: str, cause: OSError) -> RotationError:
        """Create error for a directory that could not be made."""
        return cls(
            message=f"can't make directories: {directory} for new file: {filename}",
            error_code=ErrorCode.DIRECTORY_CREATE_FAILED,
            context={"directory": directory, "filename": filename, "reason": str(cause)},
            cause=cause,
        )

    @classmethod
    def stat_failed(cls, path: str, cause: OSError) -> RotationError:
        """Create error for a status query that failed for a reason other than absence."""
        return cls(
            message=f"get file: {path} info fail",
            error_code=ErrorCode.STAT_FAILED,
            context={"path": path, "reason": str(cause)},
            cause=cause,
        )

    @classmethod
    def rename_failed(cls, old_path: str, new_path: str, cause: OSError) -> RotationError:
        """Create error for a failed archive rename."""
        return cls(
            message=f"can't rename file, oldName: {old_path}, newName: {new_path}",
            error_code=ErrorCode.RENAME_FAILED,
            context={"old_path": old_path, "new_path": new_path, "reason": str(cause)},
            cause=cause,
        )

    @classmethod
    def create_failed(cls, path: str, cause: OSError) -> RotationError:
        """Create error for a file that could not be created or truncated."""
        return cls(
            message=f"can't open new file: {path}",
            error_code=ErrorCode.CREATE_FAILED,
            context={"path": path, "reason": str(cause)},
            cause=cause,
        )

    @classmethod
    def ownership_failed(cls, path: str, uid: int, gid: int, cause: OSError) -> RotationError:
        """Create error for ownership that could not be carried over."""
        return cls(
            message=f"chown file: {path} to (uid: {uid}, gid: {gid}) fail",
            error_code=ErrorCode.OWNERSHIP_PROPAGATION_FAILED,
            context={"path": path, "uid": uid, "gid": gid, "reason": str(cause)},
            cause=cause,
        )

    @classmethod
    def write_failed(
        cls, path: str, length: int, written: int, cause: OSError | None = None
    ) -> RotationError:
        """Create error for a failed or short write."""
        reason = str(cause) if cause else f"short write: {written} of {length} bytes"
        return cls(
            message=f"write len: {length} fail, {path}",
            error_code=ErrorCode.WRITE_FAILED,
            context={"path": path, "length": length, "written": written, "reason": reason},
            cause=cause,
        )


@dataclass
class RetentionError(RotateError):
    """Raised (or reported) when a retention pass cannot complete cleanly."""

    error_code: ErrorCode = ErrorCode.RETENTION_DELETE_FAILED
    is_retryable: bool = True

    @classmethod
    def read_failed(cls, directory: str, cause: OSError) -> RetentionError:
        """Create error for a backup directory that could not be listed."""
        return cls(
            message=f"can't read file directory: {directory}",
            error_code=ErrorCode.RETENTION_READ_FAILED,
            context={"directory": directory, "reason": str(cause)},
            cause=cause,
        )

    @classmethod
    def delete_failed(cls, path: str, cause: OSError) -> RetentionError:
        """Create error for a backup that could not be removed."""
        return cls(
            message=f"rm file: {path} fail",
            error_code=ErrorCode.RETENTION_DELETE_FAILED,
            context={"path": path, "reason": str(cause)},
            cause=cause,
        )
