"""
rotate-on-write - a file sink that archives the previous file on every write.

This package provides:
- RotateOnWrite, the write sink with rename-based archiving
- Backup naming with embedded millisecond timestamps
- Count and age based retention of backups
- A coalescing background trigger for retention passes
"""

from rotate_on_write.exceptions import (
    ConfigurationError,
    ErrorCode,
    RetentionError,
    RotateError,
    RotationError,
    WriteRejectedError,
)
from rotate_on_write.naming import BackupFile, decode_backup_name, encode_backup_name
from rotate_on_write.retention import RetentionEngine, RetentionPolicy, RetentionResult
from rotate_on_write.rotator import MEGABYTE, RotateOnWrite, RotationPaths

__version__ = "0.3.0"
__all__ = [
    "MEGABYTE",
    "BackupFile",
    "ConfigurationError",
    "ErrorCode",
    "RetentionEngine",
    "RetentionError",
    "RetentionPolicy",
    "RetentionResult",
    "RotateError",
    "RotateOnWrite",
    "RotationError",
    "RotationPaths",
    "WriteRejectedError",
    "decode_backup_name",
    "encode_backup_name",
]
