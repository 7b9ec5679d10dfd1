"""
Rotate-on-write file sink.

Every ``write`` archives the current file, if there is one, and puts the new
payload in a fresh file at the same path::

    server.log  ->  backups/server-2016-11-04T18-30-00.000.log
    server.log  <-  payload

After a successful write a retention pass is scheduled on a background
thread; it never delays the writer.

A RotateOnWrite is a single-writer object. Callers with several producers
must serialize writes to the same instance themselves.
"""

from __future__ import annotations

import os
import sys
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rotate_on_write.exceptions import ConfigurationError, RotationError, WriteRejectedError
from rotate_on_write.filesystem import (
    DEFAULT_FILE_MODE,
    Clock,
    FileStatus,
    FileSystem,
    OSFileSystem,
    OwnershipPropagator,
    default_ownership,
    system_clock,
)
from rotate_on_write.logging import get_logger
from rotate_on_write.naming import BackupFile, encode_backup_name, split_name
from rotate_on_write.retention import (
    BackupScanner,
    RetentionEngine,
    RetentionObserver,
    RetentionPolicy,
    RetentionResult,
)
from rotate_on_write.trigger import CleanupTrigger

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import TracebackType

    from rotate_on_write.config import RotatorConfig

logger = get_logger(__name__)

MEGABYTE = 1024 * 1024
DEFAULT_MAX_SIZE = 5


def default_filename() -> str:
    """``<tempdir>/<process name>-rotate-on-write.log``."""
    process = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else "python"
    return os.path.join(tempfile.gettempdir(), f"{process}-rotate-on-write.log")


@dataclass(frozen=True)
class RotationPaths:
    """Paths derived from the active filename, fixed for a sink's lifetime."""

    filename: Path
    directory: Path
    stem: str
    ext: str
    backup_dir: Path

    @classmethod
    def resolve(cls, filename: str | Path, backup_dir: str | Path | None = None) -> RotationPaths:
        path = Path(filename)
        stem, ext = split_name(path)
        directory = path.parent
        return cls(
            filename=path,
            directory=directory,
            stem=stem,
            ext=ext,
            backup_dir=Path(backup_dir) if backup_dir else directory,
        )

    @property
    def separate_backup_dir(self) -> bool:
        return self.backup_dir != self.directory

    def backup_path(self, ts: datetime) -> Path:
        """Where the active file goes when rotated at ``ts``."""
        return self.backup_dir / encode_backup_name(self.stem, self.ext, ts)


class RotateOnWrite:
    """
    File sink that archives the previous file on every write.

    Backups are named ``<stem>-<timestamp><ext>``, with the rotation time in
    UTC (or local time when ``local_time`` is set), and live in ``backup_dir``
    or next to the active file. After each write, backups beyond
    ``max_backups`` or older than ``max_age`` are removed in the background.
    If both limits are 0 no backup is ever removed.

    Paths are resolved on first use. Changing ``filename`` or ``backup_dir``
    afterwards does not affect this instance; create a new one instead.
    The size and retention settings are read on every call; retention limits
    are validated when they are set.

    Backup names have millisecond resolution. Two rotations within the same
    millisecond produce the same name, and the second rename replaces the
    first backup.
    """

    def __init__(
        self,
        filename: str | Path | None = None,
        backup_dir: str | Path | None = None,
        max_size: int = DEFAULT_MAX_SIZE,
        max_age: timedelta = timedelta(0),
        max_backups: int = 0,
        local_time: bool = False,
        not_write_if_empty: bool = False,
        *,
        fs: FileSystem | None = None,
        clock: Clock | None = None,
        ownership: OwnershipPropagator | None = None,
        observers: Sequence[RetentionObserver] | None = None,
    ) -> None:
        """
        Initialize the sink.

        Args:
            filename: Active file. Defaults to
                ``<tempdir>/<process>-rotate-on-write.log``.
            backup_dir: Directory for backups. Defaults to the active
                file's directory. Must be on the same volume, since
                archiving is a rename.
            max_size: Largest accepted write, in megabytes.
            max_age: Maximum age of a backup by its encoded timestamp.
            max_backups: Number of backups to keep.
            local_time: Use local time instead of UTC in backup names.
            not_write_if_empty: For an empty payload, rotate but leave the
                active path absent.
            fs: Filesystem capability.
            clock: Time source.
            ownership: Carries the old file's owner to the new file.
            observers: Retention event observers.

        Raises:
            ConfigurationError: If ``max_age`` or ``max_backups`` is negative.
        """
        self.filename = str(filename) if filename else None
        self.backup_dir = str(backup_dir) if backup_dir else None
        self.max_size = max_size
        self._policy = RetentionPolicy()
        self.max_age = max_age
        self.max_backups = max_backups
        self.local_time = local_time
        self.not_write_if_empty = not_write_if_empty

        self._fs: FileSystem = fs or OSFileSystem()
        self._clock = clock or system_clock
        self._ownership = ownership or default_ownership()
        self._observers: list[RetentionObserver] = list(observers) if observers else []
        self._paths: RotationPaths | None = None
        self._trigger = CleanupTrigger(self.run_retention)

    @classmethod
    def from_config(cls, config: RotatorConfig, **kwargs: Any) -> RotateOnWrite:
        """Build a sink from a RotatorConfig; keyword arguments are passed through."""
        return cls(
            filename=config.filename,
            backup_dir=config.backup_dir,
            max_size=config.max_size,
            max_age=config.max_age,
            max_backups=config.max_backups,
            local_time=config.local_time,
            not_write_if_empty=config.not_write_if_empty,
            **kwargs,
        )

    @property
    def max_age(self) -> timedelta:
        return self._policy.max_age

    @max_age.setter
    def max_age(self, value: timedelta) -> None:
        self._policy = self._make_policy("max_age", value, max_age=value)

    @property
    def max_backups(self) -> int:
        return self._policy.max_backups

    @max_backups.setter
    def max_backups(self, value: int) -> None:
        self._policy = self._make_policy("max_backups", value, max_backups=value)

    def _make_policy(self, field: str, value: Any, **changes: Any) -> RetentionPolicy:
        try:
            return replace(self._policy, **changes)
        except ValueError as e:
            raise ConfigurationError.validation_failed(field, value, str(e)) from e

    @property
    def policy(self) -> RetentionPolicy:
        """Current retention limits."""
        return self._policy

    @property
    def max_bytes(self) -> int:
        """Largest accepted write in bytes."""
        return (self.max_size or DEFAULT_MAX_SIZE) * MEGABYTE

    @property
    def paths(self) -> RotationPaths:
        """Resolved paths, computed on first access and then fixed."""
        if self._paths is None:
            if not self.filename:
                self.filename = default_filename()
            self._paths = RotationPaths.resolve(self.filename, self.backup_dir)
        return self._paths

    @property
    def trigger(self) -> CleanupTrigger:
        return self._trigger

    def add_observer(self, observer: RetentionObserver) -> None:
        """Add a retention event observer."""
        self._observers.append(observer)

    def remove_observer(self, observer: RetentionObserver) -> None:
        """Remove a retention event observer."""
        if observer in self._observers:
            self._observers.remove(observer)

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """
        Archive the current file and write ``data`` to a new one.

        Returns:
            Number of bytes written.

        Raises:
            WriteRejectedError: If ``data`` is larger than ``max_bytes``.
                Nothing on disk is touched.
            RotationError: If a directory, status, rename, create,
                ownership or write step fails.
        """
        length = len(data)
        max_bytes = self.max_bytes
        if length > max_bytes:
            raise WriteRejectedError.exceeds_max_size(length, max_bytes)

        return self._rotate_and_write(data)

    def _rotate_and_write(self, data: bytes | bytearray | memoryview) -> int:
        paths = self.paths
        filename = str(paths.filename)

        self._make_dirs(paths.directory, filename)
        if paths.separate_backup_dir:
            self._make_dirs(paths.backup_dir, filename)

        previous = self._archive(paths)

        if len(data) == 0 and self.not_write_if_empty:
            self.mill()
            return 0

        mode = previous.mode if previous is not None else DEFAULT_FILE_MODE
        try:
            handle = self._fs.create(filename, mode)
        except OSError as e:
            raise RotationError.create_failed(filename, e) from e

        length = len(data)
        with handle:
            if previous is not None:
                try:
                    self._ownership.apply(filename, previous)
                except OSError as e:
                    raise RotationError.ownership_failed(filename, previous.uid, previous.gid, e) from e

            try:
                written = handle.write(data)
            except OSError as e:
                raise RotationError.write_failed(filename, length, 0, e) from e
            if written != length:
                raise RotationError.write_failed(filename, length, written or 0)

        self.mill()
        return written

    def _make_dirs(self, directory: Path, filename: str) -> None:
        try:
            self._fs.make_dirs(str(directory))
        except OSError as e:
            raise RotationError.directory_create_failed(str(directory), filename, e) from e

    def _archive(self, paths: RotationPaths) -> FileStatus | None:
        """Rename the active file out of the way; None if there was none."""
        filename = str(paths.filename)
        try:
            status = self._fs.stat(filename)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RotationError.stat_failed(filename, e) from e

        backup = str(paths.backup_path(self._now()))
        try:
            self._fs.rename(filename, backup)
        except OSError as e:
            raise RotationError.rename_failed(filename, backup, e) from e

        logger.debug("file_rotated", filename=filename, backup=backup, size_bytes=status.size)
        return status

    def _now(self) -> datetime:
        now = self._clock()
        if self.local_time:
            return now.astimezone()
        return now.astimezone(timezone.utc)

    def _scanner(self) -> BackupScanner:
        paths = self.paths
        return BackupScanner(
            paths.backup_dir,
            paths.stem,
            paths.ext,
            fs=self._fs,
            local_time=self.local_time,
        )

    def _retention_engine(self) -> RetentionEngine:
        return RetentionEngine(
            self._scanner(),
            policy=self._policy,
            fs=self._fs,
            clock=self._clock,
            observers=self._observers,
        )

    def mill(self) -> None:
        """Schedule a background retention pass."""
        self._trigger.request()

    def run_retention(self) -> RetentionResult:
        """Run one retention pass in the calling thread."""
        return self._retention_engine().run_once()

    def backups(self) -> list[BackupFile]:
        """Current backups, newest first."""
        return self._scanner().scan()

    def wait_for_cleanup(self, timeout: float | None = None) -> bool:
        """Wait for scheduled retention passes. Returns False on timeout."""
        return self._trigger.wait_idle(timeout)

    def close(self, timeout: float = 10.0) -> None:
        """Finish pending retention work and stop the background worker."""
        self._trigger.stop(timeout)

    def __enter__(self) -> RotateOnWrite:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"filename={self.filename!r}, "
            f"backup_dir={self.backup_dir!r}, "
            f"max_size={self.max_size!r}, "
            f"max_backups={self.max_backups!r}, "
            f"max_age={self.max_age!r})"
        )
