"""
Retention of backup files.

Backups are kept newest first according to the time encoded in their names.
Two independent limits apply:

- ``max_backups``: keep at most this many (0 disables)
- ``max_age``: delete anything encoded before ``now - max_age`` (0 disables)

The limits intersect: a backup survives only if both would keep it. With both
disabled nothing is ever deleted.

Design Patterns:
- Strategy Pattern: Pure selection function, separate from deletion
- Observer Pattern: Notify on retention events
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from rotate_on_write.exceptions import RetentionError
from rotate_on_write.filesystem import Clock, FileSystem, OSFileSystem, system_clock
from rotate_on_write.logging import get_logger
from rotate_on_write.naming import BackupFile, decode_backup_name

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = get_logger(__name__)


class RetentionEventType(str, Enum):
    """Types of retention events."""

    BACKUP_DELETED = "backup_deleted"
    RETENTION_STARTED = "retention_started"
    RETENTION_COMPLETED = "retention_completed"
    RETENTION_ERROR = "retention_error"


@dataclass
class RetentionEvent:
    """Event emitted during retention operations."""

    event_type: RetentionEventType
    path: Path | None = None
    backup_time: datetime | None = None
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: RetentionError | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "event_type": self.event_type.value,
            "path": str(self.path) if self.path else None,
            "backup_time": self.backup_time.isoformat() if self.backup_time else None,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "error": str(self.error) if self.error else None,
        }


class RetentionObserver(Protocol):
    """Protocol for retention event observers."""

    def on_retention_event(self, event: RetentionEvent) -> None:
        """Handle a retention event."""
        ...


@dataclass
class RetentionResult:
    """
    Result of one retention pass.

    Only the last failure is exposed through ``error``; ``errors`` keeps them
    all for logging. A pass keeps deleting after a failure.
    """

    scanned: int = 0
    deleted: list[str] = field(default_factory=list)
    errors: list[RetentionError] = field(default_factory=list)
    skipped: bool = False
    duration_seconds: float = 0.0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None

    @property
    def error(self) -> RetentionError | None:
        """The last error encountered, if any."""
        return self.errors[-1] if self.errors else None

    @property
    def success(self) -> bool:
        """Check if the pass completed without errors."""
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "scanned": self.scanned,
            "deleted": self.deleted,
            "deleted_count": len(self.deleted),
            "error": self.error.to_dict() if self.error else None,
            "error_count": len(self.errors),
            "skipped": self.skipped,
            "duration_seconds": round(self.duration_seconds, 3),
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "success": self.success,
        }


@dataclass(frozen=True)
class RetentionPolicy:
    """Count and age limits for backups. Zero disables a limit."""

    max_backups: int = 0
    max_age: timedelta = timedelta(0)

    def __post_init__(self) -> None:
        if self.max_backups < 0:
            raise ValueError(f"max_backups must be >= 0, got {self.max_backups}")
        if self.max_age < timedelta(0):
            raise ValueError(f"max_age must be >= 0, got {self.max_age}")

    @property
    def enabled(self) -> bool:
        """False when neither limit is active."""
        return self.max_backups > 0 or self.max_age > timedelta(0)

    def get_description(self) -> str:
        """Get a human-readable description of the policy."""
        if not self.enabled:
            return "Keep all backups"
        parts = []
        if self.max_backups > 0:
            parts.append(f"newest {self.max_backups} backups")
        if self.max_age > timedelta(0):
            parts.append(f"backups younger than {self.max_age}")
        return "Keep " + " AND ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_backups": self.max_backups,
            "max_age_seconds": self.max_age.total_seconds(),
        }


def select_expired(
    backups: Sequence[BackupFile], policy: RetentionPolicy, now: datetime
) -> list[BackupFile]:
    """
    Pick the backups a pass should delete.

    Backups are ordered newest first. The count limit cuts the list after
    ``max_backups`` entries; the age limit then moves the cut up to the first
    kept entry older than ``now - max_age``. Everything from the cut on is
    returned, newest first.
    """
    if not policy.enabled:
        return []

    ordered = sorted(backups, key=lambda b: b.timestamp, reverse=True)
    cut = len(ordered)
    kept = ordered

    if policy.max_backups > 0 and len(ordered) > policy.max_backups:
        cut = policy.max_backups
        kept = ordered[:cut]

    if policy.max_age > timedelta(0):
        cutoff = now - policy.max_age
        for index, backup in enumerate(kept):
            if backup.timestamp < cutoff:
                cut = index
                break

    return ordered[cut:]


class BackupScanner:
    """Finds backups of one active file in a directory."""

    def __init__(
        self,
        directory: str | Path,
        stem: str,
        ext: str,
        fs: FileSystem | None = None,
        local_time: bool = False,
    ) -> None:
        self.directory = Path(directory)
        self.stem = stem
        self.ext = ext
        self.local_time = local_time
        self._fs: FileSystem = fs or OSFileSystem()

    def scan(self) -> list[BackupFile]:
        """
        List backups, newest first.

        Entries that are directories or whose names do not decode are not
        backups and are skipped.

        Raises:
            OSError: If the directory cannot be listed.
        """
        backups: list[BackupFile] = []
        for entry in self._fs.list_dir(str(self.directory)):
            if entry.is_dir:
                continue
            ts = decode_backup_name(entry.name, self.stem, self.ext, local_time=self.local_time)
            if ts is None:
                continue
            backups.append(BackupFile(name=entry.name, timestamp=ts, path=self.directory / entry.name))

        backups.sort(key=lambda b: b.timestamp, reverse=True)
        return backups


class RetentionEngine:
    """
    Runs retention passes over one backup directory.

    A pass never raises for filesystem failures; they are returned in the
    RetentionResult and sent to observers.
    """

    def __init__(
        self,
        scanner: BackupScanner,
        policy: RetentionPolicy | None = None,
        fs: FileSystem | None = None,
        clock: Clock | None = None,
        observers: Sequence[RetentionObserver] | None = None,
    ) -> None:
        """
        Initialize the retention engine.

        Args:
            scanner: Source of backups for the directory.
            policy: Count and age limits.
            fs: Filesystem used for deletion.
            clock: Time source for the age limit.
            observers: Event observers to notify.
        """
        self._scanner = scanner
        self._policy = policy or RetentionPolicy()
        self._fs: FileSystem = fs or OSFileSystem()
        self._clock = clock or system_clock
        self._observers: list[RetentionObserver] = list(observers) if observers else []

    @property
    def policy(self) -> RetentionPolicy:
        return self._policy

    def add_observer(self, observer: RetentionObserver) -> None:
        """Add an event observer."""
        self._observers.append(observer)

    def remove_observer(self, observer: RetentionObserver) -> None:
        """Remove an event observer."""
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify_observers(self, event: RetentionEvent) -> None:
        for observer in self._observers:
            try:
                observer.on_retention_event(event)
            except Exception as e:
                logger.warning(
                    "observer_notification_failed",
                    observer=type(observer).__name__,
                    error=str(e),
                )

    def _now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.astimezone()
        return now

    def preview(self) -> list[BackupFile]:
        """
        Return what a pass would delete without deleting anything.

        Raises:
            RetentionError: If the backup directory cannot be listed.
        """
        if not self._policy.enabled:
            return []
        try:
            backups = self._scanner.scan()
        except OSError as e:
            raise RetentionError.read_failed(str(self._scanner.directory), e) from e
        return select_expired(backups, self._policy, self._now())

    def run_once(self) -> RetentionResult:
        """Run one retention pass."""
        result = RetentionResult()

        if not self._policy.enabled:
            result.skipped = True
            result.end_time = datetime.now(timezone.utc)
            return result

        start_time = time.perf_counter()
        directory = self._scanner.directory

        self._notify_observers(
            RetentionEvent(
                event_type=RetentionEventType.RETENTION_STARTED,
                path=directory,
                message=f"Starting retention on {directory}",
            )
        )

        try:
            backups = self._scanner.scan()
        except OSError as e:
            error = RetentionError.read_failed(str(directory), e)
            result.errors.append(error)
            self._notify_observers(
                RetentionEvent(
                    event_type=RetentionEventType.RETENTION_ERROR,
                    path=directory,
                    message=error.message,
                    error=error,
                )
            )
            logger.warning("retention_read_failed", **error.to_dict())
            return self._finish(result, start_time)

        result.scanned = len(backups)
        expired = select_expired(backups, self._policy, self._now())

        logger.debug(
            "retention_candidates",
            directory=str(directory),
            scanned=len(backups),
            expired=len(expired),
            policy=self._policy.to_dict(),
        )

        for backup in expired:
            try:
                self._fs.remove(str(backup.path))
            except OSError as e:
                error = RetentionError.delete_failed(str(backup.path), e)
                result.errors.append(error)
                self._notify_observers(
                    RetentionEvent(
                        event_type=RetentionEventType.RETENTION_ERROR,
                        path=backup.path,
                        backup_time=backup.timestamp,
                        message=error.message,
                        error=error,
                    )
                )
                logger.warning("backup_delete_failed", path=str(backup.path), error=str(e))
                continue

            result.deleted.append(backup.name)
            self._notify_observers(
                RetentionEvent(
                    event_type=RetentionEventType.BACKUP_DELETED,
                    path=backup.path,
                    backup_time=backup.timestamp,
                    message=f"Deleted backup: {backup.name}",
                )
            )
            logger.debug("backup_deleted", path=str(backup.path))

        return self._finish(result, start_time)

    def _finish(self, result: RetentionResult, start_time: float) -> RetentionResult:
        result.end_time = datetime.now(timezone.utc)
        result.duration_seconds = time.perf_counter() - start_time

        self._notify_observers(
            RetentionEvent(
                event_type=RetentionEventType.RETENTION_COMPLETED,
                path=self._scanner.directory,
                message=f"Retention completed: {len(result.deleted)} backups deleted",
                error=result.error,
            )
        )

        logger.info(
            "retention_completed",
            directory=str(self._scanner.directory),
            deleted=len(result.deleted),
            error_count=len(result.errors),
        )
        return result
