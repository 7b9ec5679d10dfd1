"""
Filesystem, ownership and clock capabilities used by the rotator.

The rotation and retention code only talks to these interfaces, so tests and
embedders can swap in fakes through constructors.
"""

from __future__ import annotations

import os
import stat
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Protocol

from rotate_on_write.logging import get_logger

logger = get_logger(__name__)

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o744

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class FileStatus:
    """The parts of a stat result the rotator needs."""

    size: int
    mode: int
    uid: int = -1
    gid: int = -1


@dataclass(frozen=True)
class DirEntry:
    """A directory listing entry."""

    name: str
    is_dir: bool = False


class FileSystem(Protocol):
    """Filesystem operations used by rotation and retention."""

    def make_dirs(self, path: str) -> None:
        """Create ``path`` and any missing parents."""
        ...

    def stat(self, path: str) -> FileStatus:
        """Return file status, raising FileNotFoundError when absent."""
        ...

    def rename(self, old: str, new: str) -> None:
        """Rename ``old`` to ``new``."""
        ...

    def create(self, path: str, mode: int) -> BinaryIO:
        """Create or truncate ``path`` for writing."""
        ...

    def list_dir(self, path: str) -> list[DirEntry]:
        """List entries of a directory."""
        ...

    def remove(self, path: str) -> None:
        """Remove a file."""
        ...


class OSFileSystem:
    """FileSystem backed by the ``os`` module."""

    def make_dirs(self, path: str) -> None:
        os.makedirs(path, mode=DEFAULT_DIR_MODE, exist_ok=True)

    def stat(self, path: str) -> FileStatus:
        st = os.stat(path)
        return FileStatus(
            size=st.st_size,
            mode=stat.S_IMODE(st.st_mode),
            uid=getattr(st, "st_uid", -1),
            gid=getattr(st, "st_gid", -1),
        )

    def rename(self, old: str, new: str) -> None:
        os.rename(old, new)

    def create(self, path: str, mode: int) -> BinaryIO:
        # Truncate: anything created at this path since the rename is discarded.
        fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, mode)
        return os.fdopen(fd, "wb", buffering=0)

    def list_dir(self, path: str) -> list[DirEntry]:
        with os.scandir(path) as entries:
            return [DirEntry(name=e.name, is_dir=e.is_dir()) for e in entries]

    def remove(self, path: str) -> None:
        os.remove(path)


class OwnershipPropagator(Protocol):
    """Carries ownership of a replaced file over to its successor."""

    def apply(self, path: str, status: FileStatus) -> None:
        """Apply the owner recorded in ``status`` to ``path``."""
        ...


class NoopOwnership:
    """Ownership propagation for platforms without uid/gid semantics."""

    def apply(self, path: str, status: FileStatus) -> None:
        return None


class ChownOwnership:
    """Ownership propagation through ``os.chown``."""

    def __init__(self, chown: Callable[[str, int, int], None] | None = None) -> None:
        self._chown = chown or os.chown

    def apply(self, path: str, status: FileStatus) -> None:
        if status.uid < 0 and status.gid < 0:
            return
        self._chown(path, status.uid, status.gid)
        logger.debug("ownership_applied", path=path, uid=status.uid, gid=status.gid)


def default_ownership() -> OwnershipPropagator:
    """Pick the ownership propagator for the running platform."""
    if sys.platform.startswith("linux"):
        return ChownOwnership()
    return NoopOwnership()


def system_clock() -> datetime:
    """Current time, timezone aware."""
    return datetime.now(timezone.utc)
