"""
Backup file naming.

A backup of ``/var/log/app/server.log`` rotated at 18:30 on 2016-11-04 is named
``server-2016-11-04T18-30-00.000.log``: the stem, a hyphen, the rotation time
and the original extension. Only names that match this layout exactly are
treated as backups; everything else in the directory is ignored.

The timestamp keeps millisecond precision, so encoding is lossy below 1 ms.
Ordering always uses the parsed timestamp, never the name text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

# Layout of the embedded timestamp, in strftime terms plus a 3 digit fraction.
BACKUP_TIME_FORMAT = "%Y-%m-%dT%H-%M-%S"
_BACKUP_TIME_PATTERN = re.compile(r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}-[0-9]{2}-[0-9]{2}\.[0-9]{3}")


@dataclass(frozen=True)
class BackupFile:
    """A backup file found on disk with the time decoded from its name."""

    name: str
    timestamp: datetime
    path: Path


def split_name(path: str | Path) -> tuple[str, str]:
    """
    Split a path's basename into stem and extension.

    The extension is everything from the last dot of the basename, so
    ``app.tar.gz`` gives ``("app.tar", ".gz")`` and ``.bashrc`` gives
    ``("", ".bashrc")``. A name with no dot has an empty extension.
    """
    base = Path(path).name
    dot = base.rfind(".")
    if dot < 0:
        return base, ""
    return base[:dot], base[dot:]


def format_backup_time(ts: datetime) -> str:
    """Format a timestamp for a backup name, truncating to milliseconds."""
    return f"{ts.strftime(BACKUP_TIME_FORMAT)}.{ts.microsecond // 1000:03d}"


def parse_backup_time(text: str, local_time: bool = False) -> datetime | None:
    """
    Parse a backup timestamp.

    Returns None unless ``text`` is exactly one well-formed timestamp. The
    result is timezone aware: UTC by default, the system zone when
    ``local_time`` is set (the zone the name was written in).
    """
    if not _BACKUP_TIME_PATTERN.fullmatch(text):
        return None
    try:
        parsed = datetime.strptime(text, f"{BACKUP_TIME_FORMAT}.%f")
    except ValueError:
        return None
    if local_time:
        return parsed.astimezone()
    return parsed.replace(tzinfo=timezone.utc)


def encode_backup_name(stem: str, ext: str, ts: datetime) -> str:
    """Build ``{stem}-{timestamp}{ext}``."""
    return f"{stem}-{format_backup_time(ts)}{ext}"


def decode_backup_name(name: str, stem: str, ext: str, local_time: bool = False) -> datetime | None:
    """Return the timestamp embedded in ``name``, or None if it is not a backup."""
    prefix = stem + "-"
    if not name.startswith(prefix) or not name.endswith(ext):
        return None
    end = len(name) - len(ext)
    if end < len(prefix):
        return None
    return parse_backup_time(name[len(prefix) : end], local_time=local_time)
