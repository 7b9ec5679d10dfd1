"""Pytest configuration for Python tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from rotate_on_write.naming import encode_backup_name

NOW = datetime(2024, 6, 8, 9, 29, 10, 177000, tzinfo=timezone.utc)


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks tests that touch the real filesystem")
    config.addinivalue_line("markers", "posix: marks tests that need POSIX ownership semantics")


class FakeClock:
    """Settable clock for rotation and retention tests."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_backups():
    """Create backup files for ``stem``/``ext`` at the given ages before NOW."""

    def _make(directory: Path, stem: str, ext: str, ages: list[timedelta]) -> list[Path]:
        directory.mkdir(parents=True, exist_ok=True)
        created = []
        for age in ages:
            path = directory / encode_backup_name(stem, ext, NOW - age)
            path.write_text(f"backup aged {age}")
            created.append(path)
        return created

    return _make
