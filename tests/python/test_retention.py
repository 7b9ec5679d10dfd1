"""
Unit tests for the retention module.

Tests cover:
- Policy validation and description
- Pure selection over decoded backups (count, age, combined)
- Directory scanning and non-backup rejection
- Retention passes, error reporting and observers
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from rotate_on_write.exceptions import ErrorCode, RetentionError
from rotate_on_write.filesystem import OSFileSystem
from rotate_on_write.naming import BackupFile, encode_backup_name
from rotate_on_write.retention import (
    BackupScanner,
    RetentionEngine,
    RetentionEvent,
    RetentionEventType,
    RetentionObserver,
    RetentionPolicy,
    RetentionResult,
    select_expired,
)

NOW = datetime(2024, 6, 8, 9, 29, 10, 177000, tzinfo=timezone.utc)


def _backup(age: timedelta, name: str | None = None) -> BackupFile:
    ts = NOW - age
    name = name or encode_backup_name("a", ".json", ts)
    return BackupFile(name=name, timestamp=ts, path=Path(name))


def _ages(backups: list[BackupFile]) -> list[timedelta]:
    return [NOW - b.timestamp for b in backups]


class TestRetentionPolicy:
    """Tests for RetentionPolicy."""

    def test_default_is_disabled(self) -> None:
        policy = RetentionPolicy()
        assert policy.enabled is False
        assert policy.get_description() == "Keep all backups"

    def test_count_only_enabled(self) -> None:
        assert RetentionPolicy(max_backups=3).enabled is True

    def test_age_only_enabled(self) -> None:
        assert RetentionPolicy(max_age=timedelta(hours=1)).enabled is True

    def test_negative_count_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_backups"):
            RetentionPolicy(max_backups=-1)

    def test_negative_age_rejected(self) -> None:
        with pytest.raises(ValueError, match="max_age"):
            RetentionPolicy(max_age=timedelta(seconds=-1))

    def test_description_combined(self) -> None:
        policy = RetentionPolicy(max_backups=2, max_age=timedelta(days=1))
        assert policy.get_description() == "Keep newest 2 backups AND backups younger than 1 day, 0:00:00"

    def test_to_dict(self) -> None:
        data = RetentionPolicy(max_backups=2, max_age=timedelta(minutes=1)).to_dict()
        assert data == {"max_backups": 2, "max_age_seconds": 60.0}


class TestSelectExpired:
    """Tests for the pure selection function."""

    def test_disabled_selects_nothing(self) -> None:
        backups = [_backup(timedelta(days=d)) for d in range(10)]
        assert select_expired(backups, RetentionPolicy(), NOW) == []

    def test_count_keeps_newest(self) -> None:
        backups = [_backup(timedelta(hours=h)) for h in (5, 1, 3, 2, 4)]
        expired = select_expired(backups, RetentionPolicy(max_backups=2), NOW)
        assert _ages(expired) == [timedelta(hours=3), timedelta(hours=4), timedelta(hours=5)]

    def test_count_not_exceeded(self) -> None:
        backups = [_backup(timedelta(hours=h)) for h in (1, 2)]
        assert select_expired(backups, RetentionPolicy(max_backups=2), NOW) == []

    def test_age_limit(self) -> None:
        backups = [_backup(timedelta(hours=h)) for h in (1, 25, 48)]
        expired = select_expired(backups, RetentionPolicy(max_age=timedelta(hours=24)), NOW)
        assert _ages(expired) == [timedelta(hours=25), timedelta(hours=48)]

    def test_age_limit_nothing_old(self) -> None:
        backups = [_backup(timedelta(minutes=m)) for m in (1, 2, 3)]
        assert select_expired(backups, RetentionPolicy(max_age=timedelta(hours=1)), NOW) == []

    def test_age_trims_further_than_count(self) -> None:
        backups = [_backup(timedelta(minutes=m)) for m in (10, 20, 120, 180)]
        policy = RetentionPolicy(max_backups=3, max_age=timedelta(hours=1))
        expired = select_expired(backups, policy, NOW)
        assert _ages(expired) == [timedelta(minutes=120), timedelta(minutes=180)]

    def test_count_trims_further_than_age(self) -> None:
        backups = [_backup(timedelta(minutes=m)) for m in (1, 2, 3, 4)]
        policy = RetentionPolicy(max_backups=1, max_age=timedelta(hours=1))
        expired = select_expired(backups, policy, NOW)
        assert _ages(expired) == [timedelta(minutes=m) for m in (2, 3, 4)]

    def test_all_older_than_age(self) -> None:
        backups = [_backup(timedelta(days=d)) for d in (2, 3)]
        expired = select_expired(backups, RetentionPolicy(max_age=timedelta(days=1)), NOW)
        assert len(expired) == 2

    def test_orders_by_time_not_name(self) -> None:
        newer = _backup(timedelta(hours=1), name="a-0.json")
        older = _backup(timedelta(hours=2), name="a-9.json")
        expired = select_expired([older, newer], RetentionPolicy(max_backups=1), NOW)
        assert expired == [older]


class TestBackupScanner:
    """Tests for BackupScanner."""

    def test_scan_sorted_newest_first(self, tmp_path: Path, make_backups) -> None:
        make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (3, 1, 2)])
        backups = BackupScanner(tmp_path, "a", ".json").scan()

        assert [NOW - b.timestamp for b in backups] == [timedelta(hours=h) for h in (1, 2, 3)]
        assert all(b.path.parent == tmp_path for b in backups)

    def test_scan_ignores_non_backups(self, tmp_path: Path, make_backups) -> None:
        make_backups(tmp_path, "a", ".json", [timedelta(hours=1)])
        (tmp_path / "a.json").write_text("active")
        (tmp_path / "other.json").write_text("unrelated")
        (tmp_path / "a-garbage.json").write_text("not a timestamp")
        (tmp_path / encode_backup_name("a", ".log", NOW)).write_text("wrong extension")
        (tmp_path / encode_backup_name("a", ".json", NOW - timedelta(days=9))).mkdir()

        backups = BackupScanner(tmp_path, "a", ".json").scan()
        assert len(backups) == 1

    def test_scan_missing_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            BackupScanner(tmp_path / "missing", "a", ".json").scan()


class TestRetentionResult:
    """Tests for RetentionResult."""

    def test_default_result(self) -> None:
        result = RetentionResult()
        assert result.deleted == []
        assert result.error is None
        assert result.success is True

    def test_error_is_last(self) -> None:
        first = RetentionError.delete_failed("/x/1", OSError("busy"))
        last = RetentionError.delete_failed("/x/2", OSError("denied"))
        result = RetentionResult(errors=[first, last])

        assert result.error is last
        assert result.success is False
        assert result.to_dict()["error_count"] == 2


class TestRetentionEngine:
    """Tests for RetentionEngine passes over real directories."""

    def _engine(self, directory: Path, policy: RetentionPolicy, **kwargs) -> RetentionEngine:
        scanner = BackupScanner(directory, "a", ".json")
        return RetentionEngine(scanner, policy=policy, clock=lambda: NOW, **kwargs)

    def test_count_pass(self, tmp_path: Path, make_backups) -> None:
        paths = make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (1, 2, 3, 4, 5)])
        result = self._engine(tmp_path, RetentionPolicy(max_backups=2)).run_once()

        assert result.success
        assert result.scanned == 5
        assert sorted(p.name for p in tmp_path.iterdir()) == sorted(p.name for p in paths[:2])

    def test_age_pass(self, tmp_path: Path, make_backups) -> None:
        paths = make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (1, 25, 48)])
        result = self._engine(tmp_path, RetentionPolicy(max_age=timedelta(hours=24))).run_once()

        assert len(result.deleted) == 2
        assert [p.name for p in tmp_path.iterdir()] == [paths[0].name]

    def test_combined_pass(self, tmp_path: Path, make_backups) -> None:
        ages = [timedelta(minutes=m) for m in (10, 20, 120, 180)]
        paths = make_backups(tmp_path, "a", ".json", ages)
        policy = RetentionPolicy(max_backups=3, max_age=timedelta(hours=1))
        self._engine(tmp_path, policy).run_once()

        assert sorted(p.name for p in tmp_path.iterdir()) == sorted(p.name for p in paths[:2])

    def test_unrelated_files_not_counted_or_deleted(self, tmp_path: Path, make_backups) -> None:
        make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (1, 2)])
        (tmp_path / "other.json").write_text("{}")
        (tmp_path / "a.json").write_text("{}")

        result = self._engine(tmp_path, RetentionPolicy(max_backups=2)).run_once()

        assert result.deleted == []
        assert (tmp_path / "other.json").exists()
        assert (tmp_path / "a.json").exists()

    def test_disabled_policy_never_deletes(self, tmp_path: Path, make_backups) -> None:
        make_backups(tmp_path, "a", ".json", [timedelta(days=d) for d in range(1, 8)])
        engine = self._engine(tmp_path, RetentionPolicy())

        for _ in range(3):
            result = engine.run_once()
            assert result.skipped is True

        assert len(list(tmp_path.iterdir())) == 7

    def test_read_failure_reported(self, tmp_path: Path) -> None:
        result = self._engine(tmp_path / "missing", RetentionPolicy(max_backups=1)).run_once()

        assert result.error is not None
        assert result.error.error_code == ErrorCode.RETENTION_READ_FAILED

    def test_delete_failures_continue_and_keep_last(self, tmp_path: Path, make_backups) -> None:
        paths = make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (1, 2, 3, 4)])
        failing = {str(paths[1]), str(paths[3])}

        class FlakyFS(OSFileSystem):
            def remove(self, path: str) -> None:
                if path in failing:
                    raise PermissionError(13, "Permission denied", path)
                super().remove(path)

        engine = self._engine(tmp_path, RetentionPolicy(max_backups=1), fs=FlakyFS())
        result = engine.run_once()

        assert result.deleted == [paths[2].name]
        assert len(result.errors) == 2
        assert result.error is not None
        assert result.error.error_code == ErrorCode.RETENTION_DELETE_FAILED
        assert result.error.context["path"] == str(paths[3])
        assert not paths[2].exists()

    def test_preview_does_not_delete(self, tmp_path: Path, make_backups) -> None:
        make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (1, 2, 3)])
        preview = self._engine(tmp_path, RetentionPolicy(max_backups=1)).preview()

        assert len(preview) == 2
        assert len(list(tmp_path.iterdir())) == 3

    def test_observer_notification(self, tmp_path: Path, make_backups) -> None:
        make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (1, 2)])
        observer = MagicMock(spec=RetentionObserver)

        self._engine(tmp_path, RetentionPolicy(max_backups=1), observers=[observer]).run_once()

        types = [c.args[0].event_type for c in observer.on_retention_event.call_args_list]
        assert types == [
            RetentionEventType.RETENTION_STARTED,
            RetentionEventType.BACKUP_DELETED,
            RetentionEventType.RETENTION_COMPLETED,
        ]

    def test_failing_observer_does_not_stop_pass(self, tmp_path: Path, make_backups) -> None:
        make_backups(tmp_path, "a", ".json", [timedelta(hours=h) for h in (1, 2)])
        observer = MagicMock(spec=RetentionObserver)
        observer.on_retention_event.side_effect = RuntimeError("observer broke")

        result = self._engine(tmp_path, RetentionPolicy(max_backups=1), observers=[observer]).run_once()
        assert len(result.deleted) == 1

    def test_add_remove_observer(self, tmp_path: Path) -> None:
        engine = self._engine(tmp_path, RetentionPolicy())
        observer = MagicMock(spec=RetentionObserver)

        engine.add_observer(observer)
        assert observer in engine._observers

        engine.remove_observer(observer)
        assert observer not in engine._observers


class TestRetentionEvent:
    """Tests for RetentionEvent."""

    def test_to_dict(self, tmp_path: Path) -> None:
        event = RetentionEvent(
            event_type=RetentionEventType.BACKUP_DELETED,
            path=tmp_path / "a.json",
            backup_time=NOW,
            message="Deleted backup",
        )
        data = event.to_dict()

        assert data["event_type"] == "backup_deleted"
        assert data["path"] == str(tmp_path / "a.json")
        assert data["backup_time"] == NOW.isoformat()
        assert data["error"] is None
