"""Tests for local store snapshots."""

import logging
from datetime import datetime, timedelta

import pytest

from shiftly_sync.database.backup import backup_local_store, list_backups
from shiftly_sync.database.connection import DatabaseConnection
from shiftly_sync.database.repository import RecordStore


@pytest.fixture
def backup_dir(tmp_path):
    return tmp_path / "backups"


class TestBackupLocalStore:
    def test_snapshot_contains_rows(self, local, backup_dir, add_users):
        add_users(local, 3)
        target = backup_local_store(local, backup_dir,
                                    now=datetime(2024, 3, 1, 8, 30, 0))
        assert target.name == "shiftly_local_20240301_083000.db"
        assert RecordStore(DatabaseConnection(target)).count("usuarios") == 3

    def test_missing_store_skipped(self, tmp_path, backup_dir, caplog):
        db = DatabaseConnection(tmp_path / "never-created.db")
        with caplog.at_level(logging.WARNING):
            assert backup_local_store(db, backup_dir) is None
        assert "backup_skipped" in caplog.text
        assert not db.db_path.exists()

    def test_keeps_newest(self, local, backup_dir):
        start = datetime(2024, 3, 1, 8, 0, 0)
        for minute in range(4):
            backup_local_store(local, backup_dir, keep=2,
                               now=start + timedelta(minutes=minute))
        names = [p.name for p in list_backups(backup_dir)]
        assert names == [
            "shiftly_local_20240301_080300.db",
            "shiftly_local_20240301_080200.db",
        ]

    def test_unrelated_files_untouched(self, local, backup_dir):
        backup_dir.mkdir()
        other = backup_dir / "notes.txt"
        other.write_text("keep me")
        backup_local_store(local, backup_dir, keep=1)
        backup_local_store(local, backup_dir, keep=1,
                           now=datetime(2099, 1, 1))
        assert other.exists()
        assert len(list_backups(backup_dir)) == 1
