"""
Tests for persistence: atomic writes, backups and JSON records.
"""

import json
import os
import time
from pathlib import Path

import pytest

from envis.core.errors import EnvisIOError
from envis.core.persistence.atomic import (
    atomic_write_text,
    list_backups,
    prune_backups,
    read_json,
    write_json,
    write_with_backup,
)


class TestAtomicWrite:
    """Temp file + rename writes."""

    def test_creates_parents(self, tmp_path: Path):
        path = tmp_path / "deep" / "nested" / "file.txt"
        atomic_write_text(path, "hello")
        assert path.read_text() == "hello"

    def test_no_temp_files_left(self, tmp_path: Path):
        path = tmp_path / "file.txt"
        atomic_write_text(path, "one")
        atomic_write_text(path, "two")
        assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]

    def test_preserves_mode(self, tmp_path: Path):
        path = tmp_path / "script.sh"
        path.write_text("old")
        path.chmod(0o755)
        atomic_write_text(path, "new")
        assert os.stat(path).st_mode & 0o777 == 0o755

    def test_unwritable_target_raises(self, tmp_path: Path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        with pytest.raises(EnvisIOError):
            atomic_write_text(blocker / "child.txt", "x")


class TestBackups:
    """Timestamped backups beside the file."""

    def test_first_write_has_no_backup(self, tmp_path: Path):
        assert write_with_backup(tmp_path / ".zshrc", "a\n") is None

    def test_backup_holds_previous_content(self, tmp_path: Path):
        path = tmp_path / ".zshrc"
        path.write_text("old\n")
        backup = write_with_backup(path, "new\n")
        assert backup is not None
        assert backup.name.startswith(".zshrc.envbak")
        assert backup.read_text() == "old\n"
        assert path.read_text() == "new\n"

    def test_same_second_backups_do_not_collide(self, tmp_path: Path):
        path = tmp_path / ".zshrc"
        path.write_text("0")
        first = write_with_backup(path, "1", keep=5)
        second = write_with_backup(path, "2", keep=5)
        assert first != second
        assert {first.read_text(), second.read_text()} == {"0", "1"}

    def test_only_newest_kept(self, tmp_path: Path):
        path = tmp_path / ".bash_profile"
        path.write_text("v0")
        for i in range(1, 6):
            write_with_backup(path, f"v{i}")
        backups = list_backups(path)
        assert len(backups) == 2

    def test_prune_orders_by_mtime(self, tmp_path: Path):
        path = tmp_path / "rc"
        now = time.time()
        for i in range(4):
            b = tmp_path / f"rc.envbak{1000 + i}"
            b.write_text(str(i))
            os.utime(b, (now - 100 + i, now - 100 + i))
        prune_backups(path, keep=2)
        assert sorted(p.name for p in list_backups(path)) == ["rc.envbak1002", "rc.envbak1003"]


class TestJson:
    """JSON helpers."""

    def test_write_and_read(self, tmp_path: Path):
        path = tmp_path / "record.json"
        write_json(path, {"name": "dev", "ünï": [1, 2]})
        assert read_json(path) == {"name": "dev", "ünï": [1, 2]}
        assert path.read_text().endswith("\n")

    def test_read_corrupt_raises(self, tmp_path: Path):
        path = tmp_path / "bad.json"
        path.write_text("{{{")
        with pytest.raises(json.JSONDecodeError):
            read_json(path)
