"""
Atomic file writes with bounded timestamped backups.

Every rc file, config file and JSON record envis owns is replaced by
writing a sibling temp file, fsyncing it and renaming it over the target.
Readers therefore see either the old or the new content, never a torn mix.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any

from envis.core.errors import EnvisIOError

logger = logging.getLogger(__name__)

BACKUP_MARKER = ".envbak"
DEFAULT_BACKUP_KEEP = 2


def atomic_write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` via temp file + fsync + rename.

    Raises:
        EnvisIOError: The write failed; the temp file has been removed.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.name}_",
            suffix=".tmp",
        )
        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
                fh.write(content)
                fh.flush()
                os.fsync(fh.fileno())
            if path.exists():
                shutil.copymode(path, tmp)
            os.replace(tmp, path)
            logger.debug("Wrote %s", path)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise
    except OSError as e:
        logger.error("Failed to write %s: %s", path, e)
        raise EnvisIOError(f"Failed to write {path}: {e}") from e


def write_with_backup(path: Path, content: str, keep: int = DEFAULT_BACKUP_KEEP) -> Path | None:
    """Back up the current contents of ``path``, then write atomically.

    The backup sits beside the file as ``{stem}.envbak{unix_ts}``; only the
    newest ``keep`` backups survive.

    Returns:
        Path of the backup just created, or None if the file did not exist.
    """
    previous: bytes | None = None
    if path.exists():
        try:
            previous = path.read_bytes()
        except OSError as e:
            raise EnvisIOError(f"Failed to read {path}: {e}") from e

    atomic_write_text(path, content)

    if previous is None:
        return None
    backup = _backup_path(path)
    try:
        backup.write_bytes(previous)
    except OSError as e:
        logger.warning("Failed to back up %s: %s", path, e)
        return None
    prune_backups(path, keep)
    return backup


def list_backups(path: Path) -> list[Path]:
    """Backups of ``path``, newest first."""
    if not path.parent.is_dir():
        return []
    prefix = f"{path.stem}{BACKUP_MARKER}"
    found = [
        p for p in path.parent.iterdir()
        if p.is_file() and p.name.startswith(prefix)
    ]
    found.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
    return found


def prune_backups(path: Path, keep: int = DEFAULT_BACKUP_KEEP) -> None:
    """Delete all but the newest ``keep`` backups of ``path``."""
    for old in list_backups(path)[keep:]:
        try:
            old.unlink()
            logger.debug("Removed old backup %s", old)
        except OSError as e:
            logger.warning("Failed to remove old backup %s: %s", old, e)


def _backup_path(path: Path) -> Path:
    """``.bash_profile`` → ``.bash_profile.envbak1700000000`` (never reused)."""
    ts = int(time.time())
    stem = f"{path.stem}{BACKUP_MARKER}"
    candidate = path.with_name(f"{stem}{ts}")
    n = 1
    while candidate.exists():
        candidate = path.with_name(f"{stem}{ts}_{n}")
        n += 1
    return candidate


# ── JSON records ────────────────────────────────────────────────


def read_json(path: Path) -> Any:
    """Load a JSON document.  Raises ``json.JSONDecodeError`` / ``OSError``."""
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, data: Any) -> None:
    """Pretty-print ``data`` to ``path`` atomically."""
    content = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    atomic_write_text(path, content)
