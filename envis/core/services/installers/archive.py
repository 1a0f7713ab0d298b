"""
Archive extraction into an installation directory.

Tarballs go through the system ``tar`` with ``--strip-components=1`` so
the install directory receives the archive's contents, not its top-level
folder.  Zip files are unpacked with ``zipfile`` and the single
top-level folder (if any) is hoisted the same way.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from envis.core.errors import InstallFailureError
from envis.core.services.subprocess_runner import run_command

logger = logging.getLogger(__name__)

EXTRACT_TIMEOUT = 600
EXECUTABLE_DIRS = ("bin", "sbin")

_TAR_FLAGS = {
    ".tar.gz": "-xzf",
    ".tgz": "-xzf",
    ".tar.xz": "-xJf",
    ".tar.bz2": "-xjf",
}


def archive_kind(filename: str) -> str:
    """``tar`` | ``zip`` | ``""`` for unknown."""
    lowered = filename.lower()
    if lowered.endswith(".zip"):
        return "zip"
    if any(lowered.endswith(ext) for ext in _TAR_FLAGS):
        return "tar"
    return ""


def extract_archive(
    archive: Path,
    dest: Path,
    *,
    strip_components: bool = True,
    runner: Callable[..., dict[str, Any]] = run_command,
) -> None:
    """Unpack ``archive`` into ``dest``.

    Raises:
        InstallFailureError: Unknown format, or the extractor failed.
    """
    dest.mkdir(parents=True, exist_ok=True)
    kind = archive_kind(archive.name)
    logger.info("Extracting %s -> %s", archive.name, dest)

    if kind == "tar":
        _extract_tar(archive, dest, strip_components, runner)
    elif kind == "zip":
        _extract_zip(archive, dest, strip_components)
    else:
        raise InstallFailureError(f"Unsupported archive format: {archive.name}")


def _extract_tar(
    archive: Path,
    dest: Path,
    strip_components: bool,
    runner: Callable[..., dict[str, Any]],
) -> None:
    lowered = archive.name.lower()
    flag = next(f for ext, f in _TAR_FLAGS.items() if lowered.endswith(ext))
    cmd = ["tar", flag, str(archive), "-C", str(dest)]
    if strip_components:
        cmd.append("--strip-components=1")
    result = runner(cmd, timeout=EXTRACT_TIMEOUT)
    if not result.get("ok"):
        raise InstallFailureError(
            f"Extracting {archive.name} failed",
            result.get("stderr") or result.get("error", ""),
        )


def _extract_zip(archive: Path, dest: Path, strip_components: bool) -> None:
    staging = dest / f".extract-{archive.stem}"
    if staging.exists():
        shutil.rmtree(staging)
    try:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(staging)
    except (zipfile.BadZipFile, OSError) as e:
        shutil.rmtree(staging, ignore_errors=True)
        raise InstallFailureError(f"Extracting {archive.name} failed", str(e)) from e

    source = staging
    if strip_components:
        entries = list(staging.iterdir())
        if len(entries) == 1 and entries[0].is_dir():
            source = entries[0]
    move_contents(source, dest)
    shutil.rmtree(staging, ignore_errors=True)


def move_contents(src: Path, dest: Path) -> None:
    """Move every entry of ``src`` into ``dest``, replacing clashes."""
    dest.mkdir(parents=True, exist_ok=True)
    for entry in src.iterdir():
        target = dest / entry.name
        if target.exists():
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()
        shutil.move(str(entry), str(target))


def make_executable(root: Path, subdirs: tuple[str, ...] = EXECUTABLE_DIRS) -> int:
    """chmod 0755 every regular file in ``root/<subdir>``.  No-op on Windows.

    Returns:
        Number of files changed.
    """
    if os.name == "nt":
        return 0
    mode = stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH
    count = 0
    for sub in subdirs:
        folder = root / sub
        if not folder.is_dir():
            continue
        for entry in folder.iterdir():
            if entry.is_file() and not entry.is_symlink():
                entry.chmod(mode)
                count += 1
    return count


def remove_archive(archive: Path) -> None:
    try:
        archive.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not delete archive %s: %s", archive, e)


def find_file(root: Path, name: str, max_depth: int = 5) -> Path | None:
    """First regular file called ``name`` under ``root``, breadth-first."""
    level = [root]
    for _ in range(max_depth + 1):
        next_level: list[Path] = []
        for folder in level:
            try:
                entries = sorted(folder.iterdir())
            except OSError:
                continue
            for entry in entries:
                if entry.is_file() and entry.name == name:
                    return entry
                if entry.is_dir() and not entry.is_symlink():
                    next_level.append(entry)
        level = next_level
    return None
