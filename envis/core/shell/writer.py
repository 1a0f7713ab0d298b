"""
Shell Block Writer: one Envis-managed region in every shell rc file.

Each primitive (``add_export``, ``add_path`` ...) is applied to every
target file in turn.  A failure on one file is logged and the others
are still updated; a file whose markers are unpaired is never written
and the operation raises CorruptedStateError once all files were tried.

Multi-step edits run inside ``transaction()``: the new block for every
file is computed in memory and each file is written exactly once when
the ``with`` body exits cleanly.  If the body raises, nothing is written.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from envis.core.errors import CorruptedStateError, EnvisError
from envis.core.persistence.atomic import DEFAULT_BACKUP_KEEP, write_with_backup
from envis.core.shell import block
from envis.core.shell.block import BlockDocument
from envis.core.shell.syntax import ShellFlavor, ShellSyntax

logger = logging.getLogger(__name__)

CMD_AUTORUN_KEY = r"HKCU:\Software\Microsoft\Command Processor"

Runner = Callable[..., dict[str, Any]]


def default_shell_targets(
    home: Path,
    platform: str,
    include_powershell: bool = True,
    documents: Path | None = None,
) -> list[Path]:
    """rc files managed on ``platform`` (``macos`` | ``linux`` | ``windows``)."""
    if platform != "windows":
        return [home / ".bash_profile", home / ".zshrc"]

    docs = documents or home / "Documents"
    targets = [docs / "envis" / "envis_autorun.cmd"]
    if include_powershell:
        targets.append(docs / "WindowsPowerShell" / "Microsoft.PowerShell_profile.ps1")
        targets.append(docs / "PowerShell" / "Microsoft.PowerShell_profile.ps1")
    return targets


class ShellBlockWriter:
    """Owns the managed block in each of ``targets``."""

    def __init__(
        self,
        targets: list[Path],
        tool_dir: Path | str | None = None,
        backup_keep: int = DEFAULT_BACKUP_KEEP,
    ) -> None:
        self._targets = list(targets)
        self._pinned = str(tool_dir) if tool_dir else None
        self._backup_keep = backup_keep
        self._lock = threading.RLock()
        self._pending: dict[Path, BlockDocument] | None = None
        self._pending_errors: list[CorruptedStateError] = []

    @property
    def targets(self) -> list[Path]:
        return list(self._targets)

    @property
    def tool_dir(self) -> str | None:
        return self._pinned

    # ── Start-up ────────────────────────────────────────────────

    def initialize(self) -> None:
        """Create missing rc files and blocks; seed the pinned PATH entry."""
        with self._lock:
            for path in self._targets:
                try:
                    doc = self._load(path)
                    if not doc.has_block:
                        doc.interior = block.cleared(doc.syntax, self._pinned)
                    else:
                        doc.interior = block.ensure_pinned(doc.interior, doc.syntax, self._pinned)
                    self._store(path, doc)
                except (EnvisError, OSError) as e:
                    logger.error("Cannot initialise shell block in %s: %s", path, e)

    def register_cmd_autorun(self, runner: Runner) -> bool:
        """Point cmd.exe's AutoRun at the managed .cmd file (best-effort)."""
        cmd_file = next(
            (p for p in self._targets if ShellFlavor.for_path(p) == ShellFlavor.CMD),
            None,
        )
        if cmd_file is None:
            return False

        value = f'"{cmd_file}"'.replace("'", "''")
        script = (
            f"if (!(Test-Path '{CMD_AUTORUN_KEY}')) "
            f"{{ New-Item -Path '{CMD_AUTORUN_KEY}' -Force | Out-Null }}; "
            f"Set-ItemProperty -Path '{CMD_AUTORUN_KEY}' -Name 'AutoRun' "
            f"-Value '{value}' -Force"
        )
        result = runner(["powershell", "-NoProfile", "-Command", script], timeout=30)
        if not result.get("ok"):
            logger.warning(
                "Could not register cmd AutoRun: %s",
                result.get("stderr") or result.get("error"),
            )
            return False
        logger.info("cmd AutoRun set to %s", cmd_file)
        return True

    # ── Transactions ────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[ShellBlockWriter]:
        """Batch several primitives into one write per file.

        Nested ``transaction()`` calls join the outer one.
        """
        with self._lock:
            if self._pending is not None:
                yield self
                return

            self._pending = {}
            self._pending_errors = []
            try:
                yield self
            except BaseException:
                logger.debug("Shell transaction aborted, nothing written")
                raise
            else:
                self._commit(self._pending)
                errors = self._pending_errors
                if errors:
                    raise errors[0]
            finally:
                self._pending = None
                self._pending_errors = []

    def _commit(self, docs: dict[Path, BlockDocument]) -> None:
        for path, doc in docs.items():
            try:
                self._store(path, doc)
            except EnvisError as e:
                logger.error("Failed to update %s: %s", path, e)

    # ── Primitives ──────────────────────────────────────────────

    def clear_block_content(self) -> None:
        """Empty the block (the pinned PATH entry is re-seeded)."""
        self._apply(lambda lines, s: block.cleared(s, self._pinned), "clear")

    def add_export(self, key: str, value: str) -> None:
        self._apply(lambda lines, s: block.set_export(lines, s, key, value), f"export {key}")

    def delete_export(self, key: str) -> None:
        self._apply(lambda lines, s: block.remove_export(lines, s, key), f"unexport {key}")

    def add_path(self, path: str | Path) -> None:
        entry = str(path)
        self._apply(lambda lines, s: block.add_path(lines, s, entry, self._pinned), f"path +{entry}")

    def delete_path(self, path: str | Path) -> None:
        entry = str(path)
        self._apply(lambda lines, s: block.delete_path(lines, s, entry, self._pinned), f"path -{entry}")

    def add_alias(self, key: str, value: str) -> None:
        self._apply(lambda lines, s: block.set_alias(lines, s, key, value), f"alias {key}")

    def delete_alias(self, key: str) -> None:
        self._apply(lambda lines, s: block.remove_alias(lines, s, key), f"unalias {key}")

    def add_echo_environment(self, env_name: str, env_id: str) -> None:
        self._apply(
            lambda lines, s: block.set_greeting(lines, s, env_name, env_id),
            "greeting",
        )

    def remove_echo_environment(self) -> None:
        self._apply(lambda lines, s: block.remove_greeting(lines, s), "greeting removal")

    # ── Reads ───────────────────────────────────────────────────

    def read_interior(self, path: Path) -> list[str]:
        """Current interior lines of ``path`` (pending edits included)."""
        with self._lock:
            if self._pending is not None and path in self._pending:
                return list(self._pending[path].interior)
            return list(self._load(path).interior)

    def current_paths(self, path: Path | None = None) -> list[str]:
        target = path or self._targets[0]
        return block.current_paths(self.read_interior(target), ShellSyntax.for_path(target))

    # ── Internals ───────────────────────────────────────────────

    def _apply(
        self,
        transform: Callable[[list[str], ShellSyntax], list[str]],
        label: str,
    ) -> None:
        with self._lock:
            if self._pending is not None:
                self._apply_pending(transform, label)
                return

            corrupted: list[CorruptedStateError] = []
            for path in self._targets:
                try:
                    doc = self._load(path)
                    doc.interior = transform(doc.interior, doc.syntax)
                    self._store(path, doc)
                except CorruptedStateError as e:
                    logger.error("Refusing to edit %s (%s): %s", path, label, e)
                    corrupted.append(e)
                except (EnvisError, OSError) as e:
                    logger.error("Failed to apply %s to %s: %s", label, path, e)
            if corrupted:
                raise corrupted[0]

    def _apply_pending(
        self,
        transform: Callable[[list[str], ShellSyntax], list[str]],
        label: str,
    ) -> None:
        assert self._pending is not None
        for path in self._targets:
            doc = self._pending.get(path)
            if doc is None:
                try:
                    doc = self._load(path)
                except CorruptedStateError as e:
                    logger.error("Refusing to edit %s (%s): %s", path, label, e)
                    self._pending_errors.append(e)
                    continue
                except (EnvisError, OSError) as e:
                    logger.error("Failed to read %s: %s", path, e)
                    continue
                self._pending[path] = doc
            doc.interior = transform(doc.interior, doc.syntax)

    def _load(self, path: Path) -> BlockDocument:
        syntax = ShellSyntax.for_path(path)
        text = path.read_text(encoding="utf-8") if path.exists() else ""
        return BlockDocument.parse(text, syntax, source=str(path))

    def _store(self, path: Path, doc: BlockDocument) -> None:
        if not doc.changed:
            return
        write_with_backup(path, doc.render(), keep=self._backup_keep)
        logger.debug("Updated shell block in %s", path)
