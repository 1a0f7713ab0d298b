"""
Hosts-file manager: owns one delimited block inside the OS hosts file.

::

    # BEGIN Envis Managed Hosts Block
    # WARNING: This block is automatically managed by Envis. Do not edit manually!
    127.0.0.1 api.test
    # 127.0.0.1 old.test        <- disabled entry
    # END Envis Managed Hosts Block

Reads need no privileges.  On macOS/Linux a write copies a temp file over
the hosts file with ``sudo -S cp``, the admin password going to stdin;
sudo's "wrong password" replies become PasswordIncorrectError.  Windows
writes directly and needs an elevated process.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path

from envis.core.config.paths import os_name
from envis.core.errors import (
    AlreadyExistsError,
    CorruptedStateError,
    NeedsAdminError,
    NotFoundError,
    PasswordIncorrectError,
    PermissionDeniedError,
)
from envis.core.models.host import HostEntry
from envis.core.services.installers.base import Runner
from envis.core.services.subprocess_runner import run_command
from envis.core.shell.syntax import BLOCK_WARNING

logger = logging.getLogger(__name__)

HOSTS_BEGIN = "# BEGIN Envis Managed Hosts Block"
HOSTS_END = "# END Envis Managed Hosts Block"
HOSTS_WARNING = f"# {BLOCK_WARNING}"

UNIX_HOSTS_PATH = Path("/etc/hosts")
WINDOWS_HOSTS_PATH = Path(r"C:\Windows\System32\drivers\etc\hosts")


def default_hosts_path(os: str | None = None) -> Path:
    return WINDOWS_HOSTS_PATH if (os or os_name()) == "windows" else UNIX_HOSTS_PATH


def split_block(text: str) -> tuple[list[str], list[str] | None, list[str]]:
    """``(before, interior, after)``; interior is None when there is no block.

    Raises:
        CorruptedStateError: Markers are missing a partner or out of order.
    """
    lines = text.splitlines()
    begins = [i for i, line in enumerate(lines) if line.strip() == HOSTS_BEGIN]
    ends = [i for i, line in enumerate(lines) if line.strip() == HOSTS_END]
    if not begins and not ends:
        return lines, None, []
    if len(begins) != 1 or len(ends) != 1 or ends[0] < begins[0]:
        raise CorruptedStateError(
            f"Hosts file has {len(begins)} BEGIN and {len(ends)} END envis markers; "
            "repair it manually"
        )
    begin, end = begins[0], ends[0]
    interior = [line for line in lines[begin + 1:end] if line.strip() != HOSTS_WARNING]
    return lines[:begin], interior, lines[end + 1:]


def render_block(before: list[str], interior: list[str], after: list[str], fresh: bool = False) -> str:
    """Reassemble the file; a fresh block is separated from existing content by a blank line."""
    head = list(before)
    if fresh:
        while head and not head[-1].strip():
            head.pop()
        if head:
            head.append("")
    body = [line for line in interior if line.strip()]
    return "\n".join([*head, HOSTS_BEGIN, HOSTS_WARNING, *body, HOSTS_END, *after]) + "\n"


class HostsManager:
    def __init__(
        self,
        hosts_path: Path | None = None,
        runner: Runner = run_command,
        os: str | None = None,
    ) -> None:
        self.os = os or os_name()
        self.hosts_path = hosts_path or default_hosts_path(self.os)
        self.runner = runner
        self._lock = threading.RLock()

    # ── Read ────────────────────────────────────────────────────

    def _read(self) -> str:
        if not self.hosts_path.exists():
            return ""
        return self.hosts_path.read_text(encoding="utf-8", errors="replace")

    def list_hosts(self) -> list[HostEntry]:
        _, interior, _ = split_block(self._read())
        entries = []
        for line in interior or []:
            entry = HostEntry.from_line(line)
            if entry is not None:
                entries.append(entry)
        return entries

    # ── Write ───────────────────────────────────────────────────

    def _write(self, content: str, password: str | None) -> None:
        if self.os == "windows":
            try:
                self.hosts_path.write_text(content, encoding="utf-8")
            except PermissionError as e:
                raise PermissionDeniedError(
                    f"Cannot write {self.hosts_path}; run envis as administrator"
                ) from e
            return

        fd, tmp_name = tempfile.mkstemp(prefix="envis_hosts_", text=True)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            result = self.runner(
                ["cp", tmp_name, str(self.hosts_path)],
                needs_sudo=True,
                sudo_password=password or "",
                timeout=30,
            )
        finally:
            Path(tmp_name).unlink(missing_ok=True)

        if result.get("ok"):
            logger.info("Updated %s", self.hosts_path)
            return
        if result.get("password_incorrect"):
            raise PasswordIncorrectError()
        if result.get("needs_sudo"):
            raise NeedsAdminError()
        raise PermissionDeniedError(
            f"Writing {self.hosts_path} failed: {result.get('stderr') or result.get('error')}"
        )

    def _rewrite(self, password: str | None, edit) -> None:
        """Apply ``edit(entries_lines) -> lines`` to the block and write once."""
        with self._lock:
            text = self._read()
            before, interior, after = split_block(text)
            new_interior = edit(list(interior or []))
            content = render_block(before, new_interior, after, fresh=interior is None)
            if content == text:
                logger.debug("Hosts block unchanged")
                return
            self._write(content, password)

    # ── Single entries ──────────────────────────────────────────

    def add_host(self, entry: HostEntry, password: str | None) -> None:
        def edit(lines: list[str]) -> list[str]:
            if _find(lines, entry.key) is not None:
                raise AlreadyExistsError(f"Host entry {entry.ip} {entry.hostname} already exists")
            return [*lines, entry.to_line()]

        self._rewrite(password, edit)

    def update_host(self, old: HostEntry, new: HostEntry, password: str | None) -> None:
        def edit(lines: list[str]) -> list[str]:
            index = _find(lines, old.key)
            if index is None:
                raise NotFoundError(f"Host entry {old.ip} {old.hostname} not found")
            lines[index] = new.to_line()
            return lines

        self._rewrite(password, edit)

    def delete_host(self, ip: str, hostname: str, password: str | None) -> None:
        key = HostEntry(ip=ip, hostname=hostname).key

        def edit(lines: list[str]) -> list[str]:
            index = _find(lines, key)
            if index is None:
                raise NotFoundError(f"Host entry {ip} {hostname} not found")
            del lines[index]
            return lines

        self._rewrite(password, edit)

    def toggle_host(self, ip: str, hostname: str, password: str | None) -> HostEntry:
        key = HostEntry(ip=ip, hostname=hostname).key
        toggled: list[HostEntry] = []

        def edit(lines: list[str]) -> list[str]:
            index = _find(lines, key)
            if index is None:
                raise NotFoundError(f"Host entry {ip} {hostname} not found")
            entry = HostEntry.from_line(lines[index])
            entry.enabled = not entry.enabled
            lines[index] = entry.to_line()
            toggled.append(entry)
            return lines

        self._rewrite(password, edit)
        return toggled[0]

    # ── Batches ─────────────────────────────────────────────────

    def add_hosts(self, entries: list[HostEntry], password: str | None) -> None:
        """Merge ``entries`` by (ip, hostname): existing lines are replaced in place."""
        incoming = {entry.key: entry for entry in entries}

        def edit(lines: list[str]) -> list[str]:
            handled: set[str] = set()
            out = []
            for line in lines:
                current = HostEntry.from_line(line)
                if current is not None and current.key in incoming:
                    out.append(incoming[current.key].to_line())
                    handled.add(current.key)
                else:
                    out.append(line)
            out.extend(e.to_line() for key, e in incoming.items() if key not in handled)
            return out

        self._rewrite(password, edit)

    def remove_hosts(self, entries: list[HostEntry], password: str | None) -> None:
        keys = {entry.key for entry in entries}
        if split_block(self._read())[1] is None:
            return

        def edit(lines: list[str]) -> list[str]:
            return [line for line in lines if _key_of(line) not in keys]

        self._rewrite(password, edit)

    def clear_hosts(self, password: str | None) -> None:
        if split_block(self._read())[1] is None:
            return
        self._rewrite(password, lambda lines: [])


def _key_of(line: str) -> str | None:
    entry = HostEntry.from_line(line)
    return entry.key if entry is not None else None


def _find(lines: list[str], key: str) -> int | None:
    for i, line in enumerate(lines):
        if _key_of(line) == key:
            return i
    return None
