"""
Line grammar of the managed block for each shell flavour.

Three flavours are supported, picked from the rc file's extension:

    unix        ~/.bash_profile, ~/.zshrc       export K="V"   alias K="V"
    powershell  *.ps1 profiles                  $env:K = "V"   function K { V $args }
    cmd         *.cmd autorun script            set K=V        doskey K=V $*

Everything here is pure string manipulation; no file I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

BLOCK_BEGIN = "BEGIN Envis Environment Block"
BLOCK_WARNING = "WARNING: This block is automatically managed by Envis. Do not edit manually!"
BLOCK_END = "END Envis Environment Block"

GREETING_TEXT = "Envis: Current environment is"


class ShellFlavor(str, Enum):
    UNIX = "unix"
    POWERSHELL = "powershell"
    CMD = "cmd"

    @classmethod
    def for_path(cls, path: Path) -> ShellFlavor:
        suffix = path.suffix.lower()
        if suffix == ".cmd":
            return cls.CMD
        if suffix == ".ps1":
            return cls.POWERSHELL
        return cls.UNIX


def normalize_marker(line: str) -> str:
    """Strip comment syntax so markers compare equal across flavours.

    ``# BEGIN ...``, ``REM BEGIN ...`` and ``REM # BEGIN ...`` all
    normalise to ``BEGIN ...``.
    """
    text = line.strip()
    if text[:4].upper() == "REM ":
        text = text[4:].strip()
    if text.startswith("#"):
        text = text.lstrip("#").strip()
    return text


@dataclass(frozen=True)
class ShellSyntax:
    """How one flavour spells comments, exports, PATH and aliases."""

    flavor: ShellFlavor

    @classmethod
    def for_path(cls, path: Path) -> ShellSyntax:
        return cls(ShellFlavor.for_path(path))

    # ── Comments / markers ──────────────────────────────────────

    @property
    def comment(self) -> str:
        return "REM " if self.flavor == ShellFlavor.CMD else "# "

    @property
    def begin_line(self) -> str:
        return f"{self.comment}{BLOCK_BEGIN}"

    @property
    def warning_line(self) -> str:
        return f"{self.comment}{BLOCK_WARNING}"

    @property
    def end_line(self) -> str:
        return f"{self.comment}{BLOCK_END}"

    @property
    def file_header(self) -> str | None:
        """Line written first when the block goes into an empty file."""
        return "@echo off" if self.flavor == ShellFlavor.CMD else None

    # ── Exports ─────────────────────────────────────────────────

    def export_line(self, key: str, value: str) -> str:
        if self.flavor == ShellFlavor.CMD:
            return f"set {key}={value}"
        if self.flavor == ShellFlavor.POWERSHELL:
            return f'$env:{key} = "{value}"'
        return f'export {key}="{value}"'

    def export_prefix(self, key: str) -> str:
        if self.flavor == ShellFlavor.CMD:
            return f"set {key}="
        if self.flavor == ShellFlavor.POWERSHELL:
            return f"$env:{key} ="
        return f"export {key}="

    # ── PATH ────────────────────────────────────────────────────

    @property
    def path_separator(self) -> str:
        return ":" if self.flavor == ShellFlavor.UNIX else ";"

    @property
    def path_variable(self) -> str:
        if self.flavor == ShellFlavor.CMD:
            return "%PATH%"
        if self.flavor == ShellFlavor.POWERSHELL:
            return "$env:Path"
        return "$PATH"

    def is_path_line(self, line: str) -> bool:
        text = line.strip()
        if self.flavor == ShellFlavor.CMD:
            return text.upper().startswith("SET PATH=")
        if self.flavor == ShellFlavor.POWERSHELL:
            return text.lower().replace(" ", "").startswith("$env:path=")
        return text.startswith("export PATH=")

    def path_line(self, entries: list[str]) -> str:
        sep = self.path_separator
        joined = sep.join(entries + [self.path_variable])
        if self.flavor == ShellFlavor.CMD:
            return f"set PATH={joined}"
        if self.flavor == ShellFlavor.POWERSHELL:
            return f'$env:Path = "{joined}"'
        return f'export PATH="{joined}"'

    def parse_path_line(self, line: str) -> list[str]:
        """Entries of one PATH line, without the back-reference to PATH.

        Accepts quoted or unquoted right-hand sides and the
        ``"a;" + $env:Path`` concatenation form.
        """
        _, _, rhs = line.strip().partition("=")
        rhs = rhs.strip()
        if self.flavor == ShellFlavor.POWERSHELL:
            rhs = rhs.replace("+", " ")
        rhs = rhs.replace('"', "").replace("'", "")

        sep = self.path_separator
        entries = []
        for raw in rhs.split(sep):
            entry = raw.strip()
            if not entry or _is_path_reference(entry, self.flavor):
                continue
            entries.append(entry)
        return entries

    # ── Aliases ─────────────────────────────────────────────────

    def alias_line(self, key: str, value: str) -> str:
        if self.flavor == ShellFlavor.CMD:
            return f"doskey {key}={value} $*"
        if self.flavor == ShellFlavor.POWERSHELL:
            return f"function {key} {{ {value} $args }}"
        return f'alias {key}="{value}"'

    def alias_prefix(self, key: str) -> str:
        if self.flavor == ShellFlavor.CMD:
            return f"doskey {key}="
        if self.flavor == ShellFlavor.POWERSHELL:
            return f"function {key} {{"
        return f"alias {key}="

    # ── Greeting ────────────────────────────────────────────────

    def greeting_line(self, env_name: str, env_id: str) -> str:
        text = f"{GREETING_TEXT} {env_name}, {env_id}"
        if self.flavor == ShellFlavor.POWERSHELL:
            return f"Write-Host '{text}' -ForegroundColor Green"
        return f"echo {text}"

    @property
    def greeting_prefix(self) -> str:
        if self.flavor == ShellFlavor.POWERSHELL:
            return f"Write-Host '{GREETING_TEXT}"
        return f"echo {GREETING_TEXT}"


def _is_path_reference(entry: str, flavor: ShellFlavor) -> bool:
    lowered = entry.lower()
    if flavor == ShellFlavor.CMD:
        return lowered == "%path%"
    if flavor == ShellFlavor.POWERSHELL:
        return lowered == "$env:path"
    return entry in ("$PATH", "${PATH}")
