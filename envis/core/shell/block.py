"""
Pure text transforms on the managed block of one rc file.

A file is split into three parts around the markers::

    before     user content above the block (kept verbatim)
    interior   envis-owned lines, warning line excluded
    after      user content below the block (kept verbatim)

Interior helpers take and return plain ``list[str]`` so the writer can
chain several edits in memory and write the file once.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from envis.core.errors import CorruptedStateError
from envis.core.shell.syntax import (
    BLOCK_BEGIN,
    BLOCK_END,
    BLOCK_WARNING,
    ShellSyntax,
    normalize_marker,
)


@dataclass
class BlockDocument:
    """An rc file parsed around its managed block."""

    syntax: ShellSyntax
    before: list[str] = field(default_factory=list)
    interior: list[str] = field(default_factory=list)
    after: list[str] = field(default_factory=list)
    has_block: bool = False
    original: str = field(default="", repr=False)

    @property
    def changed(self) -> bool:
        return self.render() != self.original

    @classmethod
    def parse(cls, text: str, syntax: ShellSyntax, source: str = "") -> BlockDocument:
        """Split ``text``; raises CorruptedStateError on unpaired markers."""
        lines = text.splitlines()
        begins = [i for i, line in enumerate(lines) if normalize_marker(line) == BLOCK_BEGIN]
        ends = [i for i, line in enumerate(lines) if normalize_marker(line) == BLOCK_END]

        if not begins and not ends:
            return cls(syntax=syntax, before=lines, original=text)

        where = f" in {source}" if source else ""
        if len(begins) != 1 or len(ends) != 1:
            raise CorruptedStateError(
                f"Expected one managed block{where}, found "
                f"{len(begins)} BEGIN and {len(ends)} END markers"
            )
        begin, end = begins[0], ends[0]
        if end < begin:
            raise CorruptedStateError(f"END marker precedes BEGIN marker{where}")

        interior = [
            line for line in lines[begin + 1:end]
            if normalize_marker(line) != BLOCK_WARNING
        ]
        return cls(
            syntax=syntax,
            before=lines[:begin],
            interior=interior,
            after=lines[end + 1:],
            has_block=True,
            original=text,
        )

    def render(self) -> str:
        s = self.syntax
        before = list(self.before)
        if not self.has_block:
            while before and not before[-1].strip():
                before.pop()
            if before:
                before.append("")
            elif s.file_header:
                before.append(s.file_header)

        lines = [
            *before,
            s.begin_line,
            s.warning_line,
            *self.interior,
            s.end_line,
            *self.after,
        ]
        return "\n".join(lines) + "\n"


# ── Interior transforms ─────────────────────────────────────────


def without_prefix(interior: list[str], prefix: str) -> list[str]:
    return [line for line in interior if not line.strip().startswith(prefix)]


def set_export(interior: list[str], syntax: ShellSyntax, key: str, value: str) -> list[str]:
    lines = without_prefix(interior, syntax.export_prefix(key))
    lines.append(syntax.export_line(key, value))
    return lines


def remove_export(interior: list[str], syntax: ShellSyntax, key: str) -> list[str]:
    return without_prefix(interior, syntax.export_prefix(key))


def set_alias(interior: list[str], syntax: ShellSyntax, key: str, value: str) -> list[str]:
    lines = without_prefix(interior, syntax.alias_prefix(key))
    lines.append(syntax.alias_line(key, value))
    return lines


def remove_alias(interior: list[str], syntax: ShellSyntax, key: str) -> list[str]:
    return without_prefix(interior, syntax.alias_prefix(key))


def set_greeting(interior: list[str], syntax: ShellSyntax, env_name: str, env_id: str) -> list[str]:
    lines = without_prefix(interior, syntax.greeting_prefix)
    lines.append(syntax.greeting_line(env_name, env_id))
    return lines


def remove_greeting(interior: list[str], syntax: ShellSyntax) -> list[str]:
    return without_prefix(interior, syntax.greeting_prefix)


# ── PATH ────────────────────────────────────────────────────────


def current_paths(interior: list[str], syntax: ShellSyntax) -> list[str]:
    """All PATH entries in the block, first occurrence wins."""
    seen: set[str] = set()
    entries: list[str] = []
    for line in interior:
        if not syntax.is_path_line(line):
            continue
        for entry in syntax.parse_path_line(line):
            if entry not in seen:
                seen.add(entry)
                entries.append(entry)
    return entries


def write_paths(interior: list[str], syntax: ShellSyntax, entries: list[str]) -> list[str]:
    """Replace every PATH line with one line at the top of the block."""
    lines = [line for line in interior if not syntax.is_path_line(line)]
    if entries:
        lines.insert(0, syntax.path_line(entries))
    return lines


def _with_pinned_last(entries: list[str], pinned: str | None) -> list[str]:
    if not pinned:
        return entries
    return [e for e in entries if e != pinned] + [pinned]


def add_path(
    interior: list[str],
    syntax: ShellSyntax,
    path: str,
    pinned: str | None = None,
) -> list[str]:
    """Put ``path`` first; an entry already present keeps its place."""
    entries = current_paths(interior, syntax)
    if path in entries:
        return interior
    wanted = _with_pinned_last([path, *entries], pinned)
    if wanted == entries:
        return interior
    return write_paths(interior, syntax, wanted)


def delete_path(
    interior: list[str],
    syntax: ShellSyntax,
    path: str,
    pinned: str | None = None,
) -> list[str]:
    """Drop ``path``; the pinned base entry is never removed."""
    if pinned and path == pinned:
        return interior
    entries = current_paths(interior, syntax)
    if path not in entries:
        return interior
    remaining = [e for e in entries if e != path]
    return write_paths(interior, syntax, _with_pinned_last(remaining, pinned))


def cleared(syntax: ShellSyntax, pinned: str | None = None) -> list[str]:
    """Interior after ``clear_block_content``: only the pinned PATH line."""
    return [syntax.path_line([pinned])] if pinned else []


def ensure_pinned(interior: list[str], syntax: ShellSyntax, pinned: str | None) -> list[str]:
    """Make sure the pinned entry is the last PATH entry."""
    if not pinned:
        return interior
    entries = current_paths(interior, syntax)
    wanted = _with_pinned_last(entries, pinned)
    if wanted == entries:
        return interior
    return write_paths(interior, syntax, wanted)
