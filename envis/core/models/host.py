"""
HostEntry: one line of the managed block inside the OS hosts file.
"""

from __future__ import annotations

from pydantic import model_validator

from envis.core.models.base import CamelModel


class HostEntry(CamelModel):
    """``ip hostname [# comment]``, prefixed with ``# `` when disabled."""

    id: str = ""
    ip: str
    hostname: str
    comment: str | None = None
    enabled: bool = True

    @model_validator(mode="after")
    def _derive_id(self) -> HostEntry:
        if not self.id:
            self.id = self.key
        return self

    @property
    def key(self) -> str:
        return f"{self.ip}_{self.hostname}"

    def to_line(self) -> str:
        line = f"{self.ip} {self.hostname}"
        if self.comment:
            line = f"{line} # {self.comment}"
        return line if self.enabled else f"# {line}"

    @classmethod
    def from_line(cls, line: str) -> HostEntry | None:
        """Parse one hosts line; returns None for blank or non-entry lines."""
        text = line.strip()
        if not text:
            return None

        enabled = True
        if text.startswith("#"):
            enabled = False
            text = text.lstrip("#").strip()

        comment = None
        if "#" in text:
            text, _, comment = text.partition("#")
            text = text.strip()
            comment = comment.strip() or None

        parts = text.split()
        if len(parts) < 2 or not _looks_like_ip(parts[0]):
            return None
        return cls(ip=parts[0], hostname=parts[1], comment=comment, enabled=enabled)


def _looks_like_ip(value: str) -> bool:
    if ":" in value:
        return all(c in "0123456789abcdefABCDEF:." for c in value)
    pieces = value.split(".")
    return len(pieces) == 4 and all(p.isdigit() and 0 <= int(p) <= 255 for p in pieces)
