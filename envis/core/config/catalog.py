"""
Service catalog: available versions and download mirrors per service type.

The catalog ships as ``envis/core/data/catalog.yml``.  Each top-level key
is an installable artifact (``nodejs``, ``mongodb``, ``mongosh``, ``maven``
...) whose filename and mirror URLs are templates rendered against the
host OS and CPU architecture.
"""

from __future__ import annotations

import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from envis.core.config.paths import arch_name, os_name
from envis.core.errors import EnvisError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "data" / "catalog.yml"

_DEFAULT_KEY = "default"


class CatalogVersion(BaseModel):
    version: str
    lts: bool | None = None
    date: str = ""

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Mirror(BaseModel):
    url: str
    os: list[str] | None = None

    def applies_to(self, os: str) -> bool:
        return self.os is None or os in self.os


class CatalogEntry(BaseModel):
    """Download recipe for one artifact."""

    key: str = ""
    versions: list[CatalogVersion] = Field(default_factory=list)
    filename: dict[str, str] = Field(default_factory=dict)
    arch: dict[str, dict[str, str]] = Field(default_factory=dict)
    mirrors: list[Mirror] = Field(default_factory=list)

    @field_validator("versions", mode="before")
    @classmethod
    def _coerce_versions(cls, value: Any) -> Any:
        # YAML turns bare 8 or 2.90 into numbers
        if not isinstance(value, list):
            return value
        out = []
        for item in value:
            if isinstance(item, dict) and "version" in item:
                item = {**item, "version": str(item["version"])}
            out.append(item)
        return out

    @field_validator("mirrors", mode="before")
    @classmethod
    def _coerce_mirrors(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [{"url": m} if isinstance(m, str) else m for m in value]

    # ── Queries ─────────────────────────────────────────────────

    def version_strings(self) -> list[str]:
        return [v.version for v in self.versions]

    def has_version(self, version: str) -> bool:
        return version in self.version_strings()

    def arch_token(self, os: str, arch: str) -> str:
        table = self.arch.get(os) or self.arch.get(_DEFAULT_KEY) or {}
        return table.get(arch, arch)

    def render_filename(self, version: str, os: str | None = None, arch: str | None = None) -> str:
        os = os or os_name()
        arch = arch or arch_name()
        template = self.filename.get(os) or self.filename.get(_DEFAULT_KEY)
        if not template:
            raise EnvisError(f"{self.key} has no download for {os}")
        return template.format(**_placeholders(version, self.arch_token(os, arch)))

    def render_urls(
        self,
        version: str,
        os: str | None = None,
        arch: str | None = None,
        filename: str | None = None,
    ) -> list[str]:
        """Mirror URLs for ``version`` in priority order."""
        os = os or os_name()
        arch = arch or arch_name()
        filename = filename or self.render_filename(version, os, arch)
        values = _placeholders(version, self.arch_token(os, arch))
        values["filename"] = filename
        return [m.url.format(**values) for m in self.mirrors if m.applies_to(os)]


def _placeholders(version: str, arch: str) -> dict[str, str]:
    numbers = re.findall(r"\d+", version)
    major = numbers[0] if numbers else version
    series = ".".join(numbers[:2]) if len(numbers) >= 2 else major
    return {"version": version, "arch": arch, "major": major, "series": series}


class ServiceCatalog:
    """All catalog entries, keyed by artifact name."""

    def __init__(self, entries: dict[str, CatalogEntry]) -> None:
        self._entries = entries

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def entry(self, key: str) -> CatalogEntry:
        try:
            return self._entries[key]
        except KeyError:
            raise NotFoundError(f"No catalog entry for '{key}'") from None

    def versions(self, key: str) -> list[dict[str, Any]]:
        return [v.to_dict() for v in self.entry(key).versions]


def load_catalog(path: Path | None = None) -> ServiceCatalog:
    """Parse and validate a catalog file.

    Entries that fail validation are skipped with a warning so one bad
    recipe cannot take the others down.
    """
    path = path or DEFAULT_CATALOG_PATH
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise EnvisError(f"Catalog {path} is not a mapping")

    entries: dict[str, CatalogEntry] = {}
    for key, raw in data.items():
        if not isinstance(raw, dict):
            logger.warning("Catalog entry %s is not a mapping, skipping", key)
            continue
        try:
            entries[key] = CatalogEntry.model_validate({**raw, "key": key})
        except ValueError as e:
            logger.warning("Invalid catalog entry %s: %s", key, e)
    logger.debug("Loaded %d catalog entries from %s", len(entries), path)
    return ServiceCatalog(entries)


@lru_cache(maxsize=1)
def default_catalog() -> ServiceCatalog:
    """The packaged catalog, parsed once per process."""
    return load_catalog(DEFAULT_CATALOG_PATH)
