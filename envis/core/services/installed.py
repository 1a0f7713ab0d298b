"""
Inventory of shared installations under ``{root}/services``.

Each ``{type}/{version}`` directory whose type is a known service tag is
one installation, whether or not any environment references it.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

from envis.core.config.app_config import AppConfigStore
from envis.core.errors import NotFoundError
from envis.core.models.service import ServiceType

logger = logging.getLogger(__name__)

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_size(size: int) -> str:
    """``512 B``, ``1.50 KB``, ``2.00 GB``: two decimals above bytes."""
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(_UNITS) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{int(value)} B"
    return f"{value:.2f} {_UNITS[unit]}"


def folder_size(path: Path) -> int:
    """Total size in bytes of every regular file below ``path``."""
    if path.is_file():
        return path.stat().st_size
    total = 0
    for entry in path.rglob("*"):
        try:
            if entry.is_file() and not entry.is_symlink():
                total += entry.stat().st_size
        except OSError as e:
            logger.debug("Skipping %s: %s", entry, e)
    return total


class InstalledServices:
    def __init__(self, config: AppConfigStore) -> None:
        self.config = config

    def _path(self, service_type: ServiceType, version: str) -> Path:
        return self.config.services_folder / service_type.dir_name / version

    def list(self) -> list[dict[str, Any]]:
        """Every installation as ``{type, version, path}``, sorted by type then version."""
        root = self.config.services_folder
        if not root.is_dir():
            return []

        found: list[dict[str, Any]] = []
        for type_dir in sorted(root.iterdir()):
            if not type_dir.is_dir():
                continue
            try:
                service_type = ServiceType(type_dir.name)
            except ValueError:
                logger.debug("Ignoring unknown service folder %s", type_dir)
                continue
            for version_dir in sorted(type_dir.iterdir()):
                if version_dir.is_dir():
                    found.append({
                        "type": service_type.value,
                        "version": version_dir.name,
                        "path": str(version_dir),
                    })
        return found

    def size(self, service_type: ServiceType, version: str) -> dict[str, Any]:
        """
        Raises:
            NotFoundError: No such installation.
        """
        path = self._path(service_type, version)
        if not path.exists():
            raise NotFoundError(f"{service_type.default_name} {version} is not installed")
        size = folder_size(path)
        return {"size": size, "sizeFormatted": format_size(size)}

    def delete(self, service_type: ServiceType, version: str) -> None:
        """Remove an installation and its type folder once empty.

        Environments referencing it keep their records; their activation
        fails until the version is installed again.
        """
        path = self._path(service_type, version)
        if not path.exists():
            raise NotFoundError(f"{service_type.default_name} {version} is not installed")
        shutil.rmtree(path)

        parent = path.parent
        if parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
        logger.info("Deleted %s %s", service_type.value, version)
