"""
AppConfig store: reads and writes ``~/.envis.json`` and owns the root layout.

The root folder holds two subtrees::

    {root}/services/   shared installations, one per (type, version)
    {root}/envs/       environments and their service-data records

A corrupt or missing config file never blocks start-up: it is replaced
with defaults.  Moving the root copies both subtrees to the new location.
"""

from __future__ import annotations

import json
import logging
import shutil
import threading
from pathlib import Path

from pydantic import ValidationError

from envis.core.config.paths import config_file_path
from envis.core.errors import EnvisIOError
from envis.core.models.app_config import AppConfig
from envis.core.persistence.atomic import read_json, write_json

logger = logging.getLogger(__name__)

SERVICES_FOLDER = "services"
ENVS_FOLDER = "envs"


class AppConfigStore:
    """Process-wide holder of the current AppConfig."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or config_file_path()
        self._lock = threading.Lock()
        self._config = AppConfig()

    @property
    def path(self) -> Path:
        return self._path

    # ── Load / save ─────────────────────────────────────────────

    def load_or_init(self) -> AppConfig:
        """Read the config file, falling back to (and persisting) defaults.

        Raises:
            EnvisIOError: The root folder or its subtrees cannot be created.
        """
        with self._lock:
            config = self._read()
            if config is None:
                config = AppConfig()
                self._write(config)
            self._config = config
            _ensure_layout(config.root)
            return config.model_copy(deep=True)

    def _read(self) -> AppConfig | None:
        if not self._path.is_file():
            logger.info("No config at %s, writing defaults", self._path)
            return None
        try:
            return AppConfig.model_validate(read_json(self._path))
        except (json.JSONDecodeError, ValidationError, OSError, TypeError) as e:
            logger.warning("Corrupt config %s: %s, resetting to defaults", self._path, e)
            return None

    def _write(self, config: AppConfig) -> None:
        write_json(self._path, config.to_json_dict())

    # ── Accessors ───────────────────────────────────────────────

    def get(self) -> AppConfig:
        """Snapshot of the current config."""
        with self._lock:
            return self._config.model_copy(deep=True)

    @property
    def root(self) -> Path:
        with self._lock:
            return self._config.root

    @property
    def services_folder(self) -> Path:
        return self.root / SERVICES_FOLDER

    @property
    def envs_folder(self) -> Path:
        return self.root / ENVS_FOLDER

    # ── Mutation ────────────────────────────────────────────────

    def set(self, new: AppConfig) -> AppConfig:
        """Replace the config, migrating data if the root folder moved."""
        new = AppConfig.model_validate(new.model_dump())
        with self._lock:
            old_root = self._config.root
            if new.root != old_root:
                logger.info("Root folder changed: %s -> %s", old_root, new.root)
                migrate_root(old_root, new.root)
            self._config = new
            self._write(new)
            return new.model_copy(deep=True)

    def update(self, **changes) -> AppConfig:
        """Convenience wrapper: copy the current config with ``changes`` applied."""
        current = self.get()
        data = current.model_dump()
        data.update(changes)
        return self.set(AppConfig.model_validate(data))

    def record_used_environments(self, env_ids: list[str]) -> AppConfig:
        """Store ``env_ids`` as the most-recently-used list (duplicates removed)."""
        return self.update(last_used_environment_ids=list(env_ids))


def _ensure_layout(root: Path) -> None:
    try:
        for sub in (root, root / SERVICES_FOLDER, root / ENVS_FOLDER):
            sub.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise EnvisIOError(f"Cannot create data folder {root}: {e}") from e


def migrate_root(old_root: Path, new_root: Path) -> None:
    """Copy ``services/`` and ``envs/`` from ``old_root`` into ``new_root``.

    Creating the new subtrees is mandatory; copying individual files is
    best-effort and failures are only logged.
    """
    _ensure_layout(new_root)
    if not old_root.is_dir():
        return

    for name in (SERVICES_FOLDER, ENVS_FOLDER):
        src = old_root / name
        if src.is_dir():
            logger.info("Migrating %s -> %s", src, new_root / name)
            _copy_tree(src, new_root / name)
    logger.info("Root migration finished")


def _copy_tree(src: Path, dst: Path) -> None:
    dst.mkdir(parents=True, exist_ok=True)
    for entry in src.iterdir():
        target = dst / entry.name
        try:
            if entry.is_dir() and not entry.is_symlink():
                _copy_tree(entry, target)
            else:
                shutil.copy2(entry, target, follow_symlinks=False)
        except OSError as e:
            logger.warning("Skipping %s during migration: %s", entry, e)
