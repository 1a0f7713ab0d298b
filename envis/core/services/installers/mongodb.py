"""
MongoDB: prebuilt mongod archives plus the mongosh shell.

Installation runs in two phases under one download task.  After mongod is
extracted the task is rearmed with the mongosh URL and the shell binary
is copied into the MongoDB ``bin/``.  A mongosh failure is only a warning:
the task still settles at ``installed``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

import yaml

from envis.core.errors import (
    AlreadyExistsError,
    DownloadCancelledError,
    EnvisError,
    InstallFailureError,
    NotFoundError,
)
from envis.core.models.download import DownloadStatus
from envis.core.models.service import ServiceData, ServiceType
from envis.core.services.installers import archive
from envis.core.services.installers.base import DaemonInstaller

logger = logging.getLogger(__name__)

MONGOSH_MODERN = "2.5.8"
MONGOSH_LEGACY = "1.10.6"
DEFAULT_PORT = 27017
DEFAULT_BIND_IP = "127.0.0.1"
CONFIG_KEY = "MONGODB_CONFIG"


def mongosh_version_for(mongodb_version: str) -> str:
    """mongosh 2.x for MongoDB 7+, 1.x before that."""
    head = mongodb_version.split(".", 1)[0]
    major = int(head) if head.isdigit() else 0
    return MONGOSH_MODERN if major >= 7 else MONGOSH_LEGACY


def render_config(data_path: Path, log_path: Path, port: int, bind_ip: str) -> str:
    config = {
        "storage": {"dbPath": data_path.as_posix()},
        "systemLog": {
            "destination": "file",
            "logAppend": True,
            "path": log_path.as_posix(),
        },
        "net": {"port": port, "bindIp": bind_ip},
    }
    header = "# MongoDB configuration generated by envis\n"
    return header + yaml.safe_dump(config, sort_keys=False)


class MongodbInstaller(DaemonInstaller):
    service_type = ServiceType.MONGODB

    @property
    def marker(self) -> str:
        return f"bin/{self._exe('mongod')}"

    def _exe(self, name: str) -> str:
        return f"{name}.exe" if self.os == "windows" else name

    # ── Install ─────────────────────────────────────────────────

    def install_archive(self, version: str, archive_path: Path, dest: Path) -> None:
        archive.extract_archive(archive_path, dest, runner=self.runner)
        mongod = dest / self.marker
        if mongod.exists():
            return
        # some archives nest the binaries one level deeper
        found = archive.find_file(dest, self._exe("mongod"), max_depth=4)
        if found is None:
            raise InstallFailureError(f"mongod not found in {archive_path.name}")
        mongod.parent.mkdir(parents=True, exist_ok=True)
        found.rename(mongod)

    def post_install(self, version: str, dest: Path) -> str | None:
        try:
            self._install_mongosh(version, dest)
        except DownloadCancelledError:
            logger.info("MongoDB %s install was cancelled before mongosh", version)
            return None
        except (EnvisError, OSError) as e:
            warning = f"MongoDB installed, but mongosh was not: {e}"
            logger.warning("%s", warning)
            return warning
        return None

    def _install_mongosh(self, version: str, dest: Path) -> None:
        shell_version = mongosh_version_for(version)
        entry = self.catalog.entry("mongosh")
        filename = entry.render_filename(shell_version, self.os, self.arch)
        urls = entry.render_urls(shell_version, self.os, self.arch, filename)
        task_id = self.task_id(version)
        current = self.downloads.get_task(task_id)
        if current is not None and current.status == DownloadStatus.CANCELLED:
            # rearming would replace the cancelled task
            raise DownloadCancelledError(f"Download {task_id} was cancelled")

        logger.info("Rearming task %s for mongosh %s", task_id, shell_version)
        self.downloads.start_download(task_id, urls, dest, filename, overwrite=True)
        self.downloads.update_task_status(task_id, DownloadStatus.INSTALLING)

        archive_path = dest / filename
        staging = dest / "temp_mongosh"
        try:
            archive.extract_archive(archive_path, staging, strip_components=False, runner=self.runner)
            exe = self._exe("mongosh")
            found = archive.find_file(staging, exe)
            if found is None:
                raise InstallFailureError(f"{exe} not found in {filename}")
            bin_dir = dest / "bin"
            bin_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(found, bin_dir / exe)
            archive.make_executable(dest, ("bin",))
            logger.info("mongosh %s copied to %s", shell_version, bin_dir)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
            archive.remove_archive(archive_path)

    # ── Data directory ──────────────────────────────────────────

    def config_path(self, service_data: ServiceData, data_dir: Path) -> Path:
        configured = service_data.meta_str(CONFIG_KEY)
        return Path(configured) if configured else data_dir / "mongod.conf"

    def initialize(
        self,
        service_data: ServiceData,
        data_dir: Path,
        port: int = DEFAULT_PORT,
        bind_ip: str = DEFAULT_BIND_IP,
        reset: bool = False,
        **options: Any,
    ) -> dict[str, Any]:
        """Write ``mongod.conf`` and create the data and log directories."""
        self.require_installed(service_data.version)
        config_file = data_dir / "mongod.conf"
        if config_file.exists() and not reset:
            raise AlreadyExistsError(f"MongoDB is already initialised ({config_file})")

        data_path = data_dir / "data"
        log_dir = data_dir / "logs"
        if reset and data_path.exists():
            shutil.rmtree(data_path)
        data_path.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)
        config_file.write_text(
            render_config(data_path, log_dir / "mongod.log", port, bind_ip),
            encoding="utf-8",
        )
        logger.info("MongoDB config written to %s", config_file)
        return {CONFIG_KEY: str(config_file)}

    # ── Process ─────────────────────────────────────────────────

    def prepare(self, service_data: ServiceData, data_dir: Path, install: Path) -> None:
        config_file = self.config_path(service_data, data_dir)
        if not config_file.exists():
            raise NotFoundError(
                f"MongoDB config {config_file} does not exist; initialise the service first"
            )
        try:
            config = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise EnvisError(f"Invalid MongoDB config {config_file}: {e}") from e

        db_path = (config.get("storage") or {}).get("dbPath")
        if db_path:
            Path(db_path).mkdir(parents=True, exist_ok=True)
        log_path = (config.get("systemLog") or {}).get("path")
        if log_path:
            Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    def command(self, service_data: ServiceData, data_dir: Path, install: Path) -> list[str]:
        return [
            str(install / self.marker),
            "--config",
            str(self.config_path(service_data, data_dir)),
        ]
