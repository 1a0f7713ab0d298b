"""
ServiceInstaller: the shared install pipeline every service type builds on.

Flow for ``download_and_install(version)``::

    catalog -> mirror URLs -> DownloadManager.start_download(task "{type}-{version}")
        -> on_success: installing -> extract (or build) -> chmod bin/sbin
                       -> delete archive -> post_install -> installed

Installations live at ``{root}/services/{type}/{version}`` and are shared
by every environment that references that version.  Subclasses override
the hooks (``install_archive``, ``post_install``) and, for daemons, the
process-control hooks.
"""

from __future__ import annotations

import logging
import shutil
import signal
from collections.abc import Callable
from pathlib import Path
from typing import Any

from envis.core.config.app_config import AppConfigStore
from envis.core.config.catalog import ServiceCatalog, default_catalog
from envis.core.config.paths import arch_name, os_name
from envis.core.errors import EnvisError, NotFoundError
from envis.core.models.download import DownloadStatus, DownloadTask
from envis.core.models.service import ServiceData, ServiceStatus, ServiceType
from envis.core.services.download_manager import DownloadManager
from envis.core.services.installers import archive, process
from envis.core.services.subprocess_runner import run_command

logger = logging.getLogger(__name__)

Runner = Callable[..., dict[str, Any]]


class ServiceInstaller:
    """Download, install and (optionally) run one service type."""

    service_type: ServiceType
    catalog_key: str = ""
    # relative to the install dir; its presence means "installed"
    marker: str | None = None
    executable_dirs: tuple[str, ...] = archive.EXECUTABLE_DIRS
    supports_process: bool = False

    def __init__(
        self,
        config: AppConfigStore,
        downloads: DownloadManager,
        catalog: ServiceCatalog | None = None,
        runner: Runner = run_command,
        os: str | None = None,
        arch: str | None = None,
    ) -> None:
        self.config = config
        self.downloads = downloads
        self.catalog = catalog or default_catalog()
        self.runner = runner
        self.os = os or os_name()
        self.arch = arch or arch_name()

    @property
    def key(self) -> str:
        return self.catalog_key or self.service_type.value

    # ── Identity & layout ───────────────────────────────────────

    def task_id(self, version: str) -> str:
        return f"{self.service_type.value}-{version}"

    def install_path(self, version: str) -> Path:
        return self.config.services_folder / self.service_type.dir_name / version

    def is_installed(self, version: str) -> bool:
        path = self.install_path(version)
        if self.marker:
            return (path / self.marker).exists()
        return path.is_dir() and any(path.iterdir())

    def available_versions(self) -> list[dict[str, Any]]:
        return self.catalog.versions(self.key)

    def download_info(self, version: str) -> tuple[list[str], str]:
        """Mirror URLs (priority order) and archive filename for ``version``."""
        entry = self.catalog.entry(self.key)
        filename = entry.render_filename(version, self.os, self.arch)
        urls = entry.render_urls(version, self.os, self.arch, filename)
        if not urls:
            raise EnvisError(f"No download mirror for {self.key} {version} on {self.os}")
        return urls, filename

    # ── Install pipeline ────────────────────────────────────────

    def check_supported(self) -> None:
        """Raise EnvisError if this type cannot be installed on this host."""

    def download_and_install(self, version: str) -> DownloadTask | None:
        """Install ``version``; blocks until done.

        Returns:
            Final task snapshot, or None when already installed.

        Raises:
            DownloadFailureError: Every mirror failed.
            DownloadCancelledError: Cancelled while downloading.
            InstallFailureError: Extraction or compilation failed.
        """
        if self.is_installed(version):
            logger.info("%s %s is already installed", self.service_type.value, version)
            return None
        self.check_supported()

        urls, filename = self.download_info(version)
        task_id = self.task_id(version)
        logger.info("Installing %s %s (%d mirrors)", self.service_type.value, version, len(urls))
        self.downloads.start_download(
            task_id,
            urls,
            self.download_dir(version),
            filename,
            overwrite=True,
            on_success=lambda task: self._on_downloaded(version, task),
        )
        return self.downloads.get_task(task_id)

    def download_dir(self, version: str) -> Path:
        return self.install_path(version)

    def _on_downloaded(self, version: str, task: DownloadTask) -> None:
        self.downloads.update_task_status(task.id, DownloadStatus.INSTALLING)
        dest = self.install_path(version)
        try:
            self.install_archive(version, task.target_path, dest)
            archive.make_executable(dest, self.executable_dirs)
            archive.remove_archive(task.target_path)
            warning = self.post_install(version, dest)
        except Exception:
            logger.error("Installing %s %s failed, removing %s", self.service_type.value, version, dest)
            shutil.rmtree(dest, ignore_errors=True)
            raise
        if self._settle_installed(task.id, dest, warning):
            logger.info("%s %s installed at %s", self.service_type.value, version, dest)

    def _settle_installed(self, task_id: str, dest: Path, warning: str | None = None) -> bool:
        """Settle at ``installed``; a task cancelled meanwhile loses ``dest``."""
        if self.downloads.settle(task_id, DownloadStatus.INSTALLED, warning):
            return True
        logger.info("Task %s was cancelled during install, removing %s", task_id, dest)
        shutil.rmtree(dest, ignore_errors=True)
        return False

    def install_archive(self, version: str, archive_path: Path, dest: Path) -> None:
        archive.extract_archive(archive_path, dest, runner=self.runner)

    def post_install(self, version: str, dest: Path) -> str | None:
        """Type-specific finishing step.

        Returns:
            A non-fatal warning to attach to the task, or None.
        """
        return None

    def cancel_download(self, version: str) -> None:
        self.downloads.cancel(self.task_id(version))

    def download_progress(self, version: str) -> DownloadTask | None:
        return self.downloads.get_task(self.task_id(version))

    # ── Service-data hooks ──────────────────────────────────────

    def initialize(self, service_data: ServiceData, data_dir: Path, **options: Any) -> dict[str, Any]:
        """Prepare a data directory; returns metadata entries to merge."""
        raise EnvisError(f"{self.service_type.default_name} has no initialise step")

    # ── Process control ─────────────────────────────────────────

    def pid_file(self, data_dir: Path) -> Path:
        return data_dir / f"{self.service_type.value}.pid"

    def log_file(self, data_dir: Path) -> Path:
        return data_dir / "logs" / f"{self.service_type.value}.log"

    def require_installed(self, version: str) -> Path:
        if not self.is_installed(version):
            raise NotFoundError(f"{self.service_type.default_name} {version} is not installed")
        return self.install_path(version)

    def start(self, service_data: ServiceData, data_dir: Path) -> dict[str, Any]:
        raise EnvisError(f"{self.service_type.default_name} is not a daemon")

    def stop(self, service_data: ServiceData, data_dir: Path) -> bool:
        raise EnvisError(f"{self.service_type.default_name} is not a daemon")

    def restart(self, service_data: ServiceData, data_dir: Path) -> dict[str, Any]:
        self.stop(service_data, data_dir)
        return self.start(service_data, data_dir)

    def status(self, service_data: ServiceData, data_dir: Path) -> ServiceStatus:
        return ServiceStatus.UNKNOWN


class DaemonInstaller(ServiceInstaller):
    """A service type whose binary runs as a long-lived foreground process."""

    supports_process = True
    stop_signal: int = signal.SIGTERM

    def command(self, service_data: ServiceData, data_dir: Path, install: Path) -> list[str]:
        raise NotImplementedError

    def prepare(self, service_data: ServiceData, data_dir: Path, install: Path) -> None:
        """Create whatever the daemon expects on disk before it starts."""

    def start(self, service_data: ServiceData, data_dir: Path) -> dict[str, Any]:
        install = self.require_installed(service_data.version)
        data_dir.mkdir(parents=True, exist_ok=True)
        self.prepare(service_data, data_dir, install)
        cmd = self.command(service_data, data_dir, install)
        pid = process.start_process(
            cmd,
            self.pid_file(data_dir),
            cwd=data_dir,
            log_file=self.log_file(data_dir),
        )
        logger.info("%s %s started (pid %d)", self.service_type.default_name, service_data.version, pid)
        return {"pid": pid, "command": cmd}

    def stop(self, service_data: ServiceData, data_dir: Path) -> bool:
        stopped = process.stop_process(
            self.pid_file(data_dir), sig=self.stop_signal, runner=self.runner,
        )
        if not stopped:
            logger.info("%s %s was not running", self.service_type.default_name, service_data.version)
        return stopped

    def status(self, service_data: ServiceData, data_dir: Path) -> ServiceStatus:
        return process.process_status(self.pid_file(data_dir))
