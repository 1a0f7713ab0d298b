"""
Dnsmasq: built from source with ``make`` and ``make install PREFIX=…``.

There are no upstream binaries for Windows, so installation is refused
there.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from envis.core.errors import EnvisError, InstallFailureError, NotFoundError
from envis.core.models.service import ServiceData, ServiceType
from envis.core.services.installers import archive, build
from envis.core.services.installers.base import DaemonInstaller

logger = logging.getLogger(__name__)

CONF_KEY = "DNSMASQ_CONF"
DEFAULT_PORT = 5353

DEFAULT_CONF = f"""\
# Dnsmasq configuration generated by envis
# Listen on an unprivileged port; use 53 only when running as root.
port={DEFAULT_PORT}

# Resolve a local domain to this machine:
# address=/test/127.0.0.1

# Upstream resolvers:
# server=1.1.1.1
# server=8.8.8.8

# Do not read /etc/resolv.conf:
# no-resolv

# Log every query:
# log-queries
"""


class DnsmasqInstaller(DaemonInstaller):
    service_type = ServiceType.DNSMASQ
    marker = "sbin/dnsmasq"

    def check_supported(self) -> None:
        if self.os == "windows":
            raise EnvisError(
                "Dnsmasq cannot be installed automatically on Windows; "
                f"place a dnsmasq.exe build in {self.config.services_folder / 'dnsmasq'} manually"
            )

    def install_archive(self, version: str, archive_path: Path, dest: Path) -> None:
        src_dir = dest / "src"
        archive.extract_archive(archive_path, src_dir, runner=self.runner)
        if not (src_dir / "Makefile").exists():
            raise InstallFailureError(f"No Makefile in {archive_path.name}")
        logger.info("Building dnsmasq %s from source", version)
        try:
            build.execute_plan(build.make_plan(src_dir, dest), runner=self.runner)
            example = src_dir / "dnsmasq.conf.example"
            target = dest / "dnsmasq.conf"
            if example.exists() and not target.exists():
                shutil.copy2(example, target)
        finally:
            shutil.rmtree(src_dir, ignore_errors=True)

    def conf_path(self, service_data: ServiceData, install: Path) -> Path | None:
        configured = service_data.meta_str(CONF_KEY)
        if configured:
            return Path(configured)
        fallback = install / "dnsmasq.conf"
        return fallback if fallback.exists() else None

    def prepare(self, service_data: ServiceData, data_dir: Path, install: Path) -> None:
        conf = self.conf_path(service_data, install)
        if conf is None or not conf.exists():
            raise NotFoundError(f"No dnsmasq configuration for {service_data.name}")

    def command(self, service_data: ServiceData, data_dir: Path, install: Path) -> list[str]:
        return [
            str(install / self.marker),
            "--keep-in-foreground",
            f"--conf-file={self.conf_path(service_data, install)}",
            f"--pid-file={data_dir / 'dnsmasq.daemon.pid'}",
        ]
