"""
PostgreSQL: prebuilt binaries, one cluster per environment.

The cluster lives in ``PGDATA`` (metadata) or ``{service_data}/data``.
A cluster without ``PG_VERSION`` is created with ``initdb`` before the
first start.
"""

from __future__ import annotations

import logging
import shutil
import signal
from pathlib import Path
from typing import Any

from envis.core.errors import AlreadyExistsError, InstallFailureError
from envis.core.models.service import ServiceData, ServiceType
from envis.core.services.installers.base import DaemonInstaller

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432
INITDB_TIMEOUT = 300


class PostgresqlInstaller(DaemonInstaller):
    service_type = ServiceType.POSTGRESQL
    # SIGINT is postgres' "fast shutdown"
    stop_signal = signal.SIGINT

    @property
    def marker(self) -> str:
        return f"bin/{self._exe('postgres')}"

    def _exe(self, name: str) -> str:
        return f"{name}.exe" if self.os == "windows" else name

    def cluster_dir(self, service_data: ServiceData, data_dir: Path) -> Path:
        configured = service_data.meta_str("PGDATA")
        return Path(configured) if configured else data_dir / "data"

    def _initdb(self, install: Path, cluster: Path, superuser: str = "", auth: str = "") -> None:
        initdb = install / "bin" / self._exe("initdb")
        cmd = [str(initdb), "-D", str(cluster), "-E", "UTF8"]
        if superuser:
            cmd += ["-U", superuser]
        if auth:
            cmd += [f"--auth={auth}"]
        logger.info("Running initdb in %s", cluster)
        result = self.runner(cmd, timeout=INITDB_TIMEOUT)
        if not result.get("ok"):
            raise InstallFailureError("initdb failed", result.get("stderr") or result.get("error", ""))

    def initialize(
        self,
        service_data: ServiceData,
        data_dir: Path,
        port: int = DEFAULT_PORT,
        superuser: str = "",
        reset: bool = False,
        **options: Any,
    ) -> dict[str, Any]:
        """Create the cluster with ``initdb``; returns ``PGDATA``/``PGPORT``."""
        install = self.require_installed(service_data.version)
        cluster = data_dir / "data"
        if (cluster / "PG_VERSION").exists():
            if not reset:
                raise AlreadyExistsError(f"PostgreSQL cluster already exists at {cluster}")
            shutil.rmtree(cluster)
        cluster.mkdir(parents=True, exist_ok=True)
        self._initdb(install, cluster, superuser=superuser, auth="trust")
        return {"PGDATA": str(cluster), "PGPORT": port}

    def prepare(self, service_data: ServiceData, data_dir: Path, install: Path) -> None:
        cluster = self.cluster_dir(service_data, data_dir)
        if not (cluster / "PG_VERSION").exists():
            cluster.mkdir(parents=True, exist_ok=True)
            self._initdb(install, cluster)

    def command(self, service_data: ServiceData, data_dir: Path, install: Path) -> list[str]:
        cmd = [str(install / self.marker), "-D", str(self.cluster_dir(service_data, data_dir))]
        port = service_data.meta("PGPORT")
        if port:
            cmd += ["-p", str(port)]
        return cmd
