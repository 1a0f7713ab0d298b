"""
Installer registry: one installer instance per installable service type.

``custom``, ``host`` and ``ssl`` have nothing to download and therefore
no installer.
"""

from __future__ import annotations

import logging

from envis.core.config.app_config import AppConfigStore
from envis.core.config.catalog import ServiceCatalog
from envis.core.errors import NotFoundError
from envis.core.models.service import ServiceType
from envis.core.services.download_manager import DownloadManager
from envis.core.services.installers.base import Runner, ServiceInstaller
from envis.core.services.installers.dnsmasq import DnsmasqInstaller
from envis.core.services.installers.java import JavaInstaller
from envis.core.services.installers.mariadb import MariadbInstaller, MysqlInstaller
from envis.core.services.installers.mongodb import MongodbInstaller
from envis.core.services.installers.nginx import NginxInstaller
from envis.core.services.installers.nodejs import NodejsInstaller
from envis.core.services.installers.postgresql import PostgresqlInstaller
from envis.core.services.installers.python import PythonInstaller
from envis.core.services.subprocess_runner import run_command

logger = logging.getLogger(__name__)

INSTALLER_CLASSES: dict[ServiceType, type[ServiceInstaller]] = {
    ServiceType.NODEJS: NodejsInstaller,
    ServiceType.MONGODB: MongodbInstaller,
    ServiceType.MARIADB: MariadbInstaller,
    ServiceType.MYSQL: MysqlInstaller,
    ServiceType.POSTGRESQL: PostgresqlInstaller,
    ServiceType.PYTHON: PythonInstaller,
    ServiceType.JAVA: JavaInstaller,
    ServiceType.NGINX: NginxInstaller,
    ServiceType.DNSMASQ: DnsmasqInstaller,
}


class InstallerRegistry:
    def __init__(
        self,
        config: AppConfigStore,
        downloads: DownloadManager,
        catalog: ServiceCatalog | None = None,
        runner: Runner = run_command,
        os: str | None = None,
        arch: str | None = None,
    ) -> None:
        self._installers: dict[ServiceType, ServiceInstaller] = {
            service_type: cls(config, downloads, catalog=catalog, runner=runner, os=os, arch=arch)
            for service_type, cls in INSTALLER_CLASSES.items()
        }

    def __contains__(self, service_type: ServiceType) -> bool:
        return service_type in self._installers

    def types(self) -> list[ServiceType]:
        return list(self._installers)

    def get(self, service_type: ServiceType | str) -> ServiceInstaller:
        """Installer for ``service_type``.

        Raises:
            NotFoundError: Unknown tag, or a type with nothing to install.
        """
        if isinstance(service_type, str) and not isinstance(service_type, ServiceType):
            try:
                service_type = ServiceType.parse(service_type)
            except ValueError:
                raise NotFoundError(f"Unknown service type '{service_type}'") from None
        try:
            return self._installers[service_type]
        except KeyError:
            raise NotFoundError(f"{service_type.default_name} has no installer") from None

    def is_installed(self, service_type: ServiceType, version: str) -> bool:
        installer = self._installers.get(service_type)
        return installer is not None and installer.is_installed(version)
