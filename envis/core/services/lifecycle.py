"""
Service lifecycles: what activating a ServiceData does to the outside world.

Four strategies, chosen by service type:

    host      merge the ServiceData's host entries into the hosts block
    custom    export envVars, prepend paths, define aliases from metadata
    nodejs    prepend node's bin (and the npm global prefix's bin)
    standard  everything else, driven by the sub_dirs / env_vars tables

Every shell mutation of one activation runs inside a single
``ShellBlockWriter.transaction()`` so each rc file is written once.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from envis.core.config.app_config import AppConfigStore
from envis.core.errors import NeedsAdminError, NotFoundError
from envis.core.models.host import HostEntry
from envis.core.models.metadata import CustomMetadata, HostMetadata, NodejsMetadata
from envis.core.models.service import ServiceData, ServiceType
from envis.core.services import env_tables
from envis.core.services.hosts_manager import HostsManager
from envis.core.shell.writer import ShellBlockWriter

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    return value if isinstance(value, str) else str(value).strip('"')


class ServiceLifecycle(ABC):
    """Activation contract shared by every strategy."""

    @abstractmethod
    def activate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        """Apply the ServiceData to the shell block (or hosts file)."""

    @abstractmethod
    def deactivate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        """Undo exactly what ``activate`` applied."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class _ShellLifecycle(ServiceLifecycle):
    def __init__(self, shell: ShellBlockWriter, config: AppConfigStore, os: str) -> None:
        self.shell = shell
        self.config = config
        self.os = os

    def install_dir(self, service_data: ServiceData) -> Path:
        return env_tables.install_dir(
            self.config.services_folder, service_data.service_type, service_data.version,
        )

    def require_install(self, service_data: ServiceData) -> Path:
        install = self.install_dir(service_data)
        if not install.is_dir():
            raise NotFoundError(
                f"{service_data.service_type.default_name} {service_data.version} is not installed "
                f"({install})"
            )
        return install


# ── Host ────────────────────────────────────────────────────────


class HostLifecycle(ServiceLifecycle):
    def __init__(self, hosts: HostsManager) -> None:
        self.hosts = hosts

    def _entries(self, service_data: ServiceData) -> list[HostEntry]:
        meta = HostMetadata.model_validate(service_data.metadata or {})
        entries = []
        for raw in meta.hosts:
            try:
                entries.append(HostEntry.model_validate(raw))
            except ValueError as e:
                logger.warning("Skipping invalid host entry %r: %s", raw, e)
        return entries

    def activate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        entries = self._entries(service_data)
        if not entries:
            return
        if not password:
            raise NeedsAdminError()
        self.hosts.add_hosts(entries, password)
        logger.info("Added %d host entries", len(entries))

    def deactivate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        entries = self._entries(service_data)
        if not entries:
            return
        if not password:
            raise NeedsAdminError()
        self.hosts.remove_hosts(entries, password)
        logger.info("Removed %d host entries", len(entries))


# ── Custom ──────────────────────────────────────────────────────


class CustomLifecycle(_ShellLifecycle):
    def activate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        meta = CustomMetadata.model_validate(service_data.metadata or {})
        with self.shell.transaction():
            for key, value in meta.env_vars.items():
                self.shell.add_export(key, _as_text(value))
            for path in meta.paths:
                if isinstance(path, str) and path.strip():
                    self.shell.add_path(path.strip())
            for key, value in meta.aliases.items():
                self.shell.add_alias(key, _as_text(value))

    def deactivate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        meta = CustomMetadata.model_validate(service_data.metadata or {})
        with self.shell.transaction():
            for key in meta.env_vars:
                self.shell.delete_export(key)
            for path in meta.paths:
                if isinstance(path, str) and path.strip():
                    self.shell.delete_path(path.strip())
            for key in meta.aliases:
                self.shell.delete_alias(key)


# ── Node.js ─────────────────────────────────────────────────────


class NodejsLifecycle(_ShellLifecycle):
    _EXPORTS = ("NPM_CONFIG_PREFIX", "NPM_CONFIG_REGISTRY")

    def _prefix_bin(self, prefix: str) -> Path:
        # npm puts global binaries in {prefix}/bin, except on Windows
        return Path(prefix) if self.os == "windows" else Path(prefix) / "bin"

    def activate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        install = self.require_install(service_data)
        meta = NodejsMetadata.model_validate(service_data.metadata or {})
        values = meta.to_metadata()
        with self.shell.transaction():
            for path in env_tables.path_entries(install, ServiceType.NODEJS, self.os):
                self.shell.add_path(path)
            if meta.npm_config_prefix:
                prefix_bin = self._prefix_bin(meta.npm_config_prefix)
                if prefix_bin.is_dir():
                    self.shell.add_path(prefix_bin)
            for key in self._EXPORTS:
                value = _as_text(values.get(key, ""))
                if value:
                    self.shell.add_export(key, value)

    def deactivate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        install = self.install_dir(service_data)
        meta = NodejsMetadata.model_validate(service_data.metadata or {})
        with self.shell.transaction():
            for path in env_tables.path_entries(install, ServiceType.NODEJS, self.os):
                self.shell.delete_path(path)
            if meta.npm_config_prefix:
                self.shell.delete_path(self._prefix_bin(meta.npm_config_prefix))
            for key in self._EXPORTS:
                self.shell.delete_export(key)


# ── Standard ────────────────────────────────────────────────────


class StandardLifecycle(_ShellLifecycle):
    """Table-driven: ``sub_dirs`` onto PATH, ``env_vars`` exported."""

    def _exports(self, service_data: ServiceData, install: Path) -> dict[str, str]:
        exports = {}
        for name, default in env_tables.env_var_defaults(service_data.service_type, install).items():
            value = service_data.meta(name)
            value = default if value is None else _as_text(value)
            if value:
                exports[name] = value
        return exports

    def _home_bins(self, service_data: ServiceData) -> list[Path]:
        homes = env_tables.HOME_BIN_VARS.get(service_data.service_type, ())
        return [Path(home) / "bin" for home in (service_data.meta_str(name) for name in homes) if home]

    def activate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        service_type = service_data.service_type
        paths = env_tables.path_entries(self.install_dir(service_data), service_type, self.os)
        install = self.require_install(service_data) if paths else self.install_dir(service_data)

        with self.shell.transaction():
            for name, value in self._exports(service_data, install).items():
                self.shell.add_export(name, value)
                logger.debug("export %s=%s", name, value)
            for path in [*paths, *self._home_bins(service_data)]:
                if path.is_dir():
                    self.shell.add_path(path)
                else:
                    logger.debug("Skipping missing PATH entry %s", path)

    def deactivate(self, env_id: str, service_data: ServiceData, password: str | None = None) -> None:
        service_type = service_data.service_type
        install = self.install_dir(service_data)
        with self.shell.transaction():
            for name in env_tables.env_var_names(service_type):
                self.shell.delete_export(name)
            for path in env_tables.path_entries(install, service_type, self.os):
                self.shell.delete_path(path)
            for path in self._home_bins(service_data):
                self.shell.delete_path(path)


# ── Dispatch ────────────────────────────────────────────────────


class LifecycleDispatcher:
    """Picks the strategy for a service type."""

    def __init__(
        self,
        shell: ShellBlockWriter,
        config: AppConfigStore,
        hosts: HostsManager,
        os: str,
    ) -> None:
        self.shell = shell
        self.host = HostLifecycle(hosts)
        self.custom = CustomLifecycle(shell, config, os)
        self.nodejs = NodejsLifecycle(shell, config, os)
        self.standard = StandardLifecycle(shell, config, os)

    def for_type(self, service_type: ServiceType) -> ServiceLifecycle:
        if service_type == ServiceType.HOST:
            return self.host
        if service_type == ServiceType.CUSTOM:
            return self.custom
        if service_type == ServiceType.NODEJS:
            return self.nodejs
        return self.standard
