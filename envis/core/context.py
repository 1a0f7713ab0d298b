"""
Process context: the manager graph every entry point works against.

Managers are built once, in dependency order::

    AppConfigStore -> ShellBlockWriter -> HostsManager -> InstallerRegistry
        -> ServiceDataManager -> EnvironmentManager

and each one holds references to its collaborators.  The CLI builds the
graph lazily through ``get_context()``; tests call ``build_context`` with
their own paths and runner and register it with ``set_context``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from envis.core.config.app_config import AppConfigStore
from envis.core.config.catalog import ServiceCatalog, default_catalog
from envis.core.config.paths import CONFIG_FILE_NAME, arch_name, documents_dir, executable_dir, home_dir, os_name
from envis.core.services.download_manager import DownloadManager
from envis.core.services.environment_manager import EnvironmentManager
from envis.core.services.hosts_manager import HostsManager
from envis.core.services.installed import InstalledServices
from envis.core.services.installers.base import Runner
from envis.core.services.installers.registry import InstallerRegistry
from envis.core.services.lifecycle import LifecycleDispatcher
from envis.core.services.service_data_manager import ServiceDataManager
from envis.core.services.ssl_ca import SslManager
from envis.core.services.subprocess_runner import run_command
from envis.core.shell.writer import ShellBlockWriter, default_shell_targets

logger = logging.getLogger(__name__)


@dataclass
class EnvisContext:
    config: AppConfigStore
    shell: ShellBlockWriter
    hosts: HostsManager
    downloads: DownloadManager
    installers: InstallerRegistry
    installed: InstalledServices
    service_datas: ServiceDataManager
    environments: EnvironmentManager
    ssl: SslManager
    os: str


def build_context(
    home: Path | None = None,
    *,
    config_path: Path | None = None,
    shell_targets: list[Path] | None = None,
    tool_dir: Path | None = None,
    hosts_path: Path | None = None,
    catalog: ServiceCatalog | None = None,
    runner: Runner = run_command,
    os: str | None = None,
    arch: str | None = None,
    include_powershell: bool = True,
) -> EnvisContext:
    """Construct (and load) a fresh manager graph.

    Every argument defaults to the real host; tests override the paths so
    nothing outside their temporary directory is touched.
    """
    os = os or os_name()
    home = home or home_dir()

    config = AppConfigStore(config_path or (home / CONFIG_FILE_NAME))
    config.load_or_init()

    targets = shell_targets
    if targets is None:
        docs = documents_dir() if home == home_dir() else home / "Documents"
        targets = default_shell_targets(home, os, include_powershell, docs)
    shell = ShellBlockWriter(targets, tool_dir=tool_dir)
    shell.initialize()
    if os == "windows":
        shell.register_cmd_autorun(runner)

    hosts = HostsManager(hosts_path, runner=runner, os=os)
    downloads = DownloadManager()
    installers = InstallerRegistry(
        config, downloads, catalog=catalog or default_catalog(), runner=runner, os=os, arch=arch or arch_name(),
    )
    lifecycles = LifecycleDispatcher(shell, config, hosts, os)
    service_datas = ServiceDataManager(config, lifecycles, installers)
    environments = EnvironmentManager(config, shell, service_datas)

    logger.debug("Context built: root=%s os=%s targets=%s", config.root, os, targets)
    return EnvisContext(
        config=config,
        shell=shell,
        hosts=hosts,
        downloads=downloads,
        installers=installers,
        installed=InstalledServices(config),
        service_datas=service_datas,
        environments=environments,
        ssl=SslManager(config, runner=runner, os=os),
        os=os,
    )


_context: Optional[EnvisContext] = None


def set_context(context: Optional[EnvisContext]) -> None:
    """Register ``context`` for the current process (None resets it)."""
    global _context
    _context = context


def get_context() -> EnvisContext:
    """The registered context, built from the real host on first use."""
    global _context
    if _context is None:
        _context = build_context(tool_dir=executable_dir())
    return _context
