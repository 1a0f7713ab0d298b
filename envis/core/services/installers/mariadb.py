"""
MariaDB and MySQL: prebuilt server archives and a per-environment data dir.

``initialize`` writes ``my.cnf`` into the service-data folder, creates
the system tables (``mysql_install_db`` when the distribution ships it,
``mysqld --initialize-insecure`` otherwise) and, when a root password is
given, leaves an init-file that sets it on the next server start.
"""

from __future__ import annotations

import configparser
import io
import logging
import shutil
from pathlib import Path
from typing import Any

from envis.core.errors import AlreadyExistsError, InstallFailureError
from envis.core.models.service import ServiceData, ServiceType
from envis.core.services.installers import archive
from envis.core.services.installers.base import DaemonInstaller

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3306
DEFAULT_BIND_ADDRESS = "127.0.0.1"
INIT_TIMEOUT = 600

# files kept when a data directory is reset
_KEEP_ON_RESET = {"service.json"}


def render_my_cnf(
    data_dir: Path,
    log_dir: Path,
    tmp_dir: Path,
    port: int,
    bind_address: str,
) -> str:
    socket_file = tmp_dir / "mysql.sock"
    parser = configparser.ConfigParser(interpolation=None)
    parser["client"] = {
        "port": str(port),
        "socket": str(socket_file),
    }
    parser["mysqld"] = {
        "port": str(port),
        "bind-address": bind_address,
        "datadir": str(data_dir),
        "socket": str(socket_file),
        "pid-file": str(tmp_dir / "mysql.pid"),
        "log-error": str(log_dir / "error.log"),
        "general_log_file": str(log_dir / "general.log"),
        "slow_query_log_file": str(log_dir / "slow-query.log"),
        "character-set-server": "utf8mb4",
        "collation-server": "utf8mb4_unicode_ci",
        "default-storage-engine": "InnoDB",
        "innodb_buffer_pool_size": "256M",
        "innodb_log_file_size": "64M",
        "innodb_flush_log_at_trx_commit": "1",
        "innodb_file_per_table": "1",
        "max_connections": "200",
        "max_connect_errors": "100",
        "general_log": "0",
        "slow_query_log": "0",
        "long_query_time": "2",
    }
    parser["mysql"] = {"default-character-set": "utf8mb4"}

    buf = io.StringIO()
    buf.write("# Generated by envis\n")
    parser.write(buf)
    return buf.getvalue()


def _sql_string(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"


class MariadbInstaller(DaemonInstaller):
    service_type = ServiceType.MARIADB
    meta_prefix = "MARIADB"

    @property
    def marker(self) -> str:
        return f"bin/{self._exe('mysqld')}"

    def _exe(self, name: str) -> str:
        return f"{name}.exe" if self.os == "windows" else name

    def meta_key(self, name: str) -> str:
        return f"{self.meta_prefix}_{name}"

    # ── Install ─────────────────────────────────────────────────

    def install_archive(self, version: str, archive_path: Path, dest: Path) -> None:
        archive.extract_archive(archive_path, dest, runner=self.runner)
        mysqld = dest / self.marker
        if mysqld.exists():
            return
        found = archive.find_file(dest, self._exe("mysqld"), max_depth=4)
        if found is None:
            raise InstallFailureError(f"mysqld not found in {archive_path.name}")
        mysqld.parent.mkdir(parents=True, exist_ok=True)
        found.rename(mysqld)

    # ── Data directory ──────────────────────────────────────────

    def config_file(self, data_dir: Path) -> Path:
        return data_dir / "my.cnf"

    def init_file(self, data_dir: Path) -> Path:
        return data_dir / "init-root.sql"

    def is_initialized(self, data_dir: Path) -> bool:
        return self.config_file(data_dir).exists() and (data_dir / "data").is_dir()

    def _install_db_command(self, install: Path, data_path: Path) -> list[str]:
        if self.os == "windows":
            script = install / "bin" / "mysql_install_db.exe"
        else:
            script = install / "scripts" / "mysql_install_db"
        if script.exists():
            return [str(script), f"--datadir={data_path}", f"--basedir={install}"]
        return [
            str(install / self.marker),
            "--initialize-insecure",
            f"--datadir={data_path}",
            f"--basedir={install}",
        ]

    def initialize(
        self,
        service_data: ServiceData,
        data_dir: Path,
        root_password: str = "",
        port: int = DEFAULT_PORT,
        bind_address: str = DEFAULT_BIND_ADDRESS,
        reset: bool = False,
        **options: Any,
    ) -> dict[str, Any]:
        """Create ``my.cnf`` and the system tables.

        Raises:
            AlreadyExistsError: Already initialised and ``reset`` is false.
            InstallFailureError: The bootstrap command failed.
        """
        install = self.require_installed(service_data.version)
        if reset and data_dir.exists():
            self._wipe(data_dir)
        elif self.is_initialized(data_dir):
            raise AlreadyExistsError(
                f"{self.service_type.default_name} is already initialised; use reset to start over"
            )

        data_path = data_dir / "data"
        log_dir = data_dir / "logs"
        tmp_dir = data_dir / "tmp"
        for folder in (data_path, log_dir, tmp_dir):
            folder.mkdir(parents=True, exist_ok=True)

        config = self.config_file(data_dir)
        config.write_text(
            render_my_cnf(data_path, log_dir, tmp_dir, port, bind_address),
            encoding="utf-8",
        )

        logger.info("Creating %s system tables in %s", self.service_type.default_name, data_path)
        result = self.runner(self._install_db_command(install, data_path), timeout=INIT_TIMEOUT, cwd=install)
        if not result.get("ok"):
            raise InstallFailureError(
                f"Initialising {self.service_type.default_name} failed",
                result.get("stderr") or result.get("error", ""),
            )

        metadata: dict[str, Any] = {
            self.meta_key("CONFIG"): str(config),
            self.meta_key("DATA"): str(data_path),
            self.meta_key("LOG"): str(log_dir),
            self.meta_key("PORT"): port,
        }
        if root_password:
            sql = (
                f"ALTER USER 'root'@'localhost' IDENTIFIED BY {_sql_string(root_password)};\n"
                "FLUSH PRIVILEGES;\n"
            )
            self.init_file(data_dir).write_text(sql, encoding="utf-8")
            metadata[self.meta_key("ROOT_PASSWORD")] = root_password
        return metadata

    def _wipe(self, data_dir: Path) -> None:
        logger.info("Resetting %s", data_dir)
        for entry in data_dir.iterdir():
            if entry.name in _KEEP_ON_RESET:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()

    # ── Process ─────────────────────────────────────────────────

    def prepare(self, service_data: ServiceData, data_dir: Path, install: Path) -> None:
        (data_dir / "data").mkdir(parents=True, exist_ok=True)

    def command(self, service_data: ServiceData, data_dir: Path, install: Path) -> list[str]:
        mysqld = str(install / self.marker)
        config = service_data.meta_str(self.meta_key("CONFIG")) or str(self.config_file(data_dir))
        if Path(config).exists():
            # --defaults-file must come first
            cmd = [mysqld, f"--defaults-file={config}", f"--basedir={install}"]
        else:
            data_path = service_data.meta_str(self.meta_key("DATA")) or str(data_dir / "data")
            cmd = [mysqld, f"--basedir={install}", f"--datadir={data_path}"]
        port = service_data.meta(self.meta_key("PORT"))
        if port:
            cmd.append(f"--port={port}")
        init_file = self.init_file(data_dir)
        if init_file.exists():
            cmd.append(f"--init-file={init_file}")
        return cmd


class MysqlInstaller(MariadbInstaller):
    """Oracle MySQL builds; same layout and bootstrap as MariaDB."""

    service_type = ServiceType.MYSQL
    meta_prefix = "MYSQL"
