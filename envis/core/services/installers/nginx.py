"""
Nginx: compiled from source on macOS/Linux, prebuilt zip on Windows.

The running master stays in the foreground (``daemon off``) so envis can
track it through its pid file; ``-s stop`` and ``-s reload`` are sent
through nginx itself with the same ``pid`` directive.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

from envis.core.errors import EnvisError, InstallFailureError
from envis.core.models.service import ServiceData, ServiceStatus, ServiceType
from envis.core.services.installers import archive, build, process
from envis.core.services.installers.base import DaemonInstaller

logger = logging.getLogger(__name__)

CONF_KEY = "NGINX_CONF"
SIGNAL_TIMEOUT = 30

CONFIGURE_MODULES = [
    "--with-http_ssl_module",
    "--with-http_v2_module",
    "--with-http_gzip_static_module",
    "--with-http_stub_status_module",
]

# pwritev is flagged as unavailable below macOS 11 by recent SDKs
MACOS_DEPLOYMENT_TARGET = "11.0"
MACOS_CC_OPT = (
    "-Wno-unguarded-availability-new "
    "-Wno-error=unguarded-availability-new "
    f"-mmacosx-version-min={MACOS_DEPLOYMENT_TARGET}"
)
MACOS_LD_OPT = f"-mmacosx-version-min={MACOS_DEPLOYMENT_TARGET}"

DEFAULT_CONF = """\
worker_processes  1;

events {
    worker_connections  1024;
}

http {
    include       mime.types;
    default_type  application/octet-stream;

    sendfile        on;
    keepalive_timeout  65;

    server {
        listen       80;
        server_name  localhost;

        location / {
            root   html;
            index  index.html index.htm;
        }

        error_page   500 502 503 504  /50x.html;
        location = /50x.html {
            root   html;
        }
    }
}
"""


def configure_args(os: str) -> tuple[list[str], dict[str, str]]:
    """Extra ``./configure`` arguments and build env for ``os``."""
    args = list(CONFIGURE_MODULES)
    env: dict[str, str] = {}
    if os == "macos":
        args += [f"--with-cc-opt={MACOS_CC_OPT}", f"--with-ld-opt={MACOS_LD_OPT}"]
        env["MACOSX_DEPLOYMENT_TARGET"] = MACOS_DEPLOYMENT_TARGET
    return args, env


class NginxInstaller(DaemonInstaller):
    service_type = ServiceType.NGINX

    @property
    def marker(self) -> str:
        return "nginx.exe" if self.os == "windows" else "sbin/nginx"

    # ── Install ─────────────────────────────────────────────────

    def install_archive(self, version: str, archive_path: Path, dest: Path) -> None:
        if self.os == "windows":
            archive.extract_archive(archive_path, dest, runner=self.runner)
            return

        src_dir = dest / "src"
        archive.extract_archive(archive_path, src_dir, runner=self.runner)
        if not (src_dir / "configure").exists():
            raise InstallFailureError(f"No configure script in {archive_path.name}")
        args, env = configure_args(self.os)
        logger.info("Building nginx %s from source", version)
        try:
            build.execute_plan(build.autotools_plan(src_dir, dest, args, env), runner=self.runner)
        finally:
            shutil.rmtree(src_dir, ignore_errors=True)

    # ── Configuration ───────────────────────────────────────────

    def conf_path(self, service_data: ServiceData, install: Path) -> Path:
        configured = service_data.meta_str(CONF_KEY)
        return Path(configured) if configured else install / "conf" / "nginx.conf"

    def master_pid_file(self, data_dir: Path) -> Path:
        return data_dir / "nginx.master.pid"

    def _base_command(self, service_data: ServiceData, data_dir: Path, install: Path) -> list[str]:
        return [
            str(install / self.marker),
            "-p", f"{install}/",
            "-c", str(self.conf_path(service_data, install)),
        ]

    def prepare(self, service_data: ServiceData, data_dir: Path, install: Path) -> None:
        (install / "logs").mkdir(parents=True, exist_ok=True)
        conf = self.conf_path(service_data, install)
        mime = install / "conf" / "mime.types"
        target = conf.parent / "mime.types"
        # conf files outside the install dir still include mime.types relatively
        if mime.exists() and not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(mime, target)

    def command(self, service_data: ServiceData, data_dir: Path, install: Path) -> list[str]:
        pid = self.master_pid_file(data_dir)
        return self._base_command(service_data, data_dir, install) + [
            "-g", f"daemon off; pid {pid};",
        ]

    def _send(self, service_data: ServiceData, data_dir: Path, signal_name: str) -> dict[str, Any]:
        install = self.require_installed(service_data.version)
        cmd = self._base_command(service_data, data_dir, install) + [
            "-g", f"pid {self.master_pid_file(data_dir)};",
            "-s", signal_name,
        ]
        return self.runner(cmd, timeout=SIGNAL_TIMEOUT, cwd=install)

    # ── Process ─────────────────────────────────────────────────

    def stop(self, service_data: ServiceData, data_dir: Path) -> bool:
        pid_file = self.pid_file(data_dir)
        pid = process.read_pid(pid_file)
        if pid is None or not process.pid_alive(pid):
            pid_file.unlink(missing_ok=True)
            return False
        result = self._send(service_data, data_dir, "stop")
        if result.get("ok") and process.wait_for_exit(pid, process.STOP_TIMEOUT):
            pid_file.unlink(missing_ok=True)
            logger.info("nginx stopped (pid %d)", pid)
            return True
        logger.warning("nginx -s stop did not finish, signalling pid %d", pid)
        return process.stop_process(pid_file, sig=self.stop_signal, runner=self.runner)

    def restart(self, service_data: ServiceData, data_dir: Path) -> dict[str, Any]:
        """Reload the configuration of a running nginx, or start it."""
        if self.status(service_data, data_dir) != ServiceStatus.RUNNING:
            return self.start(service_data, data_dir)
        result = self._send(service_data, data_dir, "reload")
        if not result.get("ok"):
            raise EnvisError(f"nginx -s reload failed: {result.get('stderr') or result.get('error')}")
        return {"pid": process.read_pid(self.pid_file(data_dir)), "reloaded": True}
