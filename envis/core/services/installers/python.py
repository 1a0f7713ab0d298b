"""
Python: standalone prebuilt interpreters, or a source build.

Three install modes:

    prebuilt      python-build-standalone archive, extracted in place
    python_build  pyenv's ``python-build`` compiles into the install dir
    local_build   CPython source tarball, ``configure`` / ``make`` / ``make install``

Virtual environments belong to a service-data, not to the shared
installation: they live in ``{service_data_folder}/venvs/{name}``.
"""

from __future__ import annotations

import logging
import re
import shutil
from enum import Enum
from pathlib import Path

from envis.core.errors import AlreadyExistsError, EnvisError, InstallFailureError, NotFoundError
from envis.core.models.download import DownloadTask
from envis.core.models.service import ServiceType
from envis.core.services.installers import archive, build
from envis.core.services.installers.base import ServiceInstaller
from envis.core.shell.writer import ShellBlockWriter

logger = logging.getLogger(__name__)

VENV_TIMEOUT = 300
PYTHON_BUILD_TIMEOUT = 3600
SOURCE_CATALOG_KEY = "python-source"

_VENV_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class PythonInstallMode(str, Enum):
    PREBUILT = "prebuilt"
    PYTHON_BUILD = "python_build"
    LOCAL_BUILD = "local_build"


class PythonInstaller(ServiceInstaller):
    service_type = ServiceType.PYTHON

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._modes: dict[str, PythonInstallMode] = {}

    # ── Layout ──────────────────────────────────────────────────

    def executable(self, version: str) -> Path:
        install = self.install_path(version)
        if self.os == "windows":
            return install / "python.exe"
        python3 = install / "bin" / "python3"
        return python3 if python3.exists() else install / "bin" / "python"

    def is_installed(self, version: str) -> bool:
        return self.executable(version).exists()

    # ── Install ─────────────────────────────────────────────────

    def download_info(self, version: str) -> tuple[list[str], str]:
        mode = self._modes.get(version, PythonInstallMode.PREBUILT)
        if mode == PythonInstallMode.PREBUILT:
            return super().download_info(version)
        entry = self.catalog.entry(SOURCE_CATALOG_KEY)
        filename = entry.render_filename(version, self.os, self.arch)
        return entry.render_urls(version, self.os, self.arch, filename), filename

    def download_and_install(
        self,
        version: str,
        mode: PythonInstallMode = PythonInstallMode.PREBUILT,
    ) -> DownloadTask | None:
        mode = PythonInstallMode(mode)
        if mode != PythonInstallMode.PREBUILT and self.os == "windows":
            raise EnvisError("Building Python from source is not supported on Windows")
        self._modes[version] = mode
        try:
            return super().download_and_install(version)
        finally:
            self._modes.pop(version, None)

    def download_dir(self, version: str) -> Path:
        if self._modes.get(version, PythonInstallMode.PREBUILT) == PythonInstallMode.PREBUILT:
            return self.install_path(version)
        return self._build_root(version)

    def _build_root(self, version: str) -> Path:
        return self.config.services_folder / self.service_type.dir_name / f"build-{version}"

    def install_archive(self, version: str, archive_path: Path, dest: Path) -> None:
        mode = self._modes.get(version, PythonInstallMode.PREBUILT)
        if mode == PythonInstallMode.PREBUILT:
            archive.extract_archive(archive_path, dest, runner=self.runner)
            return

        build_root = self._build_root(version)
        try:
            if mode == PythonInstallMode.PYTHON_BUILD:
                self._python_build(version, archive_path, dest)
            else:
                self._local_build(archive_path, build_root, dest)
        finally:
            shutil.rmtree(build_root, ignore_errors=True)

    def _python_build(self, version: str, archive_path: Path, dest: Path) -> None:
        probe = self.runner(["python-build", "--version"], timeout=30)
        if not probe.get("ok"):
            raise InstallFailureError(
                "python-build is not installed (install pyenv, e.g. `brew install pyenv`)"
            )
        dest.mkdir(parents=True, exist_ok=True)
        logger.info("Compiling Python %s with python-build, this takes a while", version)
        result = self.runner(
            ["python-build", version, str(dest)],
            timeout=PYTHON_BUILD_TIMEOUT,
            env_overrides={"PYTHON_BUILD_CACHE_PATH": str(archive_path.parent)},
        )
        if not result.get("ok"):
            raise InstallFailureError("python-build failed", result.get("stderr", ""))

    def _local_build(self, archive_path: Path, build_root: Path, dest: Path) -> None:
        src_dir = build_root / "src"
        archive.extract_archive(archive_path, src_dir, runner=self.runner)
        if not (src_dir / "configure").exists():
            raise InstallFailureError(f"No configure script in {archive_path.name}")
        dest.mkdir(parents=True, exist_ok=True)
        build.execute_plan(
            build.autotools_plan(src_dir, dest, ["--enable-optimizations"]),
            runner=self.runner,
        )

    # ── Virtual environments ────────────────────────────────────

    @staticmethod
    def venvs_dir(data_dir: Path) -> Path:
        return data_dir / "venvs"

    def list_venvs(self, data_dir: Path) -> list[str]:
        folder = self.venvs_dir(data_dir)
        if not folder.is_dir():
            return []
        return sorted(p.name for p in folder.iterdir() if p.is_dir())

    def create_venv(self, version: str, data_dir: Path, name: str) -> Path:
        """``python -m venv`` into the service-data's venvs folder.

        Raises:
            NotFoundError: The interpreter is not installed.
            AlreadyExistsError: A venv with this name exists.
            InstallFailureError: venv creation failed.
        """
        if not _VENV_NAME.match(name):
            raise EnvisError(f"Invalid venv name '{name}'")
        python = self.executable(version)
        if not python.exists():
            raise NotFoundError(f"Python {version} is not installed")
        target = self.venvs_dir(data_dir) / name
        if target.exists():
            raise AlreadyExistsError(f"venv '{name}' already exists")
        target.parent.mkdir(parents=True, exist_ok=True)

        result = self.runner([str(python), "-m", "venv", str(target)], timeout=VENV_TIMEOUT)
        if not result.get("ok"):
            shutil.rmtree(target, ignore_errors=True)
            raise InstallFailureError(f"Creating venv '{name}' failed", result.get("stderr", ""))
        logger.info("Created venv %s", target)
        return target

    def remove_venv(self, data_dir: Path, name: str) -> bool:
        target = self.venvs_dir(data_dir) / name
        if not target.is_dir():
            return False
        shutil.rmtree(target)
        logger.info("Removed venv %s", target)
        return True

    # ── Shell helpers ───────────────────────────────────────────

    @staticmethod
    def set_python3_as_python(shell: ShellBlockWriter, enable: bool) -> None:
        """Alias ``python``/``pip`` to ``python3``/``pip3`` in the managed block."""
        with shell.transaction():
            if enable:
                shell.add_alias("python", "python3")
                shell.add_alias("pip", "pip3")
            else:
                shell.delete_alias("python")
                shell.delete_alias("pip")
