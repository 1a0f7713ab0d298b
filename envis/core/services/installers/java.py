"""
Java: prebuilt JDK archives plus a companion Maven per JDK.

Maven is a separate download task ``java-{version}-maven`` installed at
``{root}/services/java/{version}/maven/{maven_version}``.  The Maven
version follows the JDK major:

    JDK <= 8   -> 3.8.8
    JDK <= 11  -> 3.9.6
    otherwise  -> 3.9.9

After Maven is unpacked its ``conf/settings.xml`` gets an ``envis-mirror``
entry whose URL is ``${env.MAVEN_REPO_URL}``, so the repository follows
whatever ``MAVEN_REPO_URL`` the active environment exports.
"""

from __future__ import annotations

import logging
import shutil
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any

from envis.core.errors import EnvisError, InstallFailureError, NotFoundError
from envis.core.models.download import DownloadStatus, DownloadTask
from envis.core.models.service import ServiceData, ServiceType
from envis.core.persistence.atomic import atomic_write_text
from envis.core.services.installers import archive
from envis.core.services.installers.base import ServiceInstaller

logger = logging.getLogger(__name__)

MAVEN_FOR_JAVA_8 = "3.8.8"
MAVEN_FOR_JAVA_11 = "3.9.6"
MAVEN_FOR_JAVA_MODERN = "3.9.9"

MAVEN_MIRROR_ID = "envis-mirror"
MAVEN_MIRROR_URL = "${env.MAVEN_REPO_URL}"
SETTINGS_NS = "http://maven.apache.org/SETTINGS/1.2.0"

_DEFAULT_SETTINGS = f"""<?xml version="1.0" encoding="UTF-8"?>
<settings xmlns="{SETTINGS_NS}"
          xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance"
          xsi:schemaLocation="{SETTINGS_NS} https://maven.apache.org/xsd/settings-1.2.0.xsd">
  <mirrors>
  </mirrors>
</settings>
"""


def java_major(version: str) -> int:
    head = version.lstrip("v").split(".", 1)[0]
    return int(head) if head.isdigit() else 17


def maven_version_for(java_version: str) -> str:
    major = java_major(java_version)
    if major <= 8:
        return MAVEN_FOR_JAVA_8
    if major <= 11:
        return MAVEN_FOR_JAVA_11
    return MAVEN_FOR_JAVA_MODERN


def ensure_settings_mirror(settings_file: Path, url: str = MAVEN_MIRROR_URL) -> None:
    """Point ``settings.xml`` at ``url`` through the ``envis-mirror`` entry.

    An existing ``envis-mirror`` is replaced; other mirrors are kept and
    come after ours.  A missing or unparsable file is replaced by a
    minimal settings document.
    """
    text = settings_file.read_text(encoding="utf-8") if settings_file.exists() else ""
    try:
        root = ET.fromstring(text) if text.strip() else ET.fromstring(_DEFAULT_SETTINGS)
    except ET.ParseError as e:
        logger.warning("Unparsable %s (%s), writing a fresh one", settings_file, e)
        root = ET.fromstring(_DEFAULT_SETTINGS)

    ns = root.tag[1:].split("}", 1)[0] if root.tag.startswith("{") else ""
    q = (lambda tag: f"{{{ns}}}{tag}") if ns else (lambda tag: tag)
    if ns:
        ET.register_namespace("", ns)

    mirrors = root.find(q("mirrors"))
    if mirrors is None:
        mirrors = ET.SubElement(root, q("mirrors"))
    for mirror in list(mirrors.findall(q("mirror"))):
        if (mirror.findtext(q("id")) or "").strip() == MAVEN_MIRROR_ID:
            mirrors.remove(mirror)

    ours = ET.Element(q("mirror"))
    for tag, value in (
        ("id", MAVEN_MIRROR_ID),
        ("name", "Envis managed repository"),
        ("url", url),
        ("mirrorOf", "*"),
    ):
        ET.SubElement(ours, q(tag)).text = value
    mirrors.insert(0, ours)

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    atomic_write_text(settings_file, '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n")
    logger.info("Maven mirror %s -> %s in %s", MAVEN_MIRROR_ID, url, settings_file)


class JavaInstaller(ServiceInstaller):
    service_type = ServiceType.JAVA

    @property
    def marker(self) -> str:
        return f"bin/{self._exe('java')}"

    def _exe(self, name: str) -> str:
        return f"{name}.exe" if self.os == "windows" else name

    def install_archive(self, version: str, archive_path: Path, dest: Path) -> None:
        archive.extract_archive(archive_path, dest, runner=self.runner)
        if (dest / self.marker).exists():
            return
        # macOS JDKs keep the real home under Contents/Home
        home = dest / "Contents" / "Home"
        if (home / self.marker).exists():
            archive.move_contents(home, dest)
            shutil.rmtree(dest / "Contents", ignore_errors=True)
            return
        raise InstallFailureError(f"java not found in {archive_path.name}")

    # ── Maven companion ─────────────────────────────────────────

    def maven_task_id(self, java_version: str) -> str:
        return f"java-{java_version}-maven"

    def maven_install_path(self, java_version: str) -> Path:
        return self.install_path(java_version) / "maven" / maven_version_for(java_version)

    def maven_binary(self, java_version: str) -> Path:
        name = "mvn.cmd" if self.os == "windows" else "mvn"
        return self.maven_install_path(java_version) / "bin" / name

    def is_maven_installed(self, java_version: str) -> bool:
        return self.maven_binary(java_version).exists()

    def maven_home(self, java_version: str) -> str | None:
        if self.is_maven_installed(java_version):
            return str(self.maven_install_path(java_version))
        return None

    def download_and_install_maven(self, java_version: str) -> DownloadTask | None:
        """Install the Maven matching ``java_version``; blocks until done.

        Returns:
            Final task snapshot, or None when Maven is already there.
        """
        if not self.is_installed(java_version):
            raise NotFoundError(f"Java {java_version} is not installed")
        if self.is_maven_installed(java_version):
            ensure_settings_mirror(self.maven_install_path(java_version) / "conf" / "settings.xml")
            return None

        maven_version = maven_version_for(java_version)
        entry = self.catalog.entry("maven")
        filename = entry.render_filename(maven_version, self.os, self.arch)
        urls = entry.render_urls(maven_version, self.os, self.arch, filename)
        task_id = self.maven_task_id(java_version)
        dest = self.maven_install_path(java_version)
        logger.info("Installing Maven %s for Java %s", maven_version, java_version)
        self.downloads.start_download(
            task_id,
            urls,
            dest,
            filename,
            overwrite=True,
            on_success=lambda task: self._on_maven_downloaded(java_version, task),
        )
        return self.downloads.get_task(task_id)

    def _on_maven_downloaded(self, java_version: str, task: DownloadTask) -> None:
        self.downloads.update_task_status(task.id, DownloadStatus.INSTALLING)
        dest = self.maven_install_path(java_version)
        try:
            archive.extract_archive(task.target_path, dest, runner=self.runner)
            archive.make_executable(dest, ("bin",))
            archive.remove_archive(task.target_path)
            ensure_settings_mirror(dest / "conf" / "settings.xml")
        except Exception:
            shutil.rmtree(dest, ignore_errors=True)
            raise
        self._settle_installed(task.id, dest)

    def maven_download_progress(self, java_version: str) -> DownloadTask | None:
        return self.downloads.get_task(self.maven_task_id(java_version))

    def initialize(self, service_data: ServiceData, data_dir: Path, **options: Any) -> dict[str, Any]:
        """Install Maven and return the ``MAVEN_HOME`` metadata entry."""
        self.download_and_install_maven(service_data.version)
        home = self.maven_home(service_data.version)
        if home is None:
            raise EnvisError(f"Maven for Java {service_data.version} did not install")
        return {"MAVEN_HOME": home}

    # ── Info ────────────────────────────────────────────────────

    def java_info(self, version: str) -> dict[str, Any]:
        """Parse ``java -version``, which writes to stderr."""
        install = self.require_installed(version)
        result = self.runner([str(install / self.marker), "-version"], timeout=30)
        output = result.get("stderr") or result.get("stdout") or ""
        info: dict[str, Any] = {
            "version": version,
            "runtime": "",
            "vm": "",
            "home": str(install),
        }
        for line in output.splitlines():
            line = line.strip()
            if " version " in line and '"' in line:
                info["version"] = line.split('"')[1]
            elif "Runtime Environment" in line:
                info["runtime"] = line
            elif "VM" in line:
                info["vm"] = line
        return info
