"""
Node.js: prebuilt archives from the Node release mirrors.

Unix archives carry ``bin/node``; the Windows zip puts ``node.exe`` at the
install root, which is why the PATH entry differs per OS.
"""

from __future__ import annotations

import logging

from envis.core.models.service import ServiceType
from envis.core.services.installers.base import ServiceInstaller

logger = logging.getLogger(__name__)

# No arm64 macOS builds exist for these majors; they run under Rosetta.
_ROSETTA_MAJORS = {"14"}


class NodejsInstaller(ServiceInstaller):
    service_type = ServiceType.NODEJS

    @property
    def marker(self) -> str:
        return "node.exe" if self.os == "windows" else "bin/node"

    def download_info(self, version: str) -> tuple[list[str], str]:
        entry = self.catalog.entry(self.key)
        arch = self.arch
        major = version.lstrip("v").split(".", 1)[0]
        if self.os == "macos" and arch == "aarch64" and major in _ROSETTA_MAJORS:
            logger.info("Node.js %s has no arm64 macOS build, using x64", version)
            arch = "x86_64"
        filename = entry.render_filename(version, self.os, arch)
        return entry.render_urls(version, self.os, arch, filename), filename
