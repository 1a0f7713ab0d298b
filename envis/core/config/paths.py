"""
Host paths and platform probes shared by every manager.

``ENVIS_HOME`` relocates the user's home directory (portable installs, tests).
"""

from __future__ import annotations

import os
import platform
import shutil
import sys
from pathlib import Path

CONFIG_FILE_NAME = ".envis.json"


def home_dir() -> Path:
    """The user's home directory, honouring ``ENVIS_HOME``."""
    override = os.environ.get("ENVIS_HOME")
    return Path(override).expanduser() if override else Path.home()


def documents_dir() -> Path:
    return home_dir() / "Documents"


def config_file_path() -> Path:
    return home_dir() / CONFIG_FILE_NAME


def os_name() -> str:
    """``macos`` | ``linux`` | ``windows``."""
    system = platform.system().lower()
    if system == "darwin":
        return "macos"
    if system == "windows":
        return "windows"
    return "linux"


def arch_name() -> str:
    """``x86_64`` | ``aarch64`` (other machines pass through lower-cased)."""
    machine = platform.machine().lower()
    return {
        "amd64": "x86_64",
        "x64": "x86_64",
        "arm64": "aarch64",
    }.get(machine, machine)


def executable_dir() -> Path | None:
    """Directory holding the ``envis`` launcher, when it can be located."""
    if sys.argv and Path(sys.argv[0]).stem == "envis":
        return Path(sys.argv[0]).resolve().parent
    found = shutil.which("envis")
    return Path(found).resolve().parent if found else None
