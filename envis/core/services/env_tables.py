"""
Per-type activation tables: PATH sub-directories and exported variables.

``sub_dirs`` are relative to the shared installation
``{root}/services/{type}/{version}``; ``""`` means the installation root.
``env_vars`` maps each exported variable to its default, computed from
the installation directory; a ServiceData's metadata overrides a default
when it carries the same key.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from envis.core.models.service import ServiceType

_SUB_DIRS: dict[ServiceType, tuple[str, ...]] = {
    ServiceType.MONGODB: ("bin",),
    ServiceType.MARIADB: ("bin",),
    ServiceType.MYSQL: ("bin",),
    ServiceType.POSTGRESQL: ("bin",),
    ServiceType.PYTHON: ("bin",),
    ServiceType.JAVA: ("bin",),
    ServiceType.NGINX: ("sbin",),
    ServiceType.DNSMASQ: ("sbin",),
    ServiceType.NODEJS: ("bin",),
    ServiceType.CUSTOM: (),
    ServiceType.HOST: (),
    ServiceType.SSL: (),
}

EnvDefault = Callable[[Path], str]

_ENV_VARS: dict[ServiceType, dict[str, EnvDefault]] = {
    ServiceType.NODEJS: {
        "NODE_PATH": lambda install: str(install),
        "NPM_CONFIG_PREFIX": lambda install: str(install / "global"),
    },
    ServiceType.NGINX: {
        "NGINX_HOME": lambda install: str(install),
        "NGINX_CONF": lambda install: str(install / "conf" / "nginx.conf"),
    },
    ServiceType.PYTHON: {
        "PYTHONPATH": lambda install: "",
        "PIP_INDEX_URL": lambda install: "",
        "PIP_TRUSTED_HOST": lambda install: "",
    },
    ServiceType.JAVA: {
        "JAVA_HOME": lambda install: str(install),
        "JAVA_OPTS": lambda install: "",
        "MAVEN_HOME": lambda install: "",
        "MAVEN_REPO_URL": lambda install: "",
        "GRADLE_HOME": lambda install: "",
    },
}

# Variables naming a tool home whose bin/ also goes on PATH.
HOME_BIN_VARS: dict[ServiceType, tuple[str, ...]] = {
    ServiceType.JAVA: ("MAVEN_HOME", "GRADLE_HOME"),
}


def sub_dirs(service_type: ServiceType, os: str) -> tuple[str, ...]:
    if service_type == ServiceType.NODEJS and os == "windows":
        return ("",)
    return _SUB_DIRS.get(service_type, ())


def install_dir(services_folder: Path, service_type: ServiceType, version: str) -> Path:
    return services_folder / service_type.dir_name / version


def path_entries(install: Path, service_type: ServiceType, os: str) -> list[Path]:
    return [install / sub if sub else install for sub in sub_dirs(service_type, os)]


def env_var_names(service_type: ServiceType) -> list[str]:
    return list(_ENV_VARS.get(service_type, {}))


def env_var_defaults(service_type: ServiceType, install: Path) -> dict[str, str]:
    return {name: default(install) for name, default in _ENV_VARS.get(service_type, {}).items()}
