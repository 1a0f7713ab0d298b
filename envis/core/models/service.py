"""
ServiceData and the closed set of service types.

A ServiceData is the per-environment configured instance of a service at
one version.  It references (but does not own) the shared installation at
``{root}/services/{type}/{version}``.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from pydantic import Field

from envis.core.models.base import CamelModel, _now_iso


class ServiceType(str, Enum):
    MONGODB = "mongodb"
    MARIADB = "mariadb"
    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    NGINX = "nginx"
    NODEJS = "nodejs"
    PYTHON = "python"
    JAVA = "java"
    CUSTOM = "custom"
    HOST = "host"
    SSL = "ssl"
    DNSMASQ = "dnsmasq"

    @property
    def dir_name(self) -> str:
        return self.value

    @property
    def default_name(self) -> str:
        return _DEFAULT_NAMES[self]

    @classmethod
    def parse(cls, value: str) -> ServiceType:
        """Case-insensitive lookup; raises ValueError for unknown tags."""
        return cls(value.strip().lower())


_DEFAULT_NAMES: dict[ServiceType, str] = {
    ServiceType.MONGODB: "MongoDB",
    ServiceType.MARIADB: "MariaDB",
    ServiceType.MYSQL: "MySQL",
    ServiceType.POSTGRESQL: "PostgreSQL",
    ServiceType.NGINX: "Nginx",
    ServiceType.NODEJS: "Node.js",
    ServiceType.PYTHON: "Python",
    ServiceType.JAVA: "Java",
    ServiceType.CUSTOM: "Custom",
    ServiceType.HOST: "Host",
    ServiceType.SSL: "SSL",
    ServiceType.DNSMASQ: "Dnsmasq",
}


class ServiceDataStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class ServiceStatus(str, Enum):
    """Process state of a daemon-type service."""

    UNKNOWN = "unknown"
    RUNNING = "running"
    STOPPED = "stopped"


class ServiceData(CamelModel):
    """One configured service instance inside an environment.

    Persisted at ``{root}/envs/{env_id}/{type}/{version}/service.json``.
    ``service_type`` and ``version`` are fixed once created.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = ""
    service_type: ServiceType = Field(alias="type")
    version: str
    status: ServiceDataStatus = ServiceDataStatus.INACTIVE
    sort: int | None = None
    metadata: dict[str, Any] | None = None
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    @property
    def is_active(self) -> bool:
        return self.status == ServiceDataStatus.ACTIVE

    def meta(self, key: str, default: Any = None) -> Any:
        """Read one metadata value, tolerating a missing bag."""
        if not self.metadata:
            return default
        return self.metadata.get(key, default)

    def meta_str(self, key: str) -> str:
        """Metadata value as a stripped string ("" when absent or not a string)."""
        value = self.meta(key)
        return value.strip() if isinstance(value, str) else ""

    def touch(self) -> None:
        self.updated_at = _now_iso()
