"""
Typed metadata variants, one per service type.

On disk a ServiceData's ``metadata`` is a flat string→JSON bag whose keys
are mostly environment-variable names (``NPM_CONFIG_PREFIX``,
``JAVA_OPTS``, ...).  These models give each type a structured view of
that bag and serialise back to exactly the same shape.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from envis.core.models.service import ServiceType


class _Metadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_metadata(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class NodejsMetadata(_Metadata):
    npm_config_prefix: str = Field(default="", alias="NPM_CONFIG_PREFIX")
    npm_config_registry: str = Field(default="", alias="NPM_CONFIG_REGISTRY")


class NginxMetadata(_Metadata):
    nginx_conf: str = Field(default="", alias="NGINX_CONF")


class PythonMetadata(_Metadata):
    pythonpath: str = Field(default="", alias="PYTHONPATH")
    pip_index_url: str = Field(default="", alias="PIP_INDEX_URL")
    pip_trusted_host: str = Field(default="", alias="PIP_TRUSTED_HOST")


class JavaMetadata(_Metadata):
    java_home: str = Field(default="", alias="JAVA_HOME")
    java_opts: str = Field(default="", alias="JAVA_OPTS")
    maven_home: str = Field(default="", alias="MAVEN_HOME")
    maven_repo_url: str = Field(default="", alias="MAVEN_REPO_URL")
    gradle_home: str = Field(default="", alias="GRADLE_HOME")


class CustomMetadata(_Metadata):
    paths: list[str] = Field(default_factory=list)
    env_vars: dict[str, Any] = Field(default_factory=dict, alias="envVars")
    aliases: dict[str, Any] = Field(default_factory=dict)


class HostMetadata(_Metadata):
    hosts: list[dict[str, Any]] = Field(default_factory=list)


class SslMetadata(_Metadata):
    ca_initialized: bool = Field(default=False, alias="SSL_CA_INITIALIZED")
    certificates: list[dict[str, Any]] = Field(default_factory=list, alias="SSL_CERTIFICATES")


class DnsmasqMetadata(_Metadata):
    dnsmasq_conf: str = Field(default="", alias="DNSMASQ_CONF")


class MongodbMetadata(_Metadata):
    pass


class MariadbMetadata(_Metadata):
    pass


class PostgresqlMetadata(_Metadata):
    pass


METADATA_MODELS: dict[ServiceType, type[_Metadata]] = {
    ServiceType.NODEJS: NodejsMetadata,
    ServiceType.NGINX: NginxMetadata,
    ServiceType.PYTHON: PythonMetadata,
    ServiceType.JAVA: JavaMetadata,
    ServiceType.CUSTOM: CustomMetadata,
    ServiceType.HOST: HostMetadata,
    ServiceType.SSL: SslMetadata,
    ServiceType.DNSMASQ: DnsmasqMetadata,
    ServiceType.MONGODB: MongodbMetadata,
    ServiceType.MARIADB: MariadbMetadata,
    ServiceType.MYSQL: MariadbMetadata,
    ServiceType.POSTGRESQL: PostgresqlMetadata,
}


def parse_metadata(service_type: ServiceType, raw: dict[str, Any] | None) -> _Metadata:
    """Structured view of a raw metadata bag.  Unknown keys are preserved."""
    return METADATA_MODELS[service_type].model_validate(raw or {})
