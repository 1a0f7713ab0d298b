"""
Default metadata for a freshly created ServiceData.

Each service type has a builder returning its typed metadata variant;
the result is serialised to the flat JSON bag stored in ``service.json``.
Nginx and Dnsmasq builders also drop a default configuration file into
the service-data folder (never overwriting an existing one).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from envis.core.models.metadata import (
    METADATA_MODELS,
    CustomMetadata,
    DnsmasqMetadata,
    HostMetadata,
    JavaMetadata,
    NginxMetadata,
    NodejsMetadata,
    PythonMetadata,
    SslMetadata,
    _Metadata,
)
from envis.core.models.service import ServiceData, ServiceType
from envis.core.services.installers import dnsmasq, nginx

logger = logging.getLogger(__name__)

NGINX_CONF_HEADER = "# Auto-generated default nginx.conf by envis\n"


class MetadataContext:
    """What the builders may look at: the two folders and the Maven lookup."""

    def __init__(
        self,
        service_data: ServiceData,
        data_dir: Path,
        install_dir: Path,
        maven_home: Callable[[str], str | None] | None = None,
    ) -> None:
        self.service_data = service_data
        self.data_dir = data_dir
        self.install_dir = install_dir
        self.maven_home = maven_home


def _write_default(path: Path, content: str) -> None:
    if path.exists():
        logger.debug("Keeping existing %s", path)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.debug("Wrote default %s", path)


def _nodejs(ctx: MetadataContext) -> _Metadata:
    ctx.data_dir.mkdir(parents=True, exist_ok=True)
    return NodejsMetadata(NPM_CONFIG_PREFIX=str(ctx.data_dir), NPM_CONFIG_REGISTRY="")


def _nginx(ctx: MetadataContext) -> _Metadata:
    conf = ctx.data_dir / "nginx.conf"
    _write_default(conf, NGINX_CONF_HEADER + nginx.DEFAULT_CONF)
    return NginxMetadata(NGINX_CONF=str(conf))


def _python(ctx: MetadataContext) -> _Metadata:
    return PythonMetadata()


def _java(ctx: MetadataContext) -> _Metadata:
    maven = ctx.maven_home(ctx.service_data.version) if ctx.maven_home else None
    return JavaMetadata(JAVA_HOME=str(ctx.install_dir), MAVEN_HOME=maven or "")


def _custom(ctx: MetadataContext) -> _Metadata:
    return CustomMetadata()


def _host(ctx: MetadataContext) -> _Metadata:
    return HostMetadata()


def _ssl(ctx: MetadataContext) -> _Metadata:
    return SslMetadata()


def _dnsmasq(ctx: MetadataContext) -> _Metadata:
    conf = ctx.data_dir / "dnsmasq.conf"
    _write_default(conf, dnsmasq.DEFAULT_CONF)
    return DnsmasqMetadata(DNSMASQ_CONF=str(conf))


_BUILDERS: dict[ServiceType, Callable[[MetadataContext], _Metadata]] = {
    ServiceType.NODEJS: _nodejs,
    ServiceType.NGINX: _nginx,
    ServiceType.PYTHON: _python,
    ServiceType.JAVA: _java,
    ServiceType.CUSTOM: _custom,
    ServiceType.HOST: _host,
    ServiceType.SSL: _ssl,
    ServiceType.DNSMASQ: _dnsmasq,
}


def build_default_metadata(ctx: MetadataContext) -> dict[str, Any]:
    service_type = ctx.service_data.service_type
    builder = _BUILDERS.get(service_type)
    model = builder(ctx) if builder else METADATA_MODELS[service_type]()
    logger.debug(
        "Default metadata for %s %s: %s",
        ctx.service_data.name, ctx.service_data.version, sorted(model.to_metadata()),
    )
    return model.to_metadata()
