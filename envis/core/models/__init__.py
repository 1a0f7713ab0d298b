"""
Domain models: the Pydantic records envis persists and passes around.

All models are re-exported here for convenient access:

    from envis.core.models import AppConfig, Environment, ServiceData, ServiceType
"""

from envis.core.models.app_config import AppConfig
from envis.core.models.certificate import CAConfig, CAInfo, Certificate, CertificatePaths
from envis.core.models.download import DownloadStatus, DownloadTask
from envis.core.models.environment import Environment, EnvironmentStatus
from envis.core.models.host import HostEntry
from envis.core.models.service import (
    ServiceData,
    ServiceDataStatus,
    ServiceStatus,
    ServiceType,
)

__all__ = [
    # app_config.py
    "AppConfig",
    # certificate.py
    "CAConfig",
    "CAInfo",
    "Certificate",
    "CertificatePaths",
    # download.py
    "DownloadStatus",
    "DownloadTask",
    # environment.py
    "Environment",
    "EnvironmentStatus",
    # host.py
    "HostEntry",
    # service.py
    "ServiceData",
    "ServiceDataStatus",
    "ServiceStatus",
    "ServiceType",
]
