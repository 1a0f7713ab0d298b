"""
Local CA configuration and issued-certificate records.
"""

from __future__ import annotations

from pydantic import Field

from envis.core.models.base import CamelModel, _now_iso


class CAConfig(CamelModel):
    """Subject and validity of the per-install certificate authority."""

    common_name: str = "Envis Local CA"
    organization: str = "Envis"
    organizational_unit: str | None = None
    country: str = "CN"
    state: str = "Local"
    locality: str = "Local"
    validity_days: int = 3650


class CertificatePaths(CamelModel):
    cert: str
    key: str
    pem: str | None = None
    pfx: str | None = None


class Certificate(CamelModel):
    """An issued server certificate, read back from its directory."""

    id: str
    domain: str
    common_name: str
    subject_alt_names: list[str] | None = None
    issuer: str = ""
    valid_from: str = ""
    valid_to: str = ""
    serial: str = ""
    created_at: str = Field(default_factory=_now_iso)
    paths: CertificatePaths


class CAInfo(CamelModel):
    initialized: bool
    subject: str = ""
    issuer: str = ""
    valid_from: str = ""
    valid_to: str = ""
    serial: str = ""
    cert_path: str = ""
    key_path: str = ""
