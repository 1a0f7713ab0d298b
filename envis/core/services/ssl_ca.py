"""
Local certificate authority and per-environment certificate issuance.

Layout::

    {root}/services/ssl/v1.0.0/ca/{ca.crt, ca.key, ca.cnf, serial, index.txt}
    {root}/envs/{env_id}/ssl/v1.0.0/certs/{domain}/
        certificate.crt  private.key  fullchain.pem  certificate.pfx

Keys, requests and signatures are produced by the ``openssl`` binary.
Reading certificates back (subject, validity, fingerprints) uses the
``cryptography`` package so no output parsing is needed.
"""

from __future__ import annotations

import logging
import re
import shutil
from datetime import datetime, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from envis.core.config.app_config import AppConfigStore
from envis.core.config.paths import os_name
from envis.core.errors import AlreadyExistsError, EnvisError, EnvisIOError, NotFoundError
from envis.core.models.certificate import CAConfig, CAInfo, Certificate, CertificatePaths
from envis.core.services.installers.base import Runner
from envis.core.services.subprocess_runner import run_command

logger = logging.getLogger(__name__)

SSL_VERSION = "v1.0.0"
CA_KEY_BITS = 4096
CERT_KEY_BITS = 2048
DEFAULT_CERT_DAYS = 365

CERT_FILE = "certificate.crt"
KEY_FILE = "private.key"
PEM_FILE = "fullchain.pem"
PFX_FILE = "certificate.pfx"

LINUX_TRUST_DIRS = (
    Path("/etc/ssl/certs"),
    Path("/usr/local/share/ca-certificates"),
    Path("/etc/pki/ca-trust/source/anchors"),
)
MACOS_SYSTEM_KEYCHAIN = "/Library/Keychains/System.keychain"

_DOMAIN = re.compile(r"^(\*\.)?[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]*[A-Za-z0-9])?)*$")

CA_CNF = """\
[ req ]
default_bits       = 4096
distinguished_name = req_distinguished_name
x509_extensions    = v3_ca

[ req_distinguished_name ]
countryName                     = Country Name (2 letter code)
stateOrProvinceName             = State or Province Name
localityName                    = Locality Name
organizationName                = Organization Name
organizationalUnitName          = Organizational Unit Name
commonName                      = Common Name

[ v3_ca ]
subjectKeyIdentifier   = hash
authorityKeyIdentifier = keyid:always,issuer
basicConstraints       = critical, CA:true
keyUsage               = critical, digitalSignature, cRLSign, keyCertSign
"""

CERT_EXT = """\
authorityKeyIdentifier=keyid,issuer
basicConstraints=CA:FALSE
keyUsage = digitalSignature, nonRepudiation, keyEncipherment, dataEncipherment
extendedKeyUsage = serverAuth
subjectAltName = @alt_names

[alt_names]
{alt_names}
"""


def validate_domain(domain: str) -> str:
    domain = domain.strip().lower()
    if not domain or not _DOMAIN.match(domain):
        raise EnvisError(f"Invalid domain name: {domain!r}")
    return domain


def alt_names(domain: str, sans: list[str] | None) -> list[str]:
    """``domain`` first, then the SANs without duplicates."""
    names = [domain]
    for san in sans or []:
        san = san.strip().lower()
        if san.startswith("dns:"):
            san = san[4:]
        if san and san not in names:
            names.append(validate_domain(san))
    return names


def _subject(config: CAConfig) -> str:
    parts = [
        ("C", config.country),
        ("ST", config.state),
        ("L", config.locality),
        ("O", config.organization),
        ("OU", config.organizational_unit),
        ("CN", config.common_name),
    ]
    return "".join(f"/{key}={value}" for key, value in parts if value)


def load_certificate(path: Path) -> x509.Certificate:
    return x509.load_pem_x509_certificate(path.read_bytes())


def fingerprint(cert: x509.Certificate, algorithm: str = "sha256") -> str:
    """Upper-case hex digest without separators."""
    algo = hashes.SHA1() if algorithm == "sha1" else hashes.SHA256()
    return cert.fingerprint(algo).hex().upper()


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat()


class SslManager:
    def __init__(
        self,
        config: AppConfigStore,
        runner: Runner = run_command,
        os: str | None = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.os = os or os_name()

    # ── Paths ───────────────────────────────────────────────────

    @property
    def ca_folder(self) -> Path:
        return self.config.services_folder / "ssl" / SSL_VERSION / "ca"

    @property
    def ca_cert_path(self) -> Path:
        return self.ca_folder / "ca.crt"

    @property
    def ca_key_path(self) -> Path:
        return self.ca_folder / "ca.key"

    def certs_folder(self, env_id: str) -> Path:
        return self.config.envs_folder / env_id / "ssl" / SSL_VERSION / "certs"

    def is_ca_initialized(self) -> bool:
        return self.ca_cert_path.is_file() and self.ca_key_path.is_file()

    def _openssl(self, args: list[str], what: str) -> dict:
        result = self.runner(["openssl", *args], timeout=120)
        if not result.get("ok"):
            detail = result.get("stderr") or result.get("error", "")
            raise EnvisError(f"{what} failed: {detail.strip()}")
        return result

    # ── CA ──────────────────────────────────────────────────────

    def initialize_ca(self, ca_config: CAConfig | None = None, force: bool = False) -> CAInfo:
        """Create the CA key and self-signed certificate.

        Raises:
            AlreadyExistsError: A CA exists and ``force`` is not set.
            EnvisError: An openssl step failed.
        """
        ca_config = ca_config or CAConfig()
        if self.is_ca_initialized() and not force:
            raise AlreadyExistsError(f"CA already initialized at {self.ca_folder}")

        folder = self.ca_folder
        try:
            folder.mkdir(parents=True, exist_ok=True)
            (folder / "ca.cnf").write_text(CA_CNF, encoding="utf-8")
        except OSError as e:
            raise EnvisIOError(f"Cannot create {folder}: {e}") from e

        self._openssl(["genrsa", "-out", str(self.ca_key_path), str(CA_KEY_BITS)], "Generating CA key")
        self._openssl(
            [
                "req", "-new", "-x509",
                "-days", str(ca_config.validity_days),
                "-key", str(self.ca_key_path),
                "-out", str(self.ca_cert_path),
                "-subj", _subject(ca_config),
                "-config", str(folder / "ca.cnf"),
                "-extensions", "v3_ca",
            ],
            "Generating CA certificate",
        )
        (folder / "serial").write_text("1000", encoding="utf-8")
        (folder / "index.txt").write_text("", encoding="utf-8")
        logger.info("CA initialized: %s", ca_config.common_name)
        return self.ca_info()

    def ca_info(self) -> CAInfo:
        if not self.is_ca_initialized():
            return CAInfo(initialized=False)
        cert = load_certificate(self.ca_cert_path)
        return CAInfo(
            initialized=True,
            subject=cert.subject.rfc4514_string(),
            issuer=cert.issuer.rfc4514_string(),
            valid_from=_iso(cert.not_valid_before_utc),
            valid_to=_iso(cert.not_valid_after_utc),
            serial=format(cert.serial_number, "X"),
            cert_path=str(self.ca_cert_path),
            key_path=str(self.ca_key_path),
        )

    def export_ca(self, destination: Path) -> Path:
        """Copy ``ca.crt`` to ``destination`` (a file or a directory)."""
        if not self.is_ca_initialized():
            raise NotFoundError("CA is not initialized")
        if destination.is_dir():
            destination = destination / "ca.crt"
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(self.ca_cert_path, destination)
        except OSError as e:
            raise EnvisIOError(f"Cannot export CA to {destination}: {e}") from e
        logger.info("Exported CA certificate to %s", destination)
        return destination

    # ── Trust-store check ───────────────────────────────────────

    def check_ca_installed(self, trust_dirs: tuple[Path, ...] = LINUX_TRUST_DIRS) -> bool:
        """Whether the CA certificate is present in the system trust store."""
        if not self.is_ca_initialized():
            raise NotFoundError("CA is not initialized")
        cert = load_certificate(self.ca_cert_path)
        if self.os == "macos":
            return self._installed_macos(fingerprint(cert, "sha1"))
        if self.os == "windows":
            return self._installed_windows(fingerprint(cert, "sha1"))
        return _installed_in_dirs(fingerprint(cert), trust_dirs)

    def _installed_macos(self, sha1: str) -> bool:
        result = self.runner(["security", "find-certificate", "-a", "-Z", MACOS_SYSTEM_KEYCHAIN], timeout=30)
        if not result.get("ok"):
            logger.warning("security find-certificate failed: %s", result.get("error"))
            return False
        return sha1 in result.get("stdout", "").upper()

    def _installed_windows(self, sha1: str) -> bool:
        script = (
            r"Get-ChildItem -Path Cert:\LocalMachine\Root | "
            f"Where-Object {{ $_.Thumbprint -eq '{sha1}' }} | "
            "Select-Object -ExpandProperty Thumbprint"
        )
        result = self.runner(["powershell", "-NoProfile", "-Command", script], timeout=30)
        return bool(result.get("ok")) and sha1 in result.get("stdout", "").upper()

    # ── Certificates ────────────────────────────────────────────

    def issue_certificate(
        self,
        env_id: str,
        domain: str,
        sans: list[str] | None = None,
        days: int = DEFAULT_CERT_DAYS,
        overwrite: bool = False,
    ) -> Certificate:
        """Sign a server certificate for ``domain`` with the local CA.

        Raises:
            NotFoundError: The CA is not initialized.
            AlreadyExistsError: ``domain`` already has a certificate.
            EnvisError: Invalid domain or an openssl step failed.
        """
        domain = validate_domain(domain)
        names = alt_names(domain, sans)
        if not self.is_ca_initialized():
            raise NotFoundError("CA is not initialized; run `envis ssl init` first")

        folder = self.certs_folder(env_id) / domain
        if folder.exists() and not overwrite:
            raise AlreadyExistsError(f"Certificate for {domain} already exists")

        # issue next to the live folder; it is only replaced once signing worked
        staging = folder.with_name(f".{domain}.staging")
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
        try:
            self._issue_into(staging, domain, names, days)
        except EnvisError:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        self._swap_in(staging, folder)

        logger.info("Issued certificate for %s (%s)", domain, ", ".join(names))
        return self._read_certificate(folder)

    def _issue_into(self, folder: Path, domain: str, names: list[str], days: int) -> None:
        key_path = folder / KEY_FILE
        cert_path = folder / CERT_FILE
        csr_path = folder / "request.csr"
        ext_path = folder / "cert.ext"
        try:
            self._openssl(["genrsa", "-out", str(key_path), str(CERT_KEY_BITS)], "Generating key")
            self._openssl(
                ["req", "-new", "-key", str(key_path), "-out", str(csr_path), "-subj", f"/CN={domain}"],
                "Creating signing request",
            )
            ext_path.write_text(
                CERT_EXT.format(alt_names="\n".join(f"DNS.{i} = {n}" for i, n in enumerate(names, 1))),
                encoding="utf-8",
            )
            self._openssl(
                [
                    "x509", "-req", "-in", str(csr_path),
                    "-CA", str(self.ca_cert_path), "-CAkey", str(self.ca_key_path),
                    "-CAcreateserial",
                    "-out", str(cert_path),
                    "-days", str(days),
                    "-extfile", str(ext_path),
                ],
                "Signing certificate",
            )
        finally:
            csr_path.unlink(missing_ok=True)
            ext_path.unlink(missing_ok=True)

        try:
            (folder / PEM_FILE).write_text(
                cert_path.read_text(encoding="utf-8") + "\n" + key_path.read_text(encoding="utf-8"),
                encoding="utf-8",
            )
        except OSError as e:
            raise EnvisIOError(f"Cannot write {PEM_FILE} for {domain}: {e}") from e

        pfx_path = folder / PFX_FILE
        result = self.runner(
            [
                "openssl", "pkcs12", "-export",
                "-out", str(pfx_path),
                "-inkey", str(key_path), "-in", str(cert_path),
                "-certfile", str(self.ca_cert_path),
                "-passout", "pass:",
            ],
            timeout=60,
        )
        if not result.get("ok"):
            # PFX is optional; the PEM and CRT/KEY outputs stand on their own
            logger.warning("PFX export for %s failed: %s", domain, result.get("stderr") or result.get("error"))

    def _swap_in(self, staging: Path, folder: Path) -> None:
        """Replace ``folder`` with the freshly issued ``staging`` folder."""
        previous = folder.with_name(f".{folder.name}.previous")
        try:
            if previous.exists():
                shutil.rmtree(previous)
            if folder.exists():
                folder.rename(previous)
            staging.rename(folder)
        except OSError as e:
            if previous.exists() and not folder.exists():
                previous.rename(folder)
            shutil.rmtree(staging, ignore_errors=True)
            raise EnvisIOError(f"Cannot replace certificate in {folder}: {e}") from e
        shutil.rmtree(previous, ignore_errors=True)

    def _read_certificate(self, folder: Path) -> Certificate:
        cert_path = folder / CERT_FILE
        cert = load_certificate(cert_path)
        try:
            san_ext = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            sans = san_ext.value.get_values_for_type(x509.DNSName)
        except x509.ExtensionNotFound:
            sans = []
        pem = folder / PEM_FILE
        pfx = folder / PFX_FILE
        return Certificate(
            id=folder.name,
            domain=folder.name,
            common_name=folder.name,
            subject_alt_names=sans,
            issuer=cert.issuer.rfc4514_string(),
            valid_from=_iso(cert.not_valid_before_utc),
            valid_to=_iso(cert.not_valid_after_utc),
            serial=format(cert.serial_number, "X"),
            created_at=_iso(datetime.fromtimestamp(cert_path.stat().st_mtime, tz=timezone.utc)),
            paths=CertificatePaths(
                cert=str(cert_path),
                key=str(folder / KEY_FILE),
                pem=str(pem) if pem.is_file() else None,
                pfx=str(pfx) if pfx.is_file() else None,
            ),
        )

    def list_certificates(self, env_id: str) -> list[Certificate]:
        folder = self.certs_folder(env_id)
        if not folder.is_dir():
            return []
        certificates = []
        for entry in sorted(folder.iterdir()):
            if entry.name.startswith(".") or not (entry / CERT_FILE).is_file():
                continue
            try:
                certificates.append(self._read_certificate(entry))
            except (ValueError, OSError) as e:
                logger.warning("Skipping unreadable certificate %s: %s", entry, e)
        return certificates

    def delete_certificate(self, env_id: str, domain: str) -> None:
        folder = self.certs_folder(env_id) / validate_domain(domain)
        if not folder.is_dir():
            raise NotFoundError(f"No certificate for {domain}")
        try:
            shutil.rmtree(folder)
        except OSError as e:
            raise EnvisIOError(f"Cannot delete {folder}: {e}") from e
        logger.info("Deleted certificate for %s", domain)


def _installed_in_dirs(sha256: str, trust_dirs: tuple[Path, ...]) -> bool:
    for directory in trust_dirs:
        if not directory.is_dir():
            continue
        for entry in directory.iterdir():
            if entry.suffix not in (".crt", ".pem") or not entry.is_file():
                continue
            try:
                candidates = x509.load_pem_x509_certificates(entry.read_bytes())
            except (ValueError, OSError):
                continue
            if any(fingerprint(c) == sha256 for c in candidates):
                logger.debug("CA found in %s", entry)
                return True
    return False
