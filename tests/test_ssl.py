"""
Tests for the local certificate authority.

Issuing runs the real ``openssl`` binary; those tests are skipped when it
is not on PATH.
"""

import json
import shutil
from pathlib import Path

import pytest
from cryptography import x509

from envis.core.config.app_config import AppConfigStore
from envis.core.errors import AlreadyExistsError, EnvisError, NotFoundError
from envis.core.models.certificate import CAConfig
from envis.core.services.ssl_ca import (
    CERT_FILE,
    KEY_FILE,
    PEM_FILE,
    SslManager,
    alt_names,
    fingerprint,
    load_certificate,
    validate_domain,
)

needs_openssl = pytest.mark.skipif(shutil.which("openssl") is None, reason="openssl not installed")


@pytest.fixture(scope="module")
def ssl_manager(tmp_path_factory) -> SslManager:
    """One CA per module; generating a 4096-bit key is slow."""
    base = tmp_path_factory.mktemp("ssl")
    config_file = base / ".envis.json"
    config_file.write_text(json.dumps({"envisFolder": str(base / "data")}))
    config = AppConfigStore(config_file)
    config.load_or_init()
    return SslManager(config, os="linux")


class TestDomainNames:
    def test_validate(self):
        assert validate_domain(" API.Example.test ") == "api.example.test"
        assert validate_domain("*.example.test") == "*.example.test"
        with pytest.raises(EnvisError):
            validate_domain("bad domain")
        with pytest.raises(EnvisError):
            validate_domain("-leading.test")

    def test_alt_names(self):
        names = alt_names("api.test", ["DNS:www.api.test", "api.test", " localhost "])
        assert names == ["api.test", "www.api.test", "localhost"]


@needs_openssl
class TestCertificateAuthority:
    """CA lifecycle and certificate issuing."""

    @pytest.fixture(scope="class", autouse=True)
    def _ca(self, ssl_manager):
        ssl_manager.initialize_ca(CAConfig(common_name="Test CA", validity_days=30))

    def test_ca_info(self, ssl_manager):
        info = ssl_manager.ca_info()
        assert info.initialized
        assert "CN=Test CA" in info.subject
        assert info.subject == info.issuer
        assert Path(info.cert_path).is_file()

    def test_second_init_refused(self, ssl_manager):
        with pytest.raises(AlreadyExistsError):
            ssl_manager.initialize_ca()

    def test_issue(self, ssl_manager):
        cert = ssl_manager.issue_certificate("env1", "api.test", ["www.api.test"], days=10)
        assert cert.id == "api.test"
        assert cert.subject_alt_names == ["api.test", "www.api.test"]
        assert "CN=Test CA" in cert.issuer

        pem = Path(cert.paths.pem)
        assert pem.name == PEM_FILE
        text = pem.read_text()
        assert "BEGIN CERTIFICATE" in text and "PRIVATE KEY" in text

        # signed by our CA
        issued = load_certificate(Path(cert.paths.cert))
        ca = load_certificate(ssl_manager.ca_cert_path)
        issued.verify_directly_issued_by(ca)

        # intermediate files are cleaned up
        folder = Path(cert.paths.cert).parent
        assert not (folder / "request.csr").exists()
        assert not (folder / "cert.ext").exists()

    def test_issue_duplicate_and_overwrite(self, ssl_manager):
        ssl_manager.issue_certificate("env2", "db.test")
        with pytest.raises(AlreadyExistsError):
            ssl_manager.issue_certificate("env2", "db.test")
        again = ssl_manager.issue_certificate("env2", "db.test", ["cache.test"], overwrite=True)
        assert again.subject_alt_names == ["db.test", "cache.test"]

    def test_list_and_delete(self, ssl_manager):
        ssl_manager.issue_certificate("env3", "b.test")
        ssl_manager.issue_certificate("env3", "a.test")
        assert [c.domain for c in ssl_manager.list_certificates("env3")] == ["a.test", "b.test"]
        ssl_manager.delete_certificate("env3", "a.test")
        assert [c.domain for c in ssl_manager.list_certificates("env3")] == ["b.test"]
        with pytest.raises(NotFoundError):
            ssl_manager.delete_certificate("env3", "a.test")

    def test_export(self, ssl_manager, tmp_path: Path):
        target = ssl_manager.export_ca(tmp_path)
        assert target == tmp_path / "ca.crt"
        assert target.read_bytes() == ssl_manager.ca_cert_path.read_bytes()

    def test_trust_store_check(self, ssl_manager, tmp_path: Path):
        trust = tmp_path / "anchors"
        trust.mkdir()
        assert ssl_manager.check_ca_installed((trust,)) is False
        shutil.copyfile(ssl_manager.ca_cert_path, trust / "envis-ca.crt")
        assert ssl_manager.check_ca_installed((trust,)) is True

    def test_fingerprint_format(self, ssl_manager):
        cert = load_certificate(ssl_manager.ca_cert_path)
        assert isinstance(cert, x509.Certificate)
        digest = fingerprint(cert, "sha1")
        assert len(digest) == 40 and digest == digest.upper()


class TestFailedIssue:
    """openssl failures never touch the certificate already in place."""

    @pytest.fixture
    def manager(self, envis_home: Path):
        config = AppConfigStore(envis_home / ".envis.json")
        config.load_or_init()
        calls = []

        def runner(cmd, **kwargs):
            calls.append(cmd)
            if cmd[1] == "x509":
                return {"ok": False, "stderr": "unable to load CA private key\n"}
            return {"ok": True, "stdout": "", "stderr": ""}

        manager = SslManager(config, runner=runner, os="linux")
        manager.ca_folder.mkdir(parents=True)
        manager.ca_cert_path.write_text("ca")
        manager.ca_key_path.write_text("key")
        manager.calls = calls
        return manager

    def test_overwrite_keeps_old_certificate(self, manager):
        folder = manager.certs_folder("env1") / "api.test"
        folder.mkdir(parents=True)
        (folder / CERT_FILE).write_text("old cert")
        (folder / KEY_FILE).write_text("old key")

        with pytest.raises(EnvisError, match="Signing certificate failed"):
            manager.issue_certificate("env1", "api.test", overwrite=True)

        assert (folder / CERT_FILE).read_text() == "old cert"
        assert (folder / KEY_FILE).read_text() == "old key"
        assert [p.name for p in folder.parent.iterdir()] == ["api.test"]
        assert [c[1] for c in manager.calls] == ["genrsa", "req", "x509"]

    def test_first_issue_leaves_nothing_behind(self, manager):
        with pytest.raises(EnvisError):
            manager.issue_certificate("env1", "web.test")
        certs = manager.certs_folder("env1")
        assert not certs.exists() or list(certs.iterdir()) == []


class TestWithoutCa:
    def test_issue_requires_ca(self, envis_home: Path):
        config = AppConfigStore(envis_home / ".envis.json")
        config.load_or_init()
        manager = SslManager(config, os="linux")
        assert manager.ca_info().initialized is False
        with pytest.raises(NotFoundError):
            manager.issue_certificate("env", "api.test")
