"""
Tests for the download manager and the archive install pipeline.

A local HTTP server stands in for the release mirrors.
"""

import io
import re
import tarfile
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from envis.core.config.app_config import AppConfigStore
from envis.core.config.catalog import load_catalog
from envis.core.errors import DownloadCancelledError, DownloadFailureError, EnvisError, NotFoundError
from envis.core.models.download import DownloadStatus
from envis.core.services.download_manager import DownloadManager
from envis.core.services.installers.java import MAVEN_MIRROR_ID, MAVEN_MIRROR_URL, JavaInstaller
from envis.core.services.installers.mongodb import MongodbInstaller
from envis.core.services.installers.nodejs import NodejsInstaller

PAYLOAD = b"x" * 50_000


class _Handler(BaseHTTPRequestHandler):
    files: dict[str, bytes] = {}

    def log_message(self, format, *args):
        pass

    def do_GET(self):
        try:
            if self.path.startswith("/slow/"):
                self._slow()
                return
            name = self.path.rsplit("/", 1)[-1]
            if not self.path.startswith("/files/") or name not in self.files:
                self.send_error(404)
                return
            body = self.files[name]
            self.send_response(200)
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def _slow(self):
        self.send_response(200)
        self.send_header("Content-Length", str(8192 * 400))
        self.end_headers()
        for _ in range(400):
            self.wfile.write(b"s" * 8192)
            self.wfile.flush()
            time.sleep(0.02)


@pytest.fixture
def server():
    """Serve ``_Handler.files`` on a free port; yields the base URL."""
    _Handler.files = {"payload.bin": PAYLOAD}
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.daemon_threads = True
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


class TestDownloadManager:
    """Mirror fallback, failure and cancellation."""

    def test_single_url(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        task = manager.start_download("t-1", [f"{server}/files/payload.bin"], tmp_path, "payload.bin")
        assert task.status == DownloadStatus.DOWNLOADED
        assert task.progress == 100.0
        assert (tmp_path / "payload.bin").read_bytes() == PAYLOAD

    def test_falls_back_to_next_mirror(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        bad = f"{server}/missing/payload.bin"
        task = manager.start_download(
            "t-2", [bad, "http://127.0.0.1:1/payload.bin", f"{server}/files/payload.bin"],
            tmp_path, "payload.bin",
        )
        assert task.status == DownloadStatus.DOWNLOADED
        assert task.failed_urls == [bad, "http://127.0.0.1:1/payload.bin"]
        assert task.current_url_index == 2
        assert (tmp_path / "payload.bin").read_bytes() == PAYLOAD

    def test_all_mirrors_fail(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        urls = [f"{server}/missing/a", f"{server}/missing/b"]
        with pytest.raises(DownloadFailureError) as exc:
            manager.start_download("t-3", urls, tmp_path, "a")
        assert exc.value.failed_urls == urls
        task = manager.get_task("t-3")
        assert task.status == DownloadStatus.FAILED
        assert "All download URLs failed" in task.error_message
        assert not (tmp_path / "a").exists()

    def test_empty_url_list(self, tmp_path: Path):
        with pytest.raises(EnvisError):
            DownloadManager().start_download("t-4", [], tmp_path, "x")

    def test_cancel_mid_download(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        target_dir = tmp_path / "dl"
        errors: list[Exception] = []

        def run():
            try:
                manager.start_download("t-5", [f"{server}/slow/big.bin", f"{server}/files/payload.bin"],
                                       target_dir, "big.bin")
            except Exception as e:
                errors.append(e)

        worker = threading.Thread(target=run)
        worker.start()
        deadline = time.monotonic() + 10
        while time.monotonic() < deadline:
            task = manager.get_task("t-5")
            if task is not None and task.downloaded_size > 0:
                break
            time.sleep(0.01)

        manager.cancel("t-5")
        worker.join(timeout=15)

        assert not worker.is_alive()
        assert len(errors) == 1 and isinstance(errors[0], DownloadCancelledError)
        task = manager.get_task("t-5")
        assert task.status == DownloadStatus.CANCELLED
        # the second mirror was never tried
        assert task.failed_urls == []
        assert not (target_dir / "big.bin").exists()

    def test_cancel_unknown_task(self):
        with pytest.raises(NotFoundError):
            DownloadManager().cancel("nope")

    def test_terminal_status_sticks(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        manager.start_download("t-6", [f"{server}/files/payload.bin"], tmp_path, "payload.bin")
        manager.update_task_status("t-6", DownloadStatus.INSTALLED)
        assert manager.update_task_status("t-6", DownloadStatus.FAILED) is False
        assert manager.get_task("t-6").status == DownloadStatus.INSTALLED
        assert manager.update_task_status("t-6", DownloadStatus.INSTALLING, force=True) is True

    def test_cancel_after_install_is_ignored(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        manager.start_download(
            "t-8", [f"{server}/files/payload.bin"], tmp_path, "payload.bin",
            on_success=lambda task: manager.update_task_status(task.id, DownloadStatus.INSTALLED),
        )
        assert manager.cancel("t-8") is False
        assert manager.get_task("t-8").status == DownloadStatus.INSTALLED
        assert (tmp_path / "payload.bin").read_bytes() == PAYLOAD

    def test_cancel_after_failure_is_ignored(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        with pytest.raises(DownloadFailureError):
            manager.start_download("t-9", [f"{server}/missing/a"], tmp_path, "a")
        assert manager.cancel("t-9") is False
        assert manager.get_task("t-9").status == DownloadStatus.FAILED

    def test_settle_never_leaves_cancelled(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        manager.start_download("t-10", [f"{server}/files/payload.bin"], tmp_path, "payload.bin")
        manager.update_task_status("t-10", DownloadStatus.INSTALLING)
        assert manager.cancel("t-10") is True
        assert manager.settle("t-10", DownloadStatus.INSTALLED) is False
        assert manager.get_task("t-10").status == DownloadStatus.CANCELLED

    def test_settle_leaves_failed_follow_up(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)
        with pytest.raises(DownloadFailureError):
            manager.start_download("t-11", [f"{server}/missing/a"], tmp_path, "a")
        assert manager.settle("t-11", DownloadStatus.INSTALLED, "extra tool missing") is True
        task = manager.get_task("t-11")
        assert task.status == DownloadStatus.INSTALLED
        assert task.error_message == "extra tool missing"

    def test_failing_callback_marks_task_failed(self, server, tmp_path: Path):
        manager = DownloadManager(timeout=10)

        def explode(task):
            raise RuntimeError("no space left")

        with pytest.raises(RuntimeError):
            manager.start_download("t-7", [f"{server}/files/payload.bin"], tmp_path, "payload.bin",
                                   on_success=explode)
        task = manager.get_task("t-7")
        assert task.status == DownloadStatus.FAILED
        assert "no space left" in task.error_message


def _tarball(files: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def _node_tarball(version: str) -> bytes:
    return _tarball({f"node-{version}-linux-x64/bin/node": b"#!/bin/sh\necho node\n"})


def _installer(cls, envis_home: Path, catalog_file: Path):
    config = AppConfigStore(envis_home / ".envis.json")
    config.load_or_init()
    return cls(config, DownloadManager(timeout=10), catalog=load_catalog(catalog_file), os="linux", arch="x86_64")


class TestArchiveInstall:
    """Download, extract, chmod and settle through an installer."""

    def test_nodejs_install_with_fallback(self, server, envis_home: Path, tmp_path: Path):
        version = "v20.0.0"
        filename = f"node-{version}-linux-x64.tar.gz"
        _Handler.files[filename] = _node_tarball(version)
        catalog_file = tmp_path / "catalog.yml"
        catalog_file.write_text(
            "nodejs:\n"
            f"  versions: [{{version: {version}}}]\n"
            "  filename: {default: 'node-{version}-linux-{arch}.tar.gz'}\n"
            "  arch: {default: {x86_64: x64}}\n"
            "  mirrors:\n"
            f"    - '{server}/missing/{{filename}}'\n"
            f"    - '{server}/files/{{filename}}'\n"
        )
        config = AppConfigStore(envis_home / ".envis.json")
        config.load_or_init()
        installer = NodejsInstaller(
            config, DownloadManager(timeout=10), catalog=load_catalog(catalog_file), os="linux", arch="x86_64",
        )

        task = installer.download_and_install(version)

        assert task.status == DownloadStatus.INSTALLED
        assert len(task.failed_urls) == 1
        install = config.services_folder / "nodejs" / version
        node = install / "bin" / "node"
        assert node.is_file()
        assert node.stat().st_mode & 0o111
        assert not (install / filename).exists()
        assert installer.is_installed(version)
        # a second call is a no-op
        assert installer.download_and_install(version) is None

    def test_cancel_during_install_never_settles_installed(self, server, envis_home: Path, tmp_path: Path):
        version = "v20.0.0"
        filename = f"node-{version}-linux-x64.tar.gz"
        _Handler.files[filename] = _node_tarball(version)
        catalog_file = tmp_path / "catalog.yml"
        catalog_file.write_text(
            "nodejs:\n"
            f"  versions: [{{version: {version}}}]\n"
            "  filename: {default: 'node-{version}-linux-{arch}.tar.gz'}\n"
            "  arch: {default: {x86_64: x64}}\n"
            f"  mirrors: ['{server}/files/{{filename}}']\n"
        )

        class CancelledMidway(NodejsInstaller):
            def post_install(self, version, dest):
                self.cancel_download(version)
                return None

        installer = _installer(CancelledMidway, envis_home, catalog_file)
        task = installer.download_and_install(version)

        assert task.status == DownloadStatus.CANCELLED
        assert not installer.is_installed(version)
        assert not installer.install_path(version).exists()


MONGO_VERSION = "7.0.15"
MONGOSH_VERSION = "2.5.8"


@pytest.fixture
def mongo_catalog(server, tmp_path: Path) -> Path:
    _Handler.files[f"mongodb-linux-x86_64-{MONGO_VERSION}.tgz"] = _tarball({
        f"mongodb-linux-x86_64-{MONGO_VERSION}/bin/mongod": b"#!/bin/sh\n",
        f"mongodb-linux-x86_64-{MONGO_VERSION}/LICENSE": b"SSPL\n",
    })
    catalog_file = tmp_path / "catalog.yml"
    catalog_file.write_text(
        "mongodb:\n"
        f"  versions: [{{version: {MONGO_VERSION}}}]\n"
        "  filename: {default: 'mongodb-linux-{arch}-{version}.tgz'}\n"
        f"  mirrors: ['{server}/files/{{filename}}']\n"
        "mongosh:\n"
        f"  versions: [{{version: {MONGOSH_VERSION}}}]\n"
        "  filename: {default: 'mongosh-{version}-linux-{arch}.tgz'}\n"
        "  arch: {default: {x86_64: x64}}\n"
        f"  mirrors: ['{server}/files/{{filename}}']\n"
    )
    return catalog_file


class TestMongodbInstall:
    """mongod first, then the same task is rearmed for mongosh."""

    def test_mongosh_copied_into_bin(self, mongo_catalog: Path, envis_home: Path):
        _Handler.files[f"mongosh-{MONGOSH_VERSION}-linux-x64.tgz"] = _tarball({
            f"mongosh-{MONGOSH_VERSION}-linux-x64/bin/mongosh": b"#!/bin/sh\n",
            f"mongosh-{MONGOSH_VERSION}-linux-x64/README": b"shell\n",
        })
        installer = _installer(MongodbInstaller, envis_home, mongo_catalog)

        task = installer.download_and_install(MONGO_VERSION)

        assert task.id == f"mongodb-{MONGO_VERSION}"
        assert task.status == DownloadStatus.INSTALLED
        assert task.error_message is None
        # the rearmed task points at the mongosh archive
        assert task.filename == f"mongosh-{MONGOSH_VERSION}-linux-x64.tgz"
        install = installer.install_path(MONGO_VERSION)
        mongosh = install / "bin" / "mongosh"
        assert mongosh.is_file()
        assert mongosh.stat().st_mode & 0o111
        assert (install / "bin" / "mongod").is_file()
        assert not (install / "temp_mongosh").exists()
        assert not (install / task.filename).exists()

    def test_mongosh_failure_is_a_warning(self, mongo_catalog: Path, envis_home: Path):
        _Handler.files.pop(f"mongosh-{MONGOSH_VERSION}-linux-x64.tgz", None)
        installer = _installer(MongodbInstaller, envis_home, mongo_catalog)

        task = installer.download_and_install(MONGO_VERSION)

        assert task.status == DownloadStatus.INSTALLED
        assert "mongosh was not" in task.error_message
        assert installer.is_installed(MONGO_VERSION)
        assert not (installer.install_path(MONGO_VERSION) / "bin" / "mongosh").exists()

    def test_cancel_before_mongosh_is_not_rearmed(self, mongo_catalog: Path, envis_home: Path):
        class CancelledAfterMongod(MongodbInstaller):
            def install_archive(self, version, archive_path, dest):
                super().install_archive(version, archive_path, dest)
                self.cancel_download(version)

        installer = _installer(CancelledAfterMongod, envis_home, mongo_catalog)
        task = installer.download_and_install(MONGO_VERSION)

        assert task.status == DownloadStatus.CANCELLED
        assert task.filename == f"mongodb-linux-x86_64-{MONGO_VERSION}.tgz"
        assert not installer.is_installed(MONGO_VERSION)


MAVEN_SETTINGS = b"""<?xml version="1.0" encoding="UTF-8"?>
<settings xmlns="http://maven.apache.org/SETTINGS/1.2.0">
  <mirrors>
    <mirror>
      <id>corporate</id>
      <url>https://repo.example.com/maven</url>
      <mirrorOf>central</mirrorOf>
    </mirror>
  </mirrors>
</settings>
"""


class TestMavenCompanion:
    """Maven is its own task next to the JDK it belongs to."""

    def test_install_jdk_then_maven(self, server, envis_home: Path, tmp_path: Path):
        _Handler.files["jdk-17-linux-x64.tar.gz"] = _tarball({"jdk-17/bin/java": b"#!/bin/sh\n"})
        _Handler.files["apache-maven-3.9.9-bin.tar.gz"] = _tarball({
            "apache-maven-3.9.9/bin/mvn": b"#!/bin/sh\n",
            "apache-maven-3.9.9/conf/settings.xml": MAVEN_SETTINGS,
        })
        catalog_file = tmp_path / "catalog.yml"
        catalog_file.write_text(
            "java:\n"
            "  versions: [{version: '17'}]\n"
            "  filename: {default: 'jdk-{version}-linux-{arch}.tar.gz'}\n"
            "  arch: {default: {x86_64: x64}}\n"
            f"  mirrors: ['{server}/files/{{filename}}']\n"
            "maven:\n"
            "  versions: [{version: 3.9.9}]\n"
            "  filename: {default: 'apache-maven-{version}-bin.tar.gz'}\n"
            "  mirrors:\n"
            f"    - '{server}/missing/{{filename}}'\n"
            f"    - '{server}/files/{{filename}}'\n"
        )
        installer = _installer(JavaInstaller, envis_home, catalog_file)

        with pytest.raises(NotFoundError):
            installer.download_and_install_maven("17")
        assert installer.download_and_install("17").status == DownloadStatus.INSTALLED

        task = installer.download_and_install_maven("17")

        assert task.id == "java-17-maven"
        assert task.status == DownloadStatus.INSTALLED
        assert installer.maven_download_progress("17").status == DownloadStatus.INSTALLED
        maven = installer.install_path("17") / "maven" / "3.9.9"
        assert installer.maven_home("17") == str(maven)
        assert installer.maven_binary("17").stat().st_mode & 0o111
        assert not (maven / "apache-maven-3.9.9-bin.tar.gz").exists()

        settings = (maven / "conf" / "settings.xml").read_text()
        ids = re.findall(r"<id>([^<]+)</id>", settings)
        assert ids == [MAVEN_MIRROR_ID, "corporate"]
        assert MAVEN_MIRROR_URL in settings
        # the JDK task is untouched
        assert installer.download_progress("17").status == DownloadStatus.INSTALLED
        assert installer.download_and_install_maven("17") is None
