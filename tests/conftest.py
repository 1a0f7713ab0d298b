"""
Shared test fixtures and configuration.

Every test that touches the manager graph gets its own home directory
(``ENVIS_HOME``), its own rc files and a private hosts file, so nothing
on the real machine is read or written.
"""

import shutil
from pathlib import Path

import pytest

from envis.core.context import EnvisContext, build_context, set_context

ADMIN_PASSWORD = "secret"


class FakeRunner:
    """Stands in for ``run_command``: records calls, emulates ``sudo cp``."""

    def __init__(self, password: str = ADMIN_PASSWORD) -> None:
        self.password = password
        self.calls: list[list[str]] = []

    def __call__(self, cmd, *, needs_sudo=False, sudo_password="", **kwargs):
        self.calls.append(list(cmd))
        if needs_sudo:
            if not sudo_password:
                return {"ok": False, "needs_sudo": True, "error": "This step requires an admin password."}
            if sudo_password != self.password:
                return {"ok": False, "password_incorrect": True, "error": "Sorry, try again."}
        if cmd and cmd[0] == "cp":
            shutil.copyfile(cmd[1], cmd[2])
        return {"ok": True, "stdout": "", "stderr": "", "elapsed_ms": 0}


@pytest.fixture
def envis_home(tmp_path: Path, monkeypatch) -> Path:
    """Return a private home directory exported as ENVIS_HOME."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("ENVIS_HOME", str(home))
    return home


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def hosts_file(tmp_path: Path) -> Path:
    """Return a hosts file seeded with one system entry."""
    path = tmp_path / "hosts"
    path.write_text("127.0.0.1 localhost\n")
    return path


@pytest.fixture
def ctx(envis_home: Path, hosts_file: Path, fake_runner: FakeRunner):
    """Build a Linux manager graph rooted in the temporary home."""
    context: EnvisContext = build_context(
        envis_home,
        shell_targets=[envis_home / ".bash_profile", envis_home / ".zshrc"],
        hosts_path=hosts_file,
        runner=fake_runner,
        os="linux",
        arch="x86_64",
    )
    set_context(context)
    yield context
    set_context(None)


@pytest.fixture
def install_fake(ctx):
    """Return a helper creating an empty installation with the given sub-directories."""

    def make(type_dir: str, version: str, *subdirs: str) -> Path:
        install = ctx.config.services_folder / type_dir / version
        install.mkdir(parents=True, exist_ok=True)
        for sub in subdirs:
            (install / sub).mkdir(parents=True, exist_ok=True)
        return install

    return make
