"""
Tests for the hosts-file manager.
"""

from pathlib import Path

import pytest

from envis.core.errors import (
    AlreadyExistsError,
    CorruptedStateError,
    NeedsAdminError,
    NotFoundError,
    PasswordIncorrectError,
)
from envis.core.models.host import HostEntry
from envis.core.services.hosts_manager import HOSTS_BEGIN, HOSTS_END, HostsManager, split_block


@pytest.fixture
def hosts(hosts_file: Path, fake_runner) -> HostsManager:
    return HostsManager(hosts_file, runner=fake_runner, os="linux")


def _entry(hostname: str, ip: str = "127.0.0.1", **kw) -> HostEntry:
    return HostEntry(ip=ip, hostname=hostname, **kw)


class TestSplitBlock:
    def test_no_block(self):
        before, interior, after = split_block("127.0.0.1 localhost\n")
        assert before == ["127.0.0.1 localhost"]
        assert interior is None
        assert after == []

    def test_unpaired(self):
        with pytest.raises(CorruptedStateError):
            split_block(f"{HOSTS_BEGIN}\n127.0.0.1 a.test\n")


class TestHostsManager:
    """Single-entry and batch edits."""

    def test_empty_list(self, hosts):
        assert hosts.list_hosts() == []

    def test_add_creates_block(self, hosts, hosts_file, fake_runner):
        hosts.add_host(_entry("api.test", comment="backend"), "secret")
        text = hosts_file.read_text()
        assert text.startswith("127.0.0.1 localhost\n\n" + HOSTS_BEGIN)
        assert "127.0.0.1 api.test # backend" in text
        assert text.rstrip().endswith(HOSTS_END)
        assert fake_runner.calls[-1][0] == "cp"
        assert [e.hostname for e in hosts.list_hosts()] == ["api.test"]

    def test_add_duplicate(self, hosts):
        hosts.add_host(_entry("api.test"), "secret")
        with pytest.raises(AlreadyExistsError):
            hosts.add_host(_entry("api.test", comment="again"), "secret")

    def test_no_password(self, hosts, hosts_file):
        with pytest.raises(NeedsAdminError) as exc:
            hosts.add_host(_entry("api.test"), None)
        assert str(exc.value) == "needAdminPasswordToModifyHosts"
        assert hosts_file.read_text() == "127.0.0.1 localhost\n"

    def test_wrong_password(self, hosts, hosts_file):
        hosts.add_host(_entry("api.test"), "secret")
        before = hosts_file.read_text()
        with pytest.raises(PasswordIncorrectError) as exc:
            hosts.add_host(_entry("db.test"), "guess")
        assert str(exc.value) == "passwordIncorrect"
        assert hosts_file.read_text() == before

    def test_toggle(self, hosts, hosts_file):
        hosts.add_host(_entry("api.test"), "secret")
        entry = hosts.toggle_host("127.0.0.1", "api.test", "secret")
        assert entry.enabled is False
        assert "# 127.0.0.1 api.test" in hosts_file.read_text()
        assert hosts.list_hosts()[0].enabled is False
        assert hosts.toggle_host("127.0.0.1", "api.test", "secret").enabled is True

    def test_update_and_delete(self, hosts):
        hosts.add_host(_entry("api.test"), "secret")
        hosts.update_host(_entry("api.test"), _entry("api.test", ip="10.0.0.5"), "secret")
        assert hosts.list_hosts()[0].ip == "10.0.0.5"
        hosts.delete_host("10.0.0.5", "api.test", "secret")
        assert hosts.list_hosts() == []
        with pytest.raises(NotFoundError):
            hosts.delete_host("10.0.0.5", "api.test", "secret")

    def test_user_lines_outside_block_untouched(self, hosts, hosts_file):
        hosts.add_host(_entry("api.test"), "secret")
        hosts_file.write_text(hosts_file.read_text() + "10.1.1.1 corp.internal\n")
        hosts.add_host(_entry("db.test"), "secret")
        text = hosts_file.read_text()
        assert text.startswith("127.0.0.1 localhost\n")
        assert text.endswith(f"{HOSTS_END}\n10.1.1.1 corp.internal\n")

    def test_batch_merge_by_key(self, hosts):
        hosts.add_host(_entry("api.test", comment="old"), "secret")
        hosts.add_hosts([_entry("api.test", comment="new"), _entry("db.test")], "secret")
        listed = hosts.list_hosts()
        assert [(e.hostname, e.comment) for e in listed] == [("api.test", "new"), ("db.test", None)]

        hosts.remove_hosts([_entry("api.test")], "secret")
        assert [e.hostname for e in hosts.list_hosts()] == ["db.test"]

    def test_unchanged_write_skipped(self, hosts, fake_runner):
        hosts.add_hosts([_entry("api.test")], "secret")
        calls = len(fake_runner.calls)
        hosts.add_hosts([_entry("api.test")], "secret")
        assert len(fake_runner.calls) == calls

    def test_clear(self, hosts, hosts_file):
        hosts.add_host(_entry("api.test"), "secret")
        hosts.clear_hosts("secret")
        assert hosts.list_hosts() == []
        assert HOSTS_BEGIN in hosts_file.read_text()

    def test_clear_without_block_is_noop(self, hosts, fake_runner):
        hosts.clear_hosts(None)
        assert fake_runner.calls == []

    def test_corrupted_block_refused(self, hosts, hosts_file):
        hosts_file.write_text(f"{HOSTS_END}\n{HOSTS_BEGIN}\n")
        with pytest.raises(CorruptedStateError):
            hosts.add_host(_entry("api.test"), "secret")

    def test_windows_writes_directly(self, hosts_file, fake_runner):
        manager = HostsManager(hosts_file, runner=fake_runner, os="windows")
        manager.add_host(_entry("api.test"), None)
        assert "127.0.0.1 api.test" in hosts_file.read_text()
        assert fake_runner.calls == []
