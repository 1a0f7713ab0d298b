"""
Tests for the service-data manager and the activation lifecycles.
"""

import json
from pathlib import Path

import pytest

from envis.core.errors import (
    AlreadyExistsError,
    EnvisError,
    NeedsAdminError,
    NotFoundError,
    PasswordIncorrectError,
)
from envis.core.models.service import ServiceDataStatus, ServiceStatus, ServiceType
from envis.core.services.hosts_manager import HOSTS_BEGIN


@pytest.fixture
def env(ctx):
    return ctx.environments.create_environment("dev")


def _interior(ctx):
    return ctx.shell.read_interior(ctx.shell.targets[0])


class TestServiceDataCrud:
    """Creation, lookup, update and deletion."""

    def test_create_persists_record(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1")
        record = ctx.config.envs_folder / env.id / "nodejs" / "v20.19.1" / "service.json"
        data = json.loads(record.read_text())
        assert data["type"] == "nodejs"
        assert data["name"] == "Node.js"
        assert data["status"] == "inactive"
        assert data["metadata"]["NPM_CONFIG_PREFIX"] == str(record.parent)
        assert sd.sort == 0

    def test_newest_sorts_first(self, ctx, env):
        first = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v18.20.7")
        second = ctx.service_datas.create_service_data(env.id, ServiceType.PYTHON, "3.12.8")
        listed = ctx.service_datas.get_environment_all_service_datas(env.id)
        assert [sd.id for sd in listed] == [second.id, first.id]
        assert second.sort == -1

    def test_duplicate_type_version(self, ctx, env):
        ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1")
        with pytest.raises(AlreadyExistsError):
            ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1", name="again")

    def test_same_type_other_version_allowed(self, ctx, env):
        ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1")
        ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v18.20.7")
        assert len(ctx.service_datas.get_environment_all_service_datas(env.id)) == 2

    def test_unknown_environment(self, ctx):
        with pytest.raises(NotFoundError):
            ctx.service_datas.create_service_data("missing", ServiceType.CUSTOM, "1")

    def test_corrupt_record_skipped(self, ctx, env):
        ctx.service_datas.create_service_data(env.id, ServiceType.CUSTOM, "1")
        bad = ctx.config.envs_folder / env.id / "python" / "3.12.8" / "service.json"
        bad.parent.mkdir(parents=True)
        bad.write_text("{broken")
        listed = ctx.service_datas.get_environment_all_service_datas(env.id)
        assert [sd.service_type for sd in listed] == [ServiceType.CUSTOM]

    def test_find_by_id_type_and_name(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1", name="web")
        assert ctx.service_datas.find_service_data(env.id, sd.id).id == sd.id
        assert ctx.service_datas.find_service_data(env.id, "NodeJS").id == sd.id
        assert ctx.service_datas.find_service_data(env.id, "web").id == sd.id
        with pytest.raises(NotFoundError):
            ctx.service_datas.find_service_data(env.id, "python")

    def test_find_ambiguous_needs_version(self, ctx, env):
        ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1")
        old = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v18.20.7")
        with pytest.raises(EnvisError, match="ambiguous"):
            ctx.service_datas.find_service_data(env.id, "nodejs")
        assert ctx.service_datas.find_service_data(env.id, "nodejs", "v18.20.7").id == old.id

    def test_update_name_only(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.CUSTOM, "1")
        updated = ctx.service_datas.update_service_data(env.id, sd, name="tools")
        assert updated.name == "tools"
        assert ctx.service_datas.get_service_data(env.id, sd.id).name == "tools"
        with pytest.raises(EnvisError):
            ctx.service_datas.update_service_data(env.id, sd, version="2")

    def test_delete_removes_folder(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1")
        ctx.service_datas.delete_service_data(env.id, sd)
        assert not (ctx.config.envs_folder / env.id / "nodejs").exists()
        with pytest.raises(NotFoundError):
            ctx.service_datas.delete_service_data(env.id, sd)

    def test_nginx_default_conf(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.NGINX, "1.26.2")
        conf = Path(sd.meta("NGINX_CONF"))
        assert conf.is_file()
        assert conf.read_text().startswith("# Auto-generated default nginx.conf by envis")

    def test_java_metadata(self, ctx, env, install_fake):
        install = install_fake("java", "17", "bin")
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.JAVA, "17")
        assert sd.meta("JAVA_HOME") == str(install)
        assert sd.meta("MAVEN_HOME") == ""

    def test_status_without_daemon(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.CUSTOM, "1")
        assert ctx.service_datas.service_status(env.id, sd) == ServiceStatus.UNKNOWN


class TestShellLifecycles:
    """Activation through the shell block."""

    def test_nodejs_round_trip(self, ctx, env, install_fake):
        install = install_fake("nodejs", "v20.19.1", "bin")
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v20.19.1")
        prefix = sd.meta("NPM_CONFIG_PREFIX")

        ctx.service_datas.activate_service_data(env.id, sd)
        interior = _interior(ctx)
        assert f'export NPM_CONFIG_PREFIX="{prefix}"' in interior
        assert not any(line.startswith("export NPM_CONFIG_REGISTRY=") for line in interior)
        assert ctx.shell.current_paths() == [str(install / "bin")]
        assert ctx.service_datas.get_service_data(env.id, sd.id).status == ServiceDataStatus.ACTIVE

        ctx.service_datas.deactivate_service_data(env.id, sd)
        assert _interior(ctx) == []
        assert ctx.service_datas.get_service_data(env.id, sd.id).status == ServiceDataStatus.INACTIVE

    def test_not_installed(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v22.14.0")
        with pytest.raises(NotFoundError):
            ctx.service_datas.activate_service_data(env.id, sd)
        assert _interior(ctx) == []

    def test_java_exports_and_path(self, ctx, env, install_fake):
        install = install_fake("java", "17", "bin")
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.JAVA, "17")
        ctx.service_datas.set_metadata(env.id, sd, "JAVA_OPTS", "-Xmx1g")

        ctx.service_datas.activate_service_data(env.id, sd)
        interior = _interior(ctx)
        assert f'export JAVA_HOME="{install}"' in interior
        assert 'export JAVA_OPTS="-Xmx1g"' in interior
        assert not any(line.startswith("export MAVEN_HOME=") for line in interior)
        assert ctx.shell.current_paths() == [str(install / "bin")]

        ctx.service_datas.deactivate_service_data(env.id, sd)
        assert _interior(ctx) == []

    def test_java_maven_home_on_path(self, ctx, env, install_fake):
        install = install_fake("java", "17", "bin")
        maven = install / "maven" / "3.9.9"
        (maven / "bin").mkdir(parents=True)
        (maven / "bin" / "mvn").write_text("")
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.JAVA, "17")
        assert sd.meta("MAVEN_HOME") == str(maven)

        ctx.service_datas.activate_service_data(env.id, sd)
        assert ctx.shell.current_paths() == [str(maven / "bin"), str(install / "bin")]

    def test_custom_metadata_reapplied_when_active(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.CUSTOM, "1")
        ctx.service_datas.set_metadata(env.id, sd, "envVars", {"API_URL": "http://old"})
        ctx.service_datas.set_metadata(env.id, sd, "aliases", {"gs": "git status"})
        ctx.service_datas.set_metadata(env.id, sd, "paths", ["/opt/tools/bin"])
        ctx.service_datas.activate_service_data(env.id, sd)
        assert 'export API_URL="http://old"' in _interior(ctx)

        ctx.service_datas.set_metadata(env.id, sd, "envVars", {"API_URL2": "http://new"})
        interior = _interior(ctx)
        assert 'export API_URL2="http://new"' in interior
        assert not any(line.startswith("export API_URL=") for line in interior)
        assert 'alias gs="git status"' in interior
        assert ctx.shell.current_paths() == ["/opt/tools/bin"]

    def test_inactive_metadata_change_leaves_block(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.CUSTOM, "1")
        ctx.service_datas.set_metadata(env.id, sd, "envVars", {"A": "1"})
        assert _interior(ctx) == []
        assert ctx.service_datas.get_service_data(env.id, sd.id).meta("envVars") == {"A": "1"}


class TestHostLifecycle:
    """Activation through the hosts file."""

    @pytest.fixture
    def host_sd(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.HOST, "1")
        return ctx.service_datas.update_service_data(
            env.id, sd, metadata={"hosts": [{"ip": "127.0.0.1", "hostname": "api.test"}]},
        )

    def test_needs_password(self, ctx, env, host_sd, hosts_file):
        with pytest.raises(NeedsAdminError):
            ctx.service_datas.activate_service_data(env.id, host_sd)
        assert hosts_file.read_text() == "127.0.0.1 localhost\n"

    def test_wrong_password_leaves_file(self, ctx, env, host_sd, hosts_file):
        with pytest.raises(PasswordIncorrectError):
            ctx.service_datas.activate_service_data(env.id, host_sd, "wrong")
        assert hosts_file.read_text() == "127.0.0.1 localhost\n"
        assert ctx.service_datas.get_service_data(env.id, host_sd.id).status == ServiceDataStatus.INACTIVE

    def test_round_trip(self, ctx, env, host_sd, hosts_file):
        ctx.service_datas.activate_service_data(env.id, host_sd, "secret")
        text = hosts_file.read_text()
        assert text.startswith("127.0.0.1 localhost\n")
        assert HOSTS_BEGIN in text
        assert "127.0.0.1 api.test" in text

        ctx.service_datas.deactivate_service_data(env.id, host_sd, "secret")
        assert "api.test" not in hosts_file.read_text()

    def test_empty_host_list_needs_no_password(self, ctx, env):
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.HOST, "1")
        ctx.service_datas.activate_service_data(env.id, sd)
        assert ctx.service_datas.get_service_data(env.id, sd.id).is_active
