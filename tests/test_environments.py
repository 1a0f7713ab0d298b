"""
Tests for environments: CRUD, switching, start-up restore and exit cleanup.
"""

import pytest

from envis.core.errors import AlreadyExistsError, EnvisError, NotFoundError
from envis.core.models.environment import EnvironmentStatus
from envis.core.models.service import ServiceDataStatus, ServiceType
from envis.core.services.exit_cleanup import run_exit_cleanup
from envis.core.shell.syntax import GREETING_TEXT


def _interior(ctx):
    return ctx.shell.read_interior(ctx.shell.targets[0])


class TestEnvironmentCrud:
    """Creation, lookup, rename and delete."""

    def test_create_and_list(self, ctx):
        a = ctx.environments.create_environment("dev", is_default=True)
        b = ctx.environments.create_environment("prod")
        assert (ctx.config.envs_folder / a.id / "environment.json").is_file()
        assert [e.name for e in ctx.environments.get_all_environments()] == ["dev", "prod"]
        assert (a.sort, b.sort) == (0, 1)
        assert a.is_default is True
        assert a.status == EnvironmentStatus.INACTIVE

    def test_duplicate_name(self, ctx):
        ctx.environments.create_environment("dev")
        with pytest.raises(AlreadyExistsError):
            ctx.environments.create_environment(" dev ")

    def test_empty_name(self, ctx):
        with pytest.raises(EnvisError):
            ctx.environments.create_environment("   ")

    def test_find_by_id_then_name(self, ctx):
        env = ctx.environments.create_environment("dev")
        assert ctx.environments.find_environment(env.id).id == env.id
        assert ctx.environments.find_environment("dev").id == env.id
        with pytest.raises(NotFoundError):
            ctx.environments.find_environment("staging")

    def test_get_missing(self, ctx):
        with pytest.raises(NotFoundError):
            ctx.environments.get_environment("nope")

    def test_rename(self, ctx):
        env = ctx.environments.create_environment("dev")
        ctx.environments.create_environment("prod")
        ctx.environments.rename_environment(env, "development")
        assert ctx.environments.get_environment(env.id).name == "development"
        with pytest.raises(AlreadyExistsError):
            ctx.environments.rename_environment(env, "prod")

    def test_delete_active_environment(self, ctx):
        env = ctx.environments.create_environment("dev")
        ctx.environments.activate_environment_and_services(env)
        ctx.environments.delete_environment(env)
        assert not (ctx.config.envs_folder / env.id).exists()
        assert _interior(ctx) == []
        assert ctx.environments.get_all_environments() == []


class TestActivation:
    """Switching environments rewrites the shell block."""

    @pytest.fixture
    def two_envs(self, ctx, install_fake):
        node = install_fake("nodejs", "v20.19.1", "bin")
        java = install_fake("java", "17", "bin")
        a = ctx.environments.create_environment("A")
        b = ctx.environments.create_environment("B")
        sd_a = ctx.service_datas.create_service_data(a.id, ServiceType.NODEJS, "v20.19.1")
        sd_b = ctx.service_datas.create_service_data(b.id, ServiceType.JAVA, "17")
        ctx.service_datas.update_service_data(a.id, sd_a, status="active")
        ctx.service_datas.update_service_data(b.id, sd_b, status="active")
        return a, b, node, java

    def test_greeting_written(self, ctx):
        env = ctx.environments.create_environment("dev")
        ctx.environments.activate_environment(env)
        assert _interior(ctx) == [f"echo {GREETING_TEXT} dev, {env.id}"]
        assert ctx.environments.get_environment(env.id).is_active

    def test_greeting_disabled(self, ctx):
        ctx.config.update(show_environment_name_on_terminal_open=False)
        env = ctx.environments.create_environment("dev")
        ctx.environments.activate_environment(env)
        assert _interior(ctx) == []

    def test_activate_restores_active_services(self, ctx, two_envs):
        a, _, node, _ = two_envs
        activated = ctx.environments.activate_environment_and_services(a)
        assert [sd.service_type for sd in activated] == [ServiceType.NODEJS]
        assert ctx.shell.current_paths() == [str(node / "bin")]
        assert ctx.config.get().last_used_environment_ids == [a.id]

    def test_switch_deactivates_other(self, ctx, two_envs):
        a, b, node, java = two_envs
        ctx.environments.activate_environment_and_services(a)
        ctx.environments.activate_environment_and_services(b)

        interior = _interior(ctx)
        assert f"echo {GREETING_TEXT} B, {b.id}" in interior
        assert not any("A, " in line for line in interior)
        assert ctx.shell.current_paths() == [str(java / "bin")]
        assert str(node / "bin") not in ctx.shell.current_paths()

        assert ctx.environments.get_environment(a.id).status == EnvironmentStatus.INACTIVE
        assert ctx.environments.get_environment(b.id).is_active
        # A's service keeps its status for the next activation
        sd_a = ctx.service_datas.find_service_data(a.id, "nodejs")
        assert sd_a.status == ServiceDataStatus.ACTIVE
        assert ctx.config.get().last_used_environment_ids == [b.id]

    def test_switch_keeps_others_when_configured(self, ctx, two_envs):
        a, b, _, _ = two_envs
        ctx.config.update(deactivate_other_environments_on_activate=False)
        ctx.environments.activate_environment_and_services(a)
        ctx.environments.activate_environment_and_services(b)
        assert {e.id for e in ctx.environments.active_environments()} == {a.id, b.id}

    def test_last_used_most_recent_first(self, ctx, two_envs):
        a, b, _, _ = two_envs
        ctx.config.update(deactivate_other_environments_on_activate=False)
        ctx.environments.activate_environment_and_services(b)
        ctx.environments.activate_environment_and_services(a)
        assert ctx.config.get().last_used_environment_ids == [a.id, b.id]
        ctx.environments.activate_environment_and_services(b)
        assert ctx.config.get().last_used_environment_ids == [b.id, a.id]

    def test_restore_keeps_recency_order(self, ctx, two_envs):
        a, b, _, _ = two_envs
        ctx.config.update(deactivate_other_environments_on_activate=False)
        ctx.config.record_used_environments([b.id, a.id])
        restored = ctx.environments.restore_last_used()
        assert [e.id for e in restored] == [a.id, b.id]
        assert ctx.config.get().last_used_environment_ids == [b.id, a.id]

    def test_deactivate_clears_block(self, ctx, two_envs):
        a, _, _, _ = two_envs
        ctx.environments.activate_environment_and_services(a)
        ctx.environments.deactivate_environment_and_services(a)
        assert _interior(ctx) == []
        assert ctx.service_datas.find_service_data(a.id, "nodejs").is_active
        assert ctx.config.get().last_used_environment_ids == []

    def test_failed_service_keeps_environment_active(self, ctx):
        env = ctx.environments.create_environment("dev")
        sd = ctx.service_datas.create_service_data(env.id, ServiceType.NODEJS, "v22.14.0")
        ctx.service_datas.update_service_data(env.id, sd, status="active")
        with pytest.raises(NotFoundError):
            ctx.environments.activate_environment_and_services(env)
        assert ctx.environments.get_environment(env.id).is_active


class TestRestoreAndExit:
    """Start-up restore and exit cleanup."""

    def test_restore_last_used(self, ctx):
        env = ctx.environments.create_environment("dev")
        ctx.config.record_used_environments([env.id, "gone"])
        restored = ctx.environments.restore_last_used()
        assert [e.id for e in restored] == [env.id]
        assert ctx.environments.get_environment(env.id).is_active

    def test_restore_disabled(self, ctx):
        env = ctx.environments.create_environment("dev")
        ctx.config.update(
            last_used_environment_ids=[env.id],
            auto_activate_last_used_environment_on_app_start=False,
        )
        assert ctx.environments.restore_last_used() == []
        assert not ctx.environments.get_environment(env.id).is_active

    def test_exit_without_stop_keeps_state(self, ctx):
        env = ctx.environments.create_environment("dev")
        ctx.environments.activate_environment(env)
        assert run_exit_cleanup(ctx.config, ctx.environments, ctx.shell) is False
        assert ctx.config.get().last_used_environment_ids == [env.id]
        assert _interior(ctx) != []
        assert ctx.environments.get_environment(env.id).is_active

    def test_exit_with_stop_tears_down(self, ctx):
        ctx.config.update(stop_all_services_on_exit=True)
        env = ctx.environments.create_environment("dev")
        ctx.environments.activate_environment_and_services(env)
        assert run_exit_cleanup(ctx.config, ctx.environments, ctx.shell) is True
        assert _interior(ctx) == []
        assert not ctx.environments.get_environment(env.id).is_active
        # remembered so the next start can restore it
        assert ctx.config.get().last_used_environment_ids == [env.id]
