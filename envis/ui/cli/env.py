"""
CLI commands for environments.

Thin wrappers over ``envis.core.services.environment_manager``.
"""

from __future__ import annotations

import click

from envis.ui.cli.common import context, echo_json, json_option, password_option, with_admin_password


@click.group("env")
def env() -> None:
    """Environments: create, list, activate, deactivate, delete."""


@env.command("create")
@click.argument("name")
@click.option("--default", "is_default", is_flag=True, help="Mark as the default environment.")
@json_option
def create(name: str, is_default: bool, as_json: bool) -> None:
    """Create an environment called NAME."""
    created = context().environments.create_environment(name, is_default=is_default)
    if as_json:
        echo_json(created.to_json_dict())
        return
    click.secho(f"✅ Created '{created.name}' ({created.id})", fg="green")


@env.command("list")
@json_option
def list_envs(as_json: bool) -> None:
    """List environments."""
    environments = context().environments.get_all_environments()
    if as_json:
        echo_json([e.to_json_dict() for e in environments])
        return
    if not environments:
        click.echo("No environments yet")
        return
    for e in environments:
        marker = "[Active] " if e.is_active else ""
        default = " (default)" if e.is_default else ""
        click.echo(f"{marker}{e.name}{default}  {e.id}")


@env.command("activate")
@click.argument("name_or_id")
@password_option
def activate(name_or_id: str, password: str | None) -> None:
    """Activate an environment and its previously active services."""
    ctx = context()
    target = ctx.environments.find_environment(name_or_id)
    activated = with_admin_password(
        lambda pw: ctx.environments.activate_environment_and_services(target, pw), password,
    )
    click.secho(f"✅ '{target.name}' active ({len(activated)} service(s))", fg="green")


@env.command("deactivate")
@click.argument("name_or_id")
@password_option
def deactivate(name_or_id: str, password: str | None) -> None:
    """Deactivate an environment and clear the shell block."""
    ctx = context()
    target = ctx.environments.find_environment(name_or_id)
    with_admin_password(
        lambda pw: ctx.environments.deactivate_environment_and_services(target, pw), password,
    )
    click.secho(f"✅ '{target.name}' deactivated", fg="green")


@env.command("rename")
@click.argument("name_or_id")
@click.argument("new_name")
def rename(name_or_id: str, new_name: str) -> None:
    """Rename an environment."""
    ctx = context()
    target = ctx.environments.find_environment(name_or_id)
    ctx.environments.rename_environment(target, new_name)
    click.secho(f"✅ Renamed to '{new_name}'", fg="green")


@env.command("delete")
@click.argument("name_or_id")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@password_option
def delete(name_or_id: str, yes: bool, password: str | None) -> None:
    """Delete an environment and all its service data."""
    ctx = context()
    target = ctx.environments.find_environment(name_or_id)
    if not yes:
        click.confirm(f"Delete '{target.name}' and all its service data?", abort=True)
    with_admin_password(lambda pw: ctx.environments.delete_environment(target, pw), password)
    click.secho(f"🗑️  Deleted '{target.name}'", fg="green")
