"""
CLI commands for the service data of an environment.

Thin wrappers over ``envis.core.services.service_data_manager``.  SERVICE
is a type tag (``nodejs``), a service name or a service-data id; VERSION
is only needed when the environment holds several versions of a type.
"""

from __future__ import annotations

import json

import click

from envis.core.errors import EnvisError
from envis.core.models.service import ServiceType
from envis.core.services.installers.python import PythonInstaller
from envis.ui.cli.common import (
    context,
    echo_json,
    env_option,
    json_option,
    password_option,
    resolve_environment,
    resolve_service,
    status_color,
    with_admin_password,
)


def _parse_value(raw: str):
    """JSON when it parses (lists, objects, numbers, booleans), else the raw string."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


@click.group("service")
def service() -> None:
    """Service data: add, list, activate, configure, remove."""


# ── CRUD ────────────────────────────────────────────────────────


@service.command("add")
@click.argument("service_type")
@click.argument("version")
@click.option("--name", default=None, help="Display name (default: the type's label).")
@env_option
@json_option
def add(service_type: str, version: str, name: str | None, env_ref: str | None, as_json: bool) -> None:
    """Add SERVICE_TYPE at VERSION to the environment."""
    try:
        parsed = ServiceType.parse(service_type)
    except ValueError:
        raise EnvisError(f"Unknown service '{service_type}'") from None
    ctx = context()
    env = resolve_environment(env_ref)
    sd = ctx.service_datas.create_service_data(env.id, parsed, version, name=name)
    if as_json:
        echo_json(sd.to_json_dict())
        return
    click.secho(f"✅ Added {sd.name} {sd.version} to '{env.name}'", fg="green")
    if parsed in ctx.installers and not ctx.installers.is_installed(parsed, version):
        click.secho(f"   ⚠️  Not installed yet: envis install {parsed.value} {version}", fg="yellow")


@service.command("list")
@env_option
@json_option
def list_services(env_ref: str | None, as_json: bool) -> None:
    """List the environment's service data."""
    env = resolve_environment(env_ref)
    records = context().service_datas.get_environment_all_service_datas(env.id)
    if as_json:
        echo_json([sd.to_json_dict() for sd in records])
        return
    click.secho(f"📋 {env.name}", fg="cyan", bold=True)
    if not records:
        click.echo("   No services yet")
    for sd in records:
        click.echo(f"   {sd.name:<12} {sd.version:<12} ", nl=False)
        click.secho(sd.status.value, fg=status_color(sd.status.value))


@service.command("show")
@click.argument("ref")
@click.argument("version", required=False)
@env_option
def show(ref: str, version: str | None, env_ref: str | None) -> None:
    """Print one service data record as JSON."""
    env = resolve_environment(env_ref)
    echo_json(resolve_service(env, ref, version).to_json_dict())


@service.command("remove")
@click.argument("ref")
@click.argument("version", required=False)
@env_option
@password_option
def remove(ref: str, version: str | None, env_ref: str | None, password: str | None) -> None:
    """Remove a service data (deactivating it first when active)."""
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ref, version)
    if sd.is_active and env.is_active:
        with_admin_password(lambda pw: ctx.service_datas.deactivate_service_data(env.id, sd, pw), password)
    ctx.service_datas.delete_service_data(env.id, sd)
    click.secho(f"🗑️  Removed {sd.name} {sd.version}", fg="green")


@service.command("rename")
@click.argument("ref")
@click.argument("new_name")
@click.option("--version", default=None, help="Version, when the type is ambiguous.")
@env_option
def rename(ref: str, new_name: str, version: str | None, env_ref: str | None) -> None:
    """Change a service data's display name."""
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ref, version)
    ctx.service_datas.update_service_data(env.id, sd, name=new_name)
    click.secho(f"✅ Renamed to '{new_name}'", fg="green")


# ── Activation ──────────────────────────────────────────────────


@service.command("activate")
@click.argument("ref")
@click.argument("version", required=False)
@env_option
@password_option
def activate(ref: str, version: str | None, env_ref: str | None, password: str | None) -> None:
    """Apply a service to the shell block (or hosts file)."""
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ref, version)
    with_admin_password(lambda pw: ctx.service_datas.activate_service_data(env.id, sd, pw), password)
    click.secho(f"✅ {sd.name} {sd.version} active", fg="green")


@service.command("deactivate")
@click.argument("ref")
@click.argument("version", required=False)
@env_option
@password_option
def deactivate(ref: str, version: str | None, env_ref: str | None, password: str | None) -> None:
    """Undo a service's shell (or hosts) changes."""
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ref, version)
    with_admin_password(lambda pw: ctx.service_datas.deactivate_service_data(env.id, sd, pw), password)
    click.secho(f"✅ {sd.name} {sd.version} inactive", fg="green")


# ── Configuration ───────────────────────────────────────────────


@service.command("set")
@click.argument("ref")
@click.argument("key")
@click.argument("value")
@click.option("--version", default=None, help="Version, when the type is ambiguous.")
@env_option
@password_option
def set_meta(
    ref: str, key: str, value: str, version: str | None, env_ref: str | None, password: str | None,
) -> None:
    """Set metadata KEY to VALUE (JSON accepted, e.g. '{"FOO": "bar"}')."""
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ref, version)
    parsed = _parse_value(value)
    with_admin_password(
        lambda pw: ctx.service_datas.set_metadata(env.id, sd, key, parsed, pw), password,
    )
    click.secho(f"✅ {sd.name}: {key} updated", fg="green")


@service.command("init")
@click.argument("ref")
@click.argument("version", required=False)
@click.option("--option", "-o", "options", multiple=True, metavar="KEY=VALUE",
              help="Initialise option, e.g. -o port=5433 -o reset=true.")
@env_option
def init(ref: str, version: str | None, options: tuple[str, ...], env_ref: str | None) -> None:
    """Run the type's initialise step (database cluster, config files, Maven home)."""
    parsed: dict = {}
    for item in options:
        if "=" not in item:
            raise EnvisError(f"Option '{item}' must look like KEY=VALUE")
        key, raw = item.split("=", 1)
        parsed[key.strip()] = _parse_value(raw)
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ref, version)
    ctx.service_datas.initialize_service_data(env.id, sd, **parsed)
    click.secho(f"✅ {sd.name} {sd.version} initialised", fg="green")


@service.command("restart")
@click.argument("ref")
@click.argument("version", required=False)
@env_option
def restart(ref: str, version: str | None, env_ref: str | None) -> None:
    """Restart (or reload) a daemon service."""
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ref, version)
    ctx.service_datas.restart_service(env.id, sd)
    click.secho(f"✅ {sd.name} {sd.version} restarted", fg="green")


# ── Python helpers ──────────────────────────────────────────────


def _python(env_ref: str | None, version: str | None):
    ctx = context()
    env = resolve_environment(env_ref)
    sd = resolve_service(env, ServiceType.PYTHON.value, version)
    installer = ctx.installers.get(ServiceType.PYTHON)
    assert isinstance(installer, PythonInstaller)
    return installer, sd, ctx.service_datas.data_dir(env.id, sd)


@service.group("venv")
def venv() -> None:
    """Virtual environments of the environment's Python."""


@venv.command("list")
@click.option("--version", default=None, help="Python version, when several are added.")
@env_option
@json_option
def venv_list(version: str | None, env_ref: str | None, as_json: bool) -> None:
    """List virtual environments."""
    installer, _, data_dir = _python(env_ref, version)
    names = installer.list_venvs(data_dir)
    if as_json:
        echo_json(names)
        return
    for name in names:
        click.echo(f"   {name}  {installer.venvs_dir(data_dir) / name}")


@venv.command("create")
@click.argument("name")
@click.option("--version", default=None, help="Python version, when several are added.")
@env_option
def venv_create(name: str, version: str | None, env_ref: str | None) -> None:
    """Create a virtual environment with `python -m venv`."""
    installer, sd, data_dir = _python(env_ref, version)
    target = installer.create_venv(sd.version, data_dir, name)
    click.secho(f"✅ Created {target}", fg="green")


@venv.command("remove")
@click.argument("name")
@click.option("--version", default=None, help="Python version, when several are added.")
@env_option
def venv_remove(name: str, version: str | None, env_ref: str | None) -> None:
    """Delete a virtual environment."""
    installer, _, data_dir = _python(env_ref, version)
    if not installer.remove_venv(data_dir, name):
        raise EnvisError(f"No venv named '{name}'")
    click.secho(f"🗑️  Removed venv {name}", fg="green")


@service.command("python-alias")
@click.argument("state", type=click.Choice(["on", "off"]))
def python_alias(state: str) -> None:
    """Alias python/pip to python3/pip3 in the shell block."""
    PythonInstaller.set_python3_as_python(context().shell, state == "on")
    click.secho(f"✅ python -> python3 alias {state}", fg="green")
