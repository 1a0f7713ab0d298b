"""
Envis CLI entrypoint.

Usage:
    envis --help
    envis use dev
    envis install nodejs v20.19.1
"""

from __future__ import annotations

import os

import click

from envis import __version__
from envis.core.errors import EnvisError
from envis.core.models.service import ServiceType
from envis.core.observability.logging_config import (
    ENV_LOG_FILE,
    ENV_LOG_FILE_LEVEL,
    resolve_level,
    setup_logging,
)
from envis.core.services.installers.python import PythonInstaller, PythonInstallMode
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


class EnvisGroup(click.Group):
    """Root group: an EnvisError anywhere becomes ``❌ message`` and exit 1."""

    def invoke(self, ctx: click.Context):
        try:
            return super().invoke(ctx)
        except EnvisError as e:
            click.secho(f"❌ {e}", fg="red")
            ctx.exit(1)


@click.group(cls=EnvisGroup, context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "-v", "--version", prog_name="envis")
@click.option("--verbose", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, quiet: bool, debug: bool) -> None:
    """Envis: per-environment runtimes, databases and services for your shell."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get(ENV_LOG_FILE),
        log_file_level=os.environ.get(ENV_LOG_FILE_LEVEL),
    )


def _parse_type(service: str) -> ServiceType:
    try:
        return ServiceType.parse(service)
    except ValueError:
        tags = ", ".join(t.value for t in ServiceType)
        raise EnvisError(f"Unknown service '{service}' (one of: {tags})") from None


# ── Environments ────────────────────────────────────────────────


@cli.command()
@click.argument("name_or_id")
@password_option
def use(name_or_id: str, password: str | None) -> None:
    """Activate an environment (by id, then by name)."""
    ctx = context()
    env = ctx.environments.find_environment(name_or_id)
    activated = with_admin_password(
        lambda pw: ctx.environments.activate_environment_and_services(env, pw), password,
    )
    click.secho(f"✅ Environment '{env.name}' is active", fg="green")
    for sd in activated:
        click.echo(f"   • {sd.name} {sd.version}")
    click.echo("   Open a new terminal to pick up the changes.")


@cli.group("list", invoke_without_command=True)
@json_option
@click.pass_context
def list_(click_ctx: click.Context, as_json: bool) -> None:
    """List environments; `list versions <service>` lists installable versions."""
    if click_ctx.invoked_subcommand is not None:
        return
    environments = context().environments.get_all_environments()
    if as_json:
        echo_json([env.to_json_dict() for env in environments])
        return
    if not environments:
        click.echo("No environments yet. Create one with `envis env create <name>`.")
        return
    for env in environments:
        marker = "[Active] " if env.is_active else ""
        click.echo(f"{marker}{env.name} ({env.id})")


@list_.command("versions")
@click.argument("service")
@json_option
def list_versions(service: str, as_json: bool) -> None:
    """Versions of SERVICE available for download."""
    installer = context().installers.get(_parse_type(service))
    versions = installer.available_versions()
    for item in versions:
        item["installed"] = installer.is_installed(item["version"])
    if as_json:
        echo_json(versions)
        return
    click.secho(f"📦 {installer.service_type.default_name} versions:", fg="cyan", bold=True)
    for item in versions:
        tags = []
        if item.get("lts"):
            tags.append("LTS")
        if item["installed"]:
            tags.append("installed")
        suffix = f"  [{', '.join(tags)}]" if tags else ""
        date = f"  {item['date']}" if item.get("date") else ""
        click.echo(f"   {item['version']}{date}{suffix}")


# ── Installation ────────────────────────────────────────────────


@cli.command()
@click.argument("service")
@click.argument("version")
@click.option(
    "--mode",
    type=click.Choice([m.value for m in PythonInstallMode]),
    default="prebuilt",
    show_default=True,
    help="Python only: how to obtain the interpreter.",
)
@click.option("--with-maven", is_flag=True, help="Java only: also install the matching Maven.")
def install(service: str, version: str, mode: str, with_maven: bool) -> None:
    """Download and install SERVICE at VERSION."""
    from envis.core.services.installers.java import JavaInstaller

    installer = context().installers.get(_parse_type(service))
    click.secho(f"⬇️  Installing {installer.service_type.default_name} {version}...", fg="cyan")

    if isinstance(installer, PythonInstaller):
        task = installer.download_and_install(version, PythonInstallMode(mode))
    else:
        task = installer.download_and_install(version)

    if task is None:
        click.secho(f"✅ {installer.service_type.default_name} {version} is already installed", fg="green")
    else:
        click.secho(f"✅ Installed at {installer.install_path(version)}", fg="green")
        if task.failed_urls:
            click.echo(f"   Mirrors that failed: {', '.join(task.failed_urls)}")
        if task.error_message:
            click.secho(f"   ⚠️  {task.error_message}", fg="yellow")

    if with_maven and isinstance(installer, JavaInstaller):
        installer.download_and_install_maven(version)
        click.secho(f"✅ Maven ready at {installer.maven_home(version)}", fg="green")


# ── Process control ─────────────────────────────────────────────


@cli.command()
@click.argument("service")
@click.argument("version", required=False)
@env_option
def start(service: str, version: str | None, env_ref: str | None) -> None:
    """Start a daemon service of the environment."""
    env = resolve_environment(env_ref)
    sd = resolve_service(env, service, version)
    result = context().service_datas.start_service(env.id, sd)
    click.secho(f"✅ {sd.name} {sd.version} started (pid {result['pid']})", fg="green")


@cli.command()
@click.argument("service")
@click.argument("version", required=False)
@env_option
def stop(service: str, version: str | None, env_ref: str | None) -> None:
    """Stop a daemon service of the environment."""
    env = resolve_environment(env_ref)
    sd = resolve_service(env, service, version)
    if context().service_datas.stop_service(env.id, sd):
        click.secho(f"✅ {sd.name} {sd.version} stopped", fg="green")
    else:
        click.echo(f"{sd.name} {sd.version} was not running")


@cli.command()
@click.argument("service", required=False)
@click.argument("version", required=False)
@env_option
@json_option
def status(service: str | None, version: str | None, env_ref: str | None, as_json: bool) -> None:
    """Process status of one service, or of every service in the environment."""
    ctx = context()
    env = resolve_environment(env_ref)
    if service:
        records = [resolve_service(env, service, version)]
    else:
        records = ctx.service_datas.get_environment_all_service_datas(env.id)

    rows = [
        {
            "name": sd.name,
            "type": sd.service_type.value,
            "version": sd.version,
            "active": sd.is_active,
            "process": ctx.service_datas.service_status(env.id, sd).value,
        }
        for sd in records
    ]
    if as_json:
        echo_json(rows)
        return
    click.secho(f"📋 {env.name}", fg="cyan", bold=True)
    if not rows:
        click.echo("   No services in this environment")
    for row in rows:
        active = "[Active] " if row["active"] else ""
        click.echo(f"   {active}{row['name']} {row['version']}  ", nl=False)
        click.secho(row["process"], fg=status_color(row["process"]))


# ── Session hooks ───────────────────────────────────────────────


@cli.command()
@password_option
def restore(password: str | None) -> None:
    """Re-activate the environments that were active last time."""
    restored = context().environments.restore_last_used(password)
    if not restored:
        click.echo("Nothing to restore")
    for env in restored:
        click.secho(f"✅ Restored '{env.name}'", fg="green")


@cli.command()
def cleanup() -> None:
    """Run the on-exit cleanup (remember active environments, optionally tear down)."""
    from envis.core.services.exit_cleanup import run_exit_cleanup

    ctx = context()
    if run_exit_cleanup(ctx.config, ctx.environments, ctx.shell):
        click.secho("✅ Environments deactivated and shell block cleared", fg="green")
    else:
        click.echo("stop_all_services_on_exit is off; active environments were remembered")


# ── Command groups ──────────────────────────────────────────────

from envis.ui.cli.env import env  # noqa: E402
from envis.ui.cli.service import service  # noqa: E402
from envis.ui.cli.installed import installed  # noqa: E402
from envis.ui.cli.hosts import hosts  # noqa: E402
from envis.ui.cli.ssl import ssl  # noqa: E402
from envis.ui.cli.config import config  # noqa: E402

cli.add_command(env)
cli.add_command(service)
cli.add_command(installed)
cli.add_command(hosts)
cli.add_command(ssl)
cli.add_command(config)


if __name__ == "__main__":
    cli()
