"""
CLI commands for shared installations under ``{root}/services``.
"""

from __future__ import annotations

import click

from envis.core.errors import EnvisError
from envis.core.models.service import ServiceType
from envis.ui.cli.common import context, echo_json, json_option


def _type(value: str) -> ServiceType:
    try:
        return ServiceType.parse(value)
    except ValueError:
        raise EnvisError(f"Unknown service '{value}'") from None


@click.group("installed")
def installed() -> None:
    """Installed services: list, size, delete."""


@installed.command("list")
@json_option
def list_installed(as_json: bool) -> None:
    """List every installed (type, version)."""
    items = context().installed.list()
    if as_json:
        echo_json(items)
        return
    if not items:
        click.echo("Nothing installed yet")
        return
    for item in items:
        click.echo(f"   {item['type']:<12} {item['version']:<12} {item['path']}")


@installed.command("size")
@click.argument("service")
@click.argument("version")
@json_option
def size(service: str, version: str, as_json: bool) -> None:
    """Disk usage of one installation."""
    result = context().installed.size(_type(service), version)
    if as_json:
        echo_json(result)
        return
    click.echo(f"{service} {version}: {result['sizeFormatted']}")


@installed.command("delete")
@click.argument("service")
@click.argument("version")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def delete(service: str, version: str, yes: bool) -> None:
    """Remove an installation (environments referencing it stop working)."""
    if not yes:
        click.confirm(f"Delete {service} {version}?", abort=True)
    context().installed.delete(_type(service), version)
    click.secho(f"🗑️  Deleted {service} {version}", fg="green")
