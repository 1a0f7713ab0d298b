"""
CLI commands for the Envis block of the OS hosts file.
"""

from __future__ import annotations

import click

from envis.core.models.host import HostEntry
from envis.ui.cli.common import context, echo_json, json_option, password_option, with_admin_password


@click.group("hosts")
def hosts() -> None:
    """Hosts file: list, add, remove, toggle entries in the Envis block."""


@hosts.command("list")
@json_option
def list_hosts(as_json: bool) -> None:
    """Entries of the managed hosts block."""
    entries = context().hosts.list_hosts()
    if as_json:
        echo_json([e.to_json_dict() for e in entries])
        return
    if not entries:
        click.echo("No managed host entries")
        return
    for e in entries:
        mark = "✅" if e.enabled else "⏸️ "
        comment = f"  # {e.comment}" if e.comment else ""
        click.echo(f"   {mark} {e.ip:<16} {e.hostname}{comment}")


@hosts.command("add")
@click.argument("ip")
@click.argument("hostname")
@click.option("--comment", default=None, help="Trailing comment.")
@click.option("--disabled", is_flag=True, help="Add the entry commented out.")
@password_option
def add(ip: str, hostname: str, comment: str | None, disabled: bool, password: str | None) -> None:
    """Add IP HOSTNAME to the managed block."""
    entry = HostEntry(ip=ip, hostname=hostname, comment=comment, enabled=not disabled)
    with_admin_password(lambda pw: context().hosts.add_host(entry, pw), password)
    click.secho(f"✅ Added {ip} {hostname}", fg="green")


@hosts.command("remove")
@click.argument("ip")
@click.argument("hostname")
@password_option
def remove(ip: str, hostname: str, password: str | None) -> None:
    """Remove IP HOSTNAME from the managed block."""
    with_admin_password(lambda pw: context().hosts.delete_host(ip, hostname, pw), password)
    click.secho(f"🗑️  Removed {ip} {hostname}", fg="green")


@hosts.command("toggle")
@click.argument("ip")
@click.argument("hostname")
@password_option
def toggle(ip: str, hostname: str, password: str | None) -> None:
    """Enable or disable IP HOSTNAME."""
    entry = with_admin_password(lambda pw: context().hosts.toggle_host(ip, hostname, pw), password)
    state = "enabled" if entry.enabled else "disabled"
    click.secho(f"✅ {ip} {hostname} {state}", fg="green")


@hosts.command("clear")
@password_option
def clear(password: str | None) -> None:
    """Empty the managed block."""
    with_admin_password(lambda pw: context().hosts.clear_hosts(pw), password)
    click.secho("✅ Managed hosts block cleared", fg="green")
