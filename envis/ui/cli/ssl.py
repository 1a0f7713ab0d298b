"""
CLI commands for the local certificate authority.

Thin wrappers over ``envis.core.services.ssl_ca``.
"""

from __future__ import annotations

from pathlib import Path

import click

from envis.core.models.certificate import CAConfig
from envis.core.services.ssl_ca import DEFAULT_CERT_DAYS
from envis.ui.cli.common import context, echo_json, env_option, json_option, resolve_environment


@click.group("ssl")
def ssl() -> None:
    """Local CA: initialise, issue, list and check certificates."""


# ── CA ──────────────────────────────────────────────────────────


@ssl.command("init")
@click.option("--cn", "common_name", default=CAConfig().common_name, show_default=True, help="CA common name.")
@click.option("--org", "organization", default=CAConfig().organization, show_default=True)
@click.option("--country", default=CAConfig().country, show_default=True)
@click.option("--days", default=CAConfig().validity_days, show_default=True, type=int)
@click.option("--force", is_flag=True, help="Replace an existing CA.")
def init(common_name: str, organization: str, country: str, days: int, force: bool) -> None:
    """Create the CA key and self-signed certificate."""
    config = CAConfig(common_name=common_name, organization=organization, country=country, validity_days=days)
    info = context().ssl.initialize_ca(config, force=force)
    click.secho(f"✅ CA ready: {info.subject}", fg="green")
    click.echo(f"   {info.cert_path}")
    click.echo("   Trust it in your OS to make issued certificates valid in browsers.")


@ssl.command("ca-info")
@json_option
def ca_info(as_json: bool) -> None:
    """Show the CA certificate."""
    info = context().ssl.ca_info()
    if as_json:
        echo_json(info.to_json_dict())
        return
    if not info.initialized:
        click.echo("CA is not initialized (envis ssl init)")
        return
    click.secho(f"🔐 {info.subject}", fg="cyan", bold=True)
    click.echo(f"   Valid:  {info.valid_from} → {info.valid_to}")
    click.echo(f"   Serial: {info.serial}")
    click.echo(f"   Cert:   {info.cert_path}")


@ssl.command("check")
@json_option
def check(as_json: bool) -> None:
    """Whether the CA is trusted by the operating system."""
    installed = context().ssl.check_ca_installed()
    if as_json:
        echo_json({"installed": installed})
        return
    if installed:
        click.secho("✅ CA is installed in the system trust store", fg="green")
    else:
        click.secho("⚠️  CA is not in the system trust store", fg="yellow")


@ssl.command("export-ca")
@click.argument("destination", type=click.Path(path_type=Path))
def export_ca(destination: Path) -> None:
    """Copy ca.crt to DESTINATION."""
    target = context().ssl.export_ca(destination)
    click.secho(f"✅ Exported to {target}", fg="green")


# ── Certificates ────────────────────────────────────────────────


@ssl.command("issue")
@click.argument("domain")
@click.option("--san", "sans", multiple=True, help="Extra DNS name (repeatable).")
@click.option("--days", default=DEFAULT_CERT_DAYS, show_default=True, type=int)
@click.option("--overwrite", is_flag=True, help="Replace an existing certificate.")
@env_option
@json_option
def issue(domain: str, sans: tuple[str, ...], days: int, overwrite: bool, env_ref: str | None, as_json: bool) -> None:
    """Issue a certificate for DOMAIN signed by the local CA."""
    env = resolve_environment(env_ref)
    cert = context().ssl.issue_certificate(env.id, domain, list(sans), days, overwrite=overwrite)
    if as_json:
        echo_json(cert.to_json_dict())
        return
    click.secho(f"✅ Issued {cert.domain} (valid to {cert.valid_to})", fg="green")
    click.echo(f"   cert: {cert.paths.cert}")
    click.echo(f"   key:  {cert.paths.key}")
    if cert.paths.pem:
        click.echo(f"   pem:  {cert.paths.pem}")
    if cert.paths.pfx:
        click.echo(f"   pfx:  {cert.paths.pfx}")


@ssl.command("list")
@env_option
@json_option
def list_certs(env_ref: str | None, as_json: bool) -> None:
    """Certificates issued for the environment."""
    env = resolve_environment(env_ref)
    certs = context().ssl.list_certificates(env.id)
    if as_json:
        echo_json([c.to_json_dict() for c in certs])
        return
    if not certs:
        click.echo("No certificates")
        return
    for c in certs:
        names = ", ".join(c.subject_alt_names or [])
        click.echo(f"   🔒 {c.domain:<24} until {c.valid_to}  [{names}]")


@ssl.command("delete")
@click.argument("domain")
@env_option
def delete(domain: str, env_ref: str | None) -> None:
    """Delete DOMAIN's certificate files."""
    env = resolve_environment(env_ref)
    context().ssl.delete_certificate(env.id, domain)
    click.secho(f"🗑️  Deleted certificate for {domain}", fg="green")
