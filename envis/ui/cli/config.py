"""
CLI commands for ``~/.envis.json``.
"""

from __future__ import annotations

import json

import click

from envis.core.errors import EnvisError
from envis.core.models.app_config import AppConfig
from envis.ui.cli.common import context, echo_json, json_option


def _field_name(key: str) -> str:
    """Accept ``snake_case`` or the camelCase alias used in the file."""
    for name, field in AppConfig.model_fields.items():
        if key in (name, field.alias):
            return name
    known = ", ".join(f.alias or n for n, f in AppConfig.model_fields.items())
    raise EnvisError(f"Unknown config key '{key}' (one of: {known})")


@click.group("config")
def config() -> None:
    """User configuration: show and change ~/.envis.json."""


@config.command("show")
@json_option
def show(as_json: bool) -> None:
    """Print the current configuration."""
    store = context().config
    data = store.get().to_json_dict()
    if as_json:
        echo_json(data)
        return
    click.secho(f"⚙️  {store.path}", fg="cyan", bold=True)
    for key, value in data.items():
        click.echo(f"   {key}: {json.dumps(value)}")


@config.command("set")
@click.argument("key")
@click.argument("value")
def set_value(key: str, value: str) -> None:
    """Set KEY to VALUE (booleans, numbers and lists as JSON)."""
    name = _field_name(key)
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        parsed = value
    try:
        context().config.update(**{name: parsed})
    except ValueError as e:
        raise EnvisError(f"Invalid value for {key}: {e}") from e
    click.secho(f"✅ {key} = {json.dumps(parsed)}", fg="green")
