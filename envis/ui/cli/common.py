"""
Helpers shared by the CLI command modules.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from typing import Any, TypeVar

import click

from envis.core.context import EnvisContext, get_context
from envis.core.errors import EnvisError, NeedsAdminError
from envis.core.models.environment import Environment
from envis.core.models.service import ServiceData

T = TypeVar("T")

json_option = click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
env_option = click.option("--env", "env_ref", default=None, help="Environment name or id (default: the active one).")
password_option = click.option(
    "--password",
    envvar="ENVIS_ADMIN_PASSWORD",
    default=None,
    help="Admin password for hosts-file changes (or ENVIS_ADMIN_PASSWORD).",
)


def context() -> EnvisContext:
    return get_context()


def echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def resolve_environment(env_ref: str | None) -> Environment:
    """``--env`` by id or name, otherwise the single active environment."""
    ctx = context()
    if env_ref:
        return ctx.environments.find_environment(env_ref)
    active = ctx.environments.active_environments()
    if not active:
        raise EnvisError("No active environment; pass --env or run `envis use <name>`")
    if len(active) > 1:
        names = ", ".join(env.name for env in active)
        raise EnvisError(f"Several environments are active ({names}); pass --env")
    return active[0]


def resolve_service(env: Environment, ref: str, version: str | None) -> ServiceData:
    return context().service_datas.find_service_data(env.id, ref, version)


def with_admin_password(action: Callable[[str | None], T], password: str | None) -> T:
    """Run ``action``; on a missing admin password, prompt once when interactive."""
    try:
        return action(password)
    except NeedsAdminError:
        if password or not sys.stdin.isatty():
            raise
        password = click.prompt("🔑 Admin password", hide_input=True)
        return action(password)


def status_color(status: str) -> str:
    return {
        "active": "green",
        "running": "green",
        "inactive": "white",
        "stopped": "yellow",
    }.get(status, "white")
