"""
AppConfig: the user-level preferences persisted at ``~/.envis.json``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator

from envis.core.config.paths import home_dir
from envis.core.models.base import CamelModel


def _default_root() -> str:
    return str(home_dir() / ".envis")


class AppConfig(CamelModel):
    """User preferences plus the root folder for all managed data."""

    envis_folder: str = Field(default_factory=_default_root)
    auto_start_app_on_login: bool = False
    auto_activate_last_used_environment_on_app_start: bool = True
    last_used_environment_ids: list[str] = Field(default_factory=list)
    stop_all_services_on_exit: bool = False
    terminal_tool: str | None = None
    deactivate_other_environments_on_activate: bool = True
    show_environment_name_on_terminal_open: bool = True
    show_service_info_on_terminal_open: bool = False

    @field_validator("last_used_environment_ids")
    @classmethod
    def _dedupe_ids(cls, ids: list[str]) -> list[str]:
        seen: set[str] = set()
        unique: list[str] = []
        for env_id in ids:
            if env_id not in seen:
                seen.add(env_id)
                unique.append(env_id)
        return unique

    @property
    def root(self) -> Path:
        return Path(self.envis_folder).expanduser()

    @property
    def services_folder(self) -> Path:
        return self.root / "services"

    @property
    def envs_folder(self) -> Path:
        return self.root / "envs"
