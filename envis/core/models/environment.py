"""
Environment: a named group of service-data records activated together.
"""

from __future__ import annotations

import secrets
import time
from enum import Enum
from typing import Any

from pydantic import Field

from envis.core.models.base import CamelModel, _now_iso


class EnvironmentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


def new_environment_id() -> str:
    """8 hex chars followed by the unix timestamp."""
    return f"{secrets.token_hex(4)}{int(time.time())}"


class Environment(CamelModel):
    """One environment record, stored at ``{root}/envs/{id}/environment.json``."""

    id: str = Field(default_factory=new_environment_id)
    name: str
    is_default: bool | None = None
    status: EnvironmentStatus = EnvironmentStatus.INACTIVE
    sort: int | None = None
    metadata: dict[str, Any] | None = None
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)

    @property
    def is_active(self) -> bool:
        return self.status == EnvironmentStatus.ACTIVE

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()
