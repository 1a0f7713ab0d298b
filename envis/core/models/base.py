"""
Shared model plumbing: camelCase JSON on disk, snake_case in Python.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class CamelModel(BaseModel):
    """Base for every record persisted as camelCase JSON."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Serialise with camelCase keys, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def sort_key(record: Any) -> tuple:
    """Records with a ``sort`` value first (ascending), then by ``created_at``."""
    if record.sort is not None:
        return (0, record.sort, record.created_at)
    return (1, 0, record.created_at)
