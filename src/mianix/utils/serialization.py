"""Shared base for records stored as camelCase JSON in the vault."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class VaultModel(BaseModel):
    """Pydantic model that reads and writes camelCase keys.

    Python code uses snake_case attributes; ``to_vault()`` produces the
    JSON shape the plugin keeps in the vault.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_vault(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
