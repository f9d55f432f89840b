from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    # Sync payloads follow the browser client's camelCase contract.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SyncWriteIn(_CamelModel):
    encrypted_data: dict[str, Any]
    version: int = Field(ge=1)


class SyncReadOut(_CamelModel):
    encrypted_data: dict[str, Any] | None = None
    version: int = 0
    updated_at: datetime | None = None


class SyncWriteOut(_CamelModel):
    success: bool = True
    version: int
