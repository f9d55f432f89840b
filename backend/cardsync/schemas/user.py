from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from cardsync.schemas.device import DeviceOut


class UserExportOut(BaseModel):
    sync_data: dict[str, Any] | None = None
    version: int = 0
    devices: list[DeviceOut] = []
    exported_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeleteDataOut(BaseModel):
    success: bool = True
    message: str = "All user data deleted"
