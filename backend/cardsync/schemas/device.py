from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DeviceRegisterIn(BaseModel):
    device_id: str = Field(min_length=1, max_length=128, alias="deviceId")
    name: str = Field(min_length=1, max_length=100)

    model_config = ConfigDict(populate_by_name=True)


class DeviceOut(BaseModel):
    device_id: str
    name: str
    created_at: datetime
    last_seen_at: datetime

    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)
