"""Device schemas"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

DeviceType = Literal["light", "thermostat", "meter", "camera", "lock"]
DeviceStatus = Literal["active", "inactive"]


class DeviceCreate(BaseModel):
    """Schema for registering a device"""

    name: str = Field(..., min_length=1, max_length=255, description="Device name")
    type: DeviceType
    status: DeviceStatus = "inactive"

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Device name is required")
        return value


class DeviceUpdate(BaseModel):
    """Partial update; omitted fields keep their value"""

    name: Optional[str] = Field(None, max_length=255)
    type: Optional[DeviceType] = None
    status: Optional[DeviceStatus] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            value = value.strip()
            if not value:
                raise ValueError("Device name cannot be empty")
        return value


class HeartbeatRequest(BaseModel):
    status: DeviceStatus


class DeviceResponse(BaseModel):
    id: int
    name: str
    type: str
    status: str
    owner_id: int
    last_active_at: Optional[datetime]

    class Config:
        from_attributes = True


class DeviceEnvelope(BaseModel):
    success: bool = True
    device: DeviceResponse


class DeviceListResponse(BaseModel):
    success: bool = True
    devices: List[DeviceResponse]


class HeartbeatResponse(BaseModel):
    success: bool = True
    message: str = "Device heartbeat recorded"
    last_active_at: datetime
