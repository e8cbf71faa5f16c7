"""Device log schemas"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class DeviceLogCreate(BaseModel):
    """Schema for appending a telemetry entry"""

    event: str = Field(..., min_length=1, max_length=255, description="Event name, e.g. units_consumed")
    value: float = Field(..., description="Numeric reading")
    timestamp: Optional[datetime] = Field(None, description="Reading time; defaults to now")


class DeviceLogResponse(BaseModel):
    id: int
    device_id: int
    event: str
    value: float
    timestamp: datetime

    class Config:
        from_attributes = True


class DeviceLogEnvelope(BaseModel):
    success: bool = True
    log: DeviceLogResponse


class DeviceLogListResponse(BaseModel):
    success: bool = True
    logs: List[DeviceLogResponse]


class DeviceUsageResponse(BaseModel):
    success: bool = True
    device_id: int
    range: str
    total_units: float
