"""Export job schemas"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ExportJobCreate(BaseModel):
    """Large export request, processed asynchronously"""

    deviceId: int = Field(..., ge=1)
    startDate: str = Field(..., min_length=1)
    endDate: str = Field(..., min_length=1)
    format: Literal["json", "csv"] = "json"


class ExportJobAccepted(BaseModel):
    success: bool = True
    jobId: str


class ExportJobResponse(BaseModel):
    """Polling view of an export job"""

    jobId: str
    userId: int
    deviceId: int
    startDate: str
    endDate: str
    format: str
    status: str
    fileUrl: Optional[str] = None
    error: Optional[str] = None
    createdAt: datetime
    updatedAt: datetime
