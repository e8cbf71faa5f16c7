"""Pydantic schemas for request/response validation"""
from devicehub.schemas.auth import LoginRequest, SignupRequest, UserResponse
from devicehub.schemas.device import DeviceCreate, DeviceResponse, DeviceUpdate, HeartbeatRequest
from devicehub.schemas.device_log import DeviceLogCreate, DeviceLogResponse
from devicehub.schemas.export_job import ExportJobCreate, ExportJobResponse
from devicehub.schemas.report import UsageReport

__all__ = [
    "SignupRequest",
    "LoginRequest",
    "UserResponse",
    "DeviceCreate",
    "DeviceUpdate",
    "DeviceResponse",
    "HeartbeatRequest",
    "DeviceLogCreate",
    "DeviceLogResponse",
    "ExportJobCreate",
    "ExportJobResponse",
    "UsageReport",
]
