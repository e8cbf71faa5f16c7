"""Device management endpoints"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from devicehub.api.deps import get_auth_context, get_cache
from devicehub.cache import Cache
from devicehub.database import get_db
from devicehub.schemas.auth import MessageResponse
from devicehub.schemas.device import (
    DeviceCreate,
    DeviceEnvelope,
    DeviceListResponse,
    DeviceStatus,
    DeviceType,
    DeviceUpdate,
    HeartbeatRequest,
    HeartbeatResponse,
)
from devicehub.services import device_service
from devicehub.utils.errors import ValidationError
from devicehub.utils.jwt_utils import AuthContext

router = APIRouter(prefix="/devices", tags=["devices"])


@router.post("", response_model=DeviceEnvelope, status_code=201)
def register_device(
    data: DeviceCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    """Register a device owned by the caller"""
    device = device_service.create_device(db, cache, ctx.user_id, data.name, data.type, data.status)
    return {"success": True, "device": device}


@router.get("", response_model=DeviceListResponse)
def list_devices(
    type: Optional[DeviceType] = Query(None, description="Filter by device type"),
    status: Optional[DeviceStatus] = Query(None, description="Filter by status"),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    """
    List the caller's devices, newest first.

    Results are cached per filter combination for 15 minutes and dropped on
    any write to the caller's devices.
    """
    devices = device_service.get_devices(db, cache, ctx.user_id, type=type, status=status)
    return {"success": True, "devices": devices}


@router.patch("/{device_id}", response_model=DeviceEnvelope)
def update_device(
    device_id: int,
    data: DeviceUpdate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update")
    device = device_service.update_device(db, cache, device_id, ctx.user_id, changes)
    return {"success": True, "device": device}


@router.delete("/{device_id}", response_model=MessageResponse)
def delete_device(
    device_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    device_service.delete_device(db, cache, device_id, ctx.user_id)
    return {"success": True, "message": "Device deleted successfully"}


@router.post("/{device_id}/heartbeat", response_model=HeartbeatResponse)
def record_heartbeat(
    device_id: int,
    data: HeartbeatRequest,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    """Mark the device as seen now and set its reported status"""
    last_active_at = device_service.update_heartbeat(db, cache, device_id, ctx.user_id, data.status)
    return {"success": True, "message": "Device heartbeat recorded", "last_active_at": last_active_at}
