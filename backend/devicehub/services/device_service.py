"""Device data service: CRUD, heartbeat and the inactivity sweep"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from devicehub.cache import Cache, get_cache_json, invalidate, set_cache_json
from devicehub.config import settings
from devicehub.models.device import Device
from devicehub.utils.dates import utcnow
from devicehub.utils.errors import NotFound
from devicehub.utils.logger import logger


def device_listing_key(owner_id: int, type: Optional[str] = None, status: Optional[str] = None) -> str:
    return f"device-listing:userId={owner_id}:type={type or 'all'}:status={status or 'all'}"


def serialize_device(device: Device) -> Dict[str, Any]:
    """JSON-safe view of a device, also the shape stored in the cache"""
    return {
        "id": device.id,
        "name": device.name,
        "type": device.type,
        "status": device.status,
        "owner_id": device.owner_id,
        "last_active_at": device.last_active_at.isoformat() if device.last_active_at else None,
    }


def invalidate_device_cache(cache: Cache, owner_id: int) -> None:
    """Drop every cached listing of ``owner_id``'s devices, whatever the filters."""
    invalidate(cache, f"device-listing:userId={owner_id}:*")


def get_owned_device(db: Session, device_id: int, owner_id: int) -> Device:
    """Load a device the caller owns.

    Raises:
        NotFound: the device does not exist or belongs to someone else.
    """
    device = db.query(Device).filter(Device.id == device_id, Device.owner_id == owner_id).first()
    if not device:
        raise NotFound("Device not found")
    return device


def create_device(db: Session, cache: Cache, owner_id: int, name: str, type: str, status: str = "inactive") -> Device:
    device = Device(name=name, type=type, status=status, owner_id=owner_id)
    db.add(device)
    db.commit()
    db.refresh(device)

    invalidate_device_cache(cache, owner_id)
    logger.info(
        f"Device registered: {device.name}",
        extra={"user_id": owner_id, "device_id": device.id, "action": "create_device"},
    )
    return device


def get_devices(
    db: Session,
    cache: Cache,
    owner_id: int,
    type: Optional[str] = None,
    status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """List the owner's devices, newest first, served from cache when possible."""
    key = device_listing_key(owner_id, type, status)
    cached = get_cache_json(cache, key)
    if cached is not None:
        return cached

    query = db.query(Device).filter(Device.owner_id == owner_id)
    if type:
        query = query.filter(Device.type == type)
    if status:
        query = query.filter(Device.status == status)
    devices = [serialize_device(d) for d in query.order_by(Device.created_at.desc(), Device.id.desc()).all()]

    set_cache_json(cache, key, devices, settings.DEVICE_LIST_CACHE_TTL)
    return devices


def update_device(db: Session, cache: Cache, device_id: int, owner_id: int, changes: Dict[str, Any]) -> Device:
    device = get_owned_device(db, device_id, owner_id)
    for field, value in changes.items():
        setattr(device, field, value)
    db.commit()
    db.refresh(device)

    invalidate_device_cache(cache, owner_id)
    logger.info(
        "Device updated",
        extra={"user_id": owner_id, "device_id": device_id, "action": "update_device"},
    )
    return device


def delete_device(db: Session, cache: Cache, device_id: int, owner_id: int) -> None:
    device = get_owned_device(db, device_id, owner_id)
    db.delete(device)
    db.commit()

    invalidate_device_cache(cache, owner_id)
    invalidate(cache, f"device-logs:deviceId={device_id}:*")
    invalidate(cache, f"device-usage:deviceId={device_id}:*")
    logger.info(
        "Device deleted",
        extra={"user_id": owner_id, "device_id": device_id, "action": "delete_device"},
    )


def update_heartbeat(db: Session, cache: Cache, device_id: int, owner_id: int, status: str) -> datetime:
    """Record a heartbeat: set ``status`` and stamp ``last_active_at`` with now."""
    device = get_owned_device(db, device_id, owner_id)
    device.status = status
    device.last_active_at = utcnow()
    db.commit()
    db.refresh(device)

    invalidate_device_cache(cache, owner_id)
    return device.last_active_at


def find_inactive_devices(db: Session, cutoff: datetime) -> List[int]:
    """Ids of active devices whose last heartbeat is older than ``cutoff``"""
    rows = db.query(Device.id).filter(
        Device.status == "active",
        Device.last_active_at < cutoff,
    ).order_by(Device.id).all()
    return [row.id for row in rows]


def deactivate_device(db: Session, cache: Cache, device_id: int) -> bool:
    device = db.query(Device).filter(Device.id == device_id).first()
    if not device:
        return False
    device.status = "inactive"
    db.commit()

    invalidate_device_cache(cache, device.owner_id)
    logger.info("Device deactivated after inactivity", extra={"device_id": device_id, "action": "deactivate_device"})
    return True
