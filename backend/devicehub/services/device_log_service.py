"""Device log service: telemetry append, cached reads and usage totals"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from devicehub.cache import Cache, get_cache_json, invalidate, set_cache_json
from devicehub.config import settings
from devicehub.models.device_log import DeviceLog
from devicehub.services.device_service import get_owned_device
from devicehub.utils.dates import to_naive_utc, utcnow
from devicehub.utils.logger import logger

USAGE_EVENT = "units_consumed"
DEFAULT_LOG_LIMIT = 10


def serialize_log(log: DeviceLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "device_id": log.device_id,
        "event": log.event,
        "value": log.value,
        "timestamp": log.timestamp.isoformat(),
    }


def invalidate_device_log_cache(cache: Cache, device_id: int) -> None:
    invalidate(cache, f"device-logs:deviceId={device_id}:*")
    invalidate(cache, f"device-usage:deviceId={device_id}:*")


def create_device_log(
    db: Session,
    cache: Cache,
    device_id: int,
    owner_id: int,
    event: str,
    value: float,
    timestamp: Optional[datetime] = None,
) -> DeviceLog:
    """Append a log entry to a device the caller owns.

    Raises:
        NotFound: the device does not exist or belongs to someone else.
    """
    get_owned_device(db, device_id, owner_id)

    log = DeviceLog(
        device_id=device_id,
        event=event,
        value=value,
        timestamp=to_naive_utc(timestamp) if timestamp else utcnow(),
    )
    db.add(log)
    db.commit()
    db.refresh(log)

    invalidate_device_log_cache(cache, device_id)
    logger.debug(
        f"Device log appended: {event}",
        extra={"user_id": owner_id, "device_id": device_id, "action": "create_log"},
    )
    return log


def fetch_device_logs(
    db: Session,
    cache: Cache,
    device_id: int,
    owner_id: int,
    limit: int = DEFAULT_LOG_LIMIT,
) -> List[Dict[str, Any]]:
    """Latest ``limit`` entries of an owned device, newest first."""
    get_owned_device(db, device_id, owner_id)

    key = f"device-logs:deviceId={device_id}:limit={limit}"
    cached = get_cache_json(cache, key)
    if cached is not None:
        return cached

    logs = db.query(DeviceLog).filter(DeviceLog.device_id == device_id).order_by(
        DeviceLog.timestamp.desc(), DeviceLog.id.desc()
    ).limit(limit).all()
    result = [serialize_log(log) for log in logs]

    set_cache_json(cache, key, result, settings.DEVICE_LOGS_CACHE_TTL)
    return result


def usage_window_start(range_: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of a ``"<N>h"`` window ending at ``now``; None (all time) for anything else"""
    if not range_ or not range_.endswith("h"):
        return None
    try:
        hours = int(range_[:-1])
    except ValueError:
        return None
    return (now or utcnow()) - timedelta(hours=hours)


def calculate_device_usage(db: Session, cache: Cache, device_id: int, owner_id: int, range_: str = "24h") -> float:
    """Sum of ``units_consumed`` values for an owned device over ``range_``."""
    get_owned_device(db, device_id, owner_id)

    key = f"device-usage:deviceId={device_id}:range={range_}"
    cached = get_cache_json(cache, key)
    if cached is not None:
        return cached

    query = db.query(func.coalesce(func.sum(DeviceLog.value), 0.0)).filter(
        DeviceLog.device_id == device_id,
        DeviceLog.event == USAGE_EVENT,
    )
    start = usage_window_start(range_)
    if start is not None:
        query = query.filter(DeviceLog.timestamp >= start)
    total = float(query.scalar() or 0.0)

    set_cache_json(cache, key, total, settings.DEVICE_USAGE_CACHE_TTL)
    return total


def fetch_device_logs_by_range(db: Session, device_id: int, start: datetime, end: datetime) -> List[DeviceLog]:
    """All entries of ``device_id`` with ``start <= timestamp <= end``, newest first"""
    return db.query(DeviceLog).filter(
        DeviceLog.device_id == device_id,
        DeviceLog.timestamp >= start,
        DeviceLog.timestamp <= end,
    ).order_by(DeviceLog.timestamp.desc(), DeviceLog.id.desc()).all()
