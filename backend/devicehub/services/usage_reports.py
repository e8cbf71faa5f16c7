"""Usage aggregation: per-user energy totals bucketed by day or hour"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Tuple

from sqlalchemy.orm import Session

from devicehub.models.device import Device
from devicehub.models.device_log import DeviceLog
from devicehub.services.device_log_service import USAGE_EVENT
from devicehub.utils.errors import ValidationError

GROUP_BY_OPTIONS = ("day", "hour")

BucketKey = Tuple[int, ...]


def empty_report() -> Dict:
    return {"labels": [], "datasets": [{"label": USAGE_EVENT, "data": []}]}


def fetch_user_device_ids(db: Session, owner_id: int) -> List[int]:
    return [row.id for row in db.query(Device.id).filter(Device.owner_id == owner_id).all()]


def bucket_key(timestamp: datetime, group_by: str) -> BucketKey:
    if group_by == "hour":
        return (timestamp.year, timestamp.month, timestamp.day, timestamp.hour)
    return (timestamp.year, timestamp.month, timestamp.day)


def aggregate_device_usage(
    db: Session,
    device_ids: List[int],
    start: datetime,
    end: datetime,
    group_by: str,
) -> List[Tuple[BucketKey, float]]:
    """Sum ``units_consumed`` per bucket for ``device_ids`` within ``[start, end]``.

    Returns (bucket, total) pairs in ascending bucket order. Buckets without
    any log are absent rather than zero.
    """
    if not device_ids:
        return []

    rows = db.query(DeviceLog.timestamp, DeviceLog.value).filter(
        DeviceLog.device_id.in_(device_ids),
        DeviceLog.event == USAGE_EVENT,
        DeviceLog.timestamp >= start,
        DeviceLog.timestamp <= end,
    ).all()

    totals: Dict[BucketKey, float] = defaultdict(float)
    for timestamp, value in rows:
        totals[bucket_key(timestamp, group_by)] += value
    return sorted(totals.items())


def format_usage_report(results: List[Tuple[BucketKey, float]], group_by: str) -> Dict:
    labels = []
    data = []
    for key, total in results:
        label = f"{key[0]:04d}-{key[1]:02d}-{key[2]:02d}"
        if group_by == "hour":
            label += f" {key[3]:02d}:00"
        labels.append(label)
        data.append(total)
    return {"labels": labels, "datasets": [{"label": USAGE_EVENT, "data": data}]}


def generate_usage_report_for_user(
    db: Session,
    owner_id: int,
    start: datetime,
    end: datetime,
    group_by: str = "day",
) -> Dict:
    if group_by not in GROUP_BY_OPTIONS:
        raise ValidationError("groupBy must be 'day' or 'hour'")

    device_ids = fetch_user_device_ids(db, owner_id)
    if not device_ids:
        return empty_report()

    return format_usage_report(aggregate_device_usage(db, device_ids, start, end, group_by), group_by)
