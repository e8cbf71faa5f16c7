"""Device log endpoints: telemetry, usage totals and small-range export"""
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from devicehub.api.deps import get_auth_context, get_cache
from devicehub.cache import Cache
from devicehub.database import get_db
from devicehub.schemas.device_log import (
    DeviceLogCreate,
    DeviceLogEnvelope,
    DeviceLogListResponse,
    DeviceUsageResponse,
)
from devicehub.services import device_log_service, export_service
from devicehub.utils.jwt_utils import AuthContext

router = APIRouter(prefix="/devices/{device_id}", tags=["logs"])


@router.post("/logs", response_model=DeviceLogEnvelope, status_code=201)
def create_log(
    device_id: int,
    data: DeviceLogCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    """
    Append a telemetry entry to one of the caller's devices.

    Logs are append-only. Cached log pages and usage totals of the device
    are invalidated before the response is sent.
    """
    log = device_log_service.create_device_log(
        db, cache, device_id, ctx.user_id, data.event, data.value, data.timestamp
    )
    return {"success": True, "log": log}


@router.get("/logs", response_model=DeviceLogListResponse)
def get_device_logs(
    device_id: int,
    limit: int = Query(device_log_service.DEFAULT_LOG_LIMIT, ge=1, le=1000),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    logs = device_log_service.fetch_device_logs(db, cache, device_id, ctx.user_id, limit)
    return {"success": True, "logs": logs}


@router.get("/usage", response_model=DeviceUsageResponse)
def get_device_usage(
    device_id: int,
    range: str = Query("24h", description='Window such as "24h"; anything else means all time'),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    total = device_log_service.calculate_device_usage(db, cache, device_id, ctx.user_id, range)
    return {"success": True, "device_id": device_id, "range": range, "total_units": total}


@router.get("/logs/export")
def export_device_logs(
    device_id: int,
    startDate: str = Query(...),
    endDate: str = Query(...),
    format: str = Query("json"),
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    """
    Export a short range of logs inline.

    ``format=csv`` downloads ``device_logs_<id>_<start>_to_<end>.csv``;
    ``format=json`` returns the rows in the body. Longer ranges must use
    ``POST /exports``.
    """
    logs, filename = export_service.export_logs_sync(db, device_id, ctx.user_id, startDate, endDate, format)

    if format == "csv":
        return Response(
            content=export_service.render_csv(logs),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return {
        "success": True,
        "deviceId": device_id,
        "startDate": startDate,
        "endDate": endDate,
        "count": len(logs),
        "logs": [device_log_service.serialize_log(log) for log in logs],
    }
