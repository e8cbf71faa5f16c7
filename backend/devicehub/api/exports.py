"""Asynchronous (large range) export endpoints"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from devicehub.api.deps import get_auth_context, get_job_engine
from devicehub.database import get_db
from devicehub.jobs.engine import JobEngine
from devicehub.middleware.rate_limit import export_rate_limit
from devicehub.schemas.export_job import ExportJobAccepted, ExportJobCreate, ExportJobResponse
from devicehub.services import export_service
from devicehub.utils.jwt_utils import AuthContext

router = APIRouter(prefix="/exports", tags=["exports"])


@router.post("", response_model=ExportJobAccepted, status_code=202, dependencies=[Depends(export_rate_limit)])
def submit_export(
    data: ExportJobCreate,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
    engine: JobEngine = Depends(get_job_engine),
):
    """
    Queue a large log export.

    Returns immediately with a ``jobId``; poll ``GET /exports/{jobId}`` until
    the status is ``completed`` (``fileUrl`` set) or ``failed``.
    """
    job_id = export_service.submit_export_job(
        db, engine, ctx.user_id, data.deviceId, data.startDate, data.endDate, data.format
    )
    return {"success": True, "jobId": job_id}


@router.get("/{job_id}", response_model=ExportJobResponse)
def get_export(
    job_id: str,
    ctx: AuthContext = Depends(get_auth_context),
    db: Session = Depends(get_db),
):
    job = export_service.get_job_status(db, job_id, user_id=ctx.user_id)
    return export_service.job_to_response(job)
