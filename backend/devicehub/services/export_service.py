"""Log export orchestration.

Small ranges are rendered inline (``export_logs_sync``). Large ranges become
an :class:`ExportJob` row plus an ``export/large`` event; the job engine runs
the export in the background while the client polls the job's status.
"""
import csv
import io
import json
import os
import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from devicehub.config import settings
from devicehub.jobs.engine import JobEngine
from devicehub.middleware.monitoring import record_export_job
from devicehub.models.device_log import DeviceLog
from devicehub.models.export_job import JOB_FORMATS, ExportJob
from devicehub.services.device_log_service import fetch_device_logs_by_range
from devicehub.services.device_service import get_owned_device
from devicehub.utils.dates import parse_date_range
from devicehub.utils.errors import NotFound, ValidationError
from devicehub.utils.logger import logger

EXPORT_EVENT = "export/large"
CSV_COLUMNS = ("id", "device_id", "event", "value", "timestamp")
UNFINISHED_STATUSES = ("accepted", "queued", "processing")


def _check_format(format: str) -> str:
    if format not in JOB_FORMATS:
        raise ValidationError("format must be 'json' or 'csv'")
    return format


def export_filename(job_id: str, format: str) -> str:
    return f"{job_id}.{format}"


def job_to_response(job: ExportJob) -> Dict[str, Any]:
    return {
        "jobId": job.job_id,
        "userId": job.user_id,
        "deviceId": job.device_id,
        "startDate": job.start_date,
        "endDate": job.end_date,
        "format": job.format,
        "status": job.status,
        "fileUrl": job.file_url,
        "error": job.error,
        "createdAt": job.created_at,
        "updatedAt": job.updated_at,
    }


def export_event_payload(job: ExportJob) -> Dict[str, Any]:
    return {
        "jobId": job.job_id,
        "userId": job.user_id,
        "deviceId": job.device_id,
        "startDate": job.start_date,
        "endDate": job.end_date,
        "format": job.format,
    }


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def render_csv(logs: List[DeviceLog]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_COLUMNS)
    for log in logs:
        writer.writerow([log.id, log.device_id, log.event, log.value, log.timestamp.isoformat()])
    return buffer.getvalue()


def render_json(logs: List[DeviceLog]) -> str:
    return json.dumps([
        {
            "id": log.id,
            "device_id": log.device_id,
            "event": log.event,
            "value": log.value,
            "timestamp": log.timestamp.isoformat(),
        }
        for log in logs
    ])


def render_logs(logs: List[DeviceLog], format: str) -> str:
    return render_csv(logs) if format == "csv" else render_json(logs)


# ---------------------------------------------------------------------------
# Async jobs
# ---------------------------------------------------------------------------

def submit_export_job(
    db: Session,
    engine: JobEngine,
    user_id: int,
    device_id: int,
    start_date: str,
    end_date: str,
    format: str = "json",
) -> str:
    """Persist an accepted export job and hand it to the job engine; returns the job id.

    Raises:
        ValidationError: bad dates or format.
        NotFound: the device does not exist or belongs to someone else.
    """
    _check_format(format)
    parse_date_range(start_date, end_date)
    get_owned_device(db, device_id, user_id)

    job = ExportJob(
        job_id=uuid.uuid4().hex,
        user_id=user_id,
        device_id=device_id,
        start_date=start_date,
        end_date=end_date,
        format=format,
        status="accepted",
    )
    db.add(job)
    db.commit()
    db.refresh(job)

    engine.send(EXPORT_EVENT, export_event_payload(job))
    record_export_job("submitted")
    logger.info(
        "Export job accepted",
        extra={"user_id": user_id, "device_id": device_id, "job_id": job.job_id, "action": "submit_export"},
    )
    return job.job_id


def get_job_status(db: Session, job_id: str, user_id: Optional[int] = None) -> ExportJob:
    """Load a job; with ``user_id`` it must also belong to that user.

    Raises:
        NotFound: unknown job, or owned by someone else.
    """
    query = db.query(ExportJob).filter(ExportJob.job_id == job_id)
    if user_id is not None:
        query = query.filter(ExportJob.user_id == user_id)
    job = query.first()
    if not job:
        raise NotFound("Job not found")
    return job


def advance_job_status(db: Session, job_id: str, status: str, **fields) -> bool:
    """Move a job forward to ``status`` and set ``fields`` with it.

    Backward or post-terminal transitions are ignored and return False, so
    a replayed step can never undo progress.
    """
    job = db.query(ExportJob).filter(ExportJob.job_id == job_id).first()
    if job is None:
        raise NotFound("Job not found")
    if not job.can_transition_to(status):
        logger.debug(f"Ignoring transition {job.status} -> {status}", extra={"job_id": job_id})
        return False

    job.status = status
    for name, value in fields.items():
        setattr(job, name, value)
    db.commit()
    logger.info(f"Export job {status}", extra={"job_id": job_id, "action": "export_status"})
    return True


def count_export_rows(db: Session, job: ExportJob) -> int:
    start, end = parse_date_range(job.start_date, job.end_date)
    return db.query(DeviceLog).filter(
        DeviceLog.device_id == job.device_id,
        DeviceLog.timestamp >= start,
        DeviceLog.timestamp <= end,
    ).count()


def write_export_file(db: Session, job: ExportJob, export_dir: str) -> str:
    """Render the job's logs into ``export_dir/<jobId>.<format>``; returns the file name.

    The name depends only on the job, so a rerun overwrites the same file.
    """
    start, end = parse_date_range(job.start_date, job.end_date)
    logs = fetch_device_logs_by_range(db, job.device_id, start, end)
    filename = export_filename(job.job_id, job.format)

    os.makedirs(export_dir, exist_ok=True)
    path = os.path.join(export_dir, filename)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8", newline="") as fh:
        fh.write(render_logs(logs, job.format))
    os.replace(tmp_path, path)

    logger.info(f"Export file written with {len(logs)} rows", extra={"job_id": job.job_id})
    return filename


def requeue_unfinished_jobs(db: Session, engine: JobEngine) -> int:
    """Re-send every job that never reached a terminal state; returns how many."""
    jobs = db.query(ExportJob).filter(ExportJob.status.in_(UNFINISHED_STATUSES)).order_by(ExportJob.id).all()
    for job in jobs:
        engine.send(EXPORT_EVENT, export_event_payload(job))
    if jobs:
        logger.info(f"Requeued {len(jobs)} unfinished export jobs", extra={"action": "resume_exports"})
    return len(jobs)


# ---------------------------------------------------------------------------
# Synchronous export
# ---------------------------------------------------------------------------

def export_logs_sync(
    db: Session,
    device_id: int,
    owner_id: int,
    start_date: str,
    end_date: str,
    format: str = "json",
    max_days: Optional[int] = None,
) -> Tuple[List[DeviceLog], str]:
    """Fetch an owned device's logs for a short range, newest first.

    Returns the logs and the download file name.

    Raises:
        ValidationError: bad dates or format, or the range is longer than
            ``max_days`` (such exports go through ``POST /exports``).
        NotFound: the device does not exist or belongs to someone else.
    """
    _check_format(format)
    start, end = parse_date_range(start_date, end_date)
    max_days = settings.SYNC_EXPORT_MAX_DAYS if max_days is None else max_days
    if end - start > timedelta(days=max_days):
        raise ValidationError(
            f"Date range exceeds {max_days} days; use POST /exports for large exports"
        )

    get_owned_device(db, device_id, owner_id)
    logs = fetch_device_logs_by_range(db, device_id, start, end)
    filename = f"device_logs_{device_id}_{start_date}_to_{end_date}.{format}"
    return logs, filename
