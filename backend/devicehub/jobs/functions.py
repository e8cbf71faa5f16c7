"""Background functions run by the job engine"""
from datetime import timedelta
from typing import Any, Dict

from devicehub.cache import Cache
from devicehub.config import Settings
from devicehub.jobs.engine import JobEngine, RunContext
from devicehub.middleware.monitoring import record_export_job
from devicehub.services import device_service, export_service
from devicehub.utils.dates import utcnow
from devicehub.utils.jwt_utils import purge_expired_tokens
from devicehub.utils.webhook import send_webhook

DAILY = "cron/daily"
HOURLY = "cron/hourly"


def register_functions(engine: JobEngine, cache: Cache, settings: Settings) -> None:
    """Register every background function on ``engine``."""
    database = engine.database

    def _mark_failed(ctx: RunContext, exc: Exception) -> None:
        job_id = ctx.event.data["jobId"]
        with database.session() as db:
            failed = export_service.advance_job_status(db, job_id, "failed", error=str(exc) or exc.__class__.__name__)
            if failed:
                job = export_service.get_job_status(db, job_id)
                record_export_job("failed", (utcnow() - job.created_at).total_seconds())
        send_webhook("export.failed", {**ctx.event.data, "error": str(exc)})

    @engine.function(
        "large-export-job",
        trigger=export_service.EXPORT_EVENT,
        concurrency_key=lambda event: event.data["userId"],
        concurrency_limit=1,
        idempotency_key=lambda event: event.data["jobId"],
        max_attempts=settings.EXPORT_MAX_ATTEMPTS,
        on_failure=_mark_failed,
    )
    def large_export_job(ctx: RunContext) -> Dict[str, Any]:
        data = ctx.event.data
        job_id = data["jobId"]

        def _advance(status: str, **fields) -> bool:
            with database.session() as db:
                return export_service.advance_job_status(db, job_id, status, **fields)

        def _count() -> int:
            with database.session() as db:
                return export_service.count_export_rows(db, export_service.get_job_status(db, job_id))

        def _write() -> str:
            with database.session() as db:
                job = export_service.get_job_status(db, job_id)
                return export_service.write_export_file(db, job, settings.EXPORT_DIR)

        ctx.step.run("mark-processing", _advance, "processing")
        rows = ctx.step.run("find-logs", _count)
        filename = ctx.step.run("write-file", _write)

        ctx.step.sleep("export-processing", settings.EXPORT_PROCESSING_DELAY_SECONDS)

        file_url = f"{settings.EXPORT_BASE_URL.rstrip('/')}/{filename}"
        if ctx.step.run("mark-completed", _advance, "completed", file_url=file_url):
            with database.session() as db:
                job = export_service.get_job_status(db, job_id)
                record_export_job("completed", (utcnow() - job.created_at).total_seconds())

        def _notify() -> bool:
            ctx.logger.info(
                f"Export ready: {file_url}",
                extra={"job_id": job_id, "user_id": data["userId"], "action": "export_notify"},
            )
            try:
                return send_webhook("export.completed", {**data, "fileUrl": file_url, "rows": rows})
            except Exception as exc:
                ctx.logger.warning("Export notification failed", extra={"job_id": job_id, "error": str(exc)})
                return False

        ctx.step.run("notification", _notify)
        return {"jobId": job_id, "rows": rows, "fileUrl": file_url}

    @engine.function("auto-deactivate-devices", trigger=DAILY)
    def auto_deactivate_devices(ctx: RunContext) -> Dict[str, int]:
        cutoff = utcnow() - timedelta(hours=settings.DEACTIVATION_CUTOFF_HOURS)

        def _find():
            with database.session() as db:
                return device_service.find_inactive_devices(db, cutoff)

        def _deactivate(device_id: int) -> bool:
            with database.session() as db:
                return device_service.deactivate_device(db, cache, device_id)

        device_ids = ctx.step.run("find-inactive", _find)
        for device_id in device_ids:
            ctx.step.run(f"deactivate-{device_id}", _deactivate, device_id)

        ctx.logger.info(f"Deactivated {len(device_ids)} inactive devices", extra={"action": "deactivate_sweep"})
        return {"deactivated": len(device_ids)}

    @engine.function("purge-expired-tokens", trigger=HOURLY)
    def purge_tokens(ctx: RunContext) -> Dict[str, int]:
        with database.session() as db:
            removed = purge_expired_tokens(db)
        if removed:
            ctx.logger.info(f"Purged {removed} expired blacklist entries", extra={"action": "purge_tokens"})
        return {"purged": removed}


def schedule_functions(engine: JobEngine, settings: Settings) -> None:
    engine.every(settings.DEACTIVATION_SWEEP_INTERVAL_SECONDS, DAILY)
    engine.every(settings.TOKEN_PURGE_INTERVAL_SECONDS, HOURLY)
