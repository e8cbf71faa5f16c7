"""FastAPI application entry point"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from devicehub.api import auth, devices, exports, health, logs, reports
from devicehub.cache import create_cache
from devicehub.config import settings
from devicehub.database import Database
from devicehub.jobs.engine import JobEngine
from devicehub.jobs.functions import register_functions, schedule_functions
from devicehub.services.export_service import requeue_unfinished_jobs
from devicehub.utils.errors import AppError, RateLimited
from devicehub.utils.jwt_utils import TokenService
from devicehub.utils.logger import logger, setup_logging

# Setup logging
setup_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: owns the database, cache and job engine"""
    # Startup
    logger.info("DeviceHub backend starting up", extra={"action": "startup"})

    database = Database(
        settings.DATABASE_URL,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_timeout=settings.DATABASE_POOL_TIMEOUT,
        pool_recycle=settings.DATABASE_POOL_RECYCLE,
        auto_create=settings.DATABASE_AUTO_CREATE,
    )
    database.connect()

    cache = create_cache(settings.CACHE_URL)
    cache.connect()

    jobs = JobEngine(database, workers=settings.JOB_WORKERS, retry_backoff=settings.JOB_RETRY_BACKOFF_SECONDS)
    register_functions(jobs, cache, settings)
    if settings.SCHEDULER_ENABLED:
        schedule_functions(jobs, settings)
    jobs.start()

    app.state.database = database
    app.state.cache = cache
    app.state.tokens = TokenService.from_settings(settings)
    app.state.jobs = jobs

    if settings.JOB_RESUME_ON_STARTUP:
        with database.session() as db:
            requeue_unfinished_jobs(db, jobs)

    yield

    # Shutdown
    logger.info("DeviceHub backend shutting down", extra={"action": "shutdown"})
    jobs.close()
    cache.close()
    database.close()


# Create FastAPI app
app = FastAPI(
    title="DeviceHub",
    description="IoT device management: devices, telemetry, usage reports and log exports",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# ===== Middleware Setup =====

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Monitoring middleware
if settings.METRICS_ENABLED:
    from devicehub.middleware.monitoring import MonitoringMiddleware
    app.add_middleware(MonitoringMiddleware)

    # Prometheus metrics
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/health", "/health/ready", "/health/live"],
        inprogress_name="devicehub_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, endpoint=settings.METRICS_PATH, include_in_schema=False)

# ===== Route Setup =====

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(devices.router)
app.include_router(logs.router)
app.include_router(reports.router)
app.include_router(exports.router)


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "service": "DeviceHub",
        "version": "0.1.0",
        "status": "operational",
        "docs": "/docs",
        "health": "/health",
        "metrics": settings.METRICS_PATH if settings.METRICS_ENABLED else None,
    }


# ===== Error Handlers =====

def _error(status_code: int, message: str, headers=None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message}, headers=headers)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Map typed application errors to their status and message"""
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(
            f"{exc.__class__.__name__}: {exc.message}",
            extra={"path": request.url.path, "method": request.method},
        )
    return _error(exc.status_code, exc.message, headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Request body/query validation failures are 400s with the first problem as message"""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return _error(400, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, str(exc.detail), getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler for uncaught errors"""
    logger.error(
        f"Unhandled exception: {str(exc)}",
        extra={"path": request.url.path, "method": request.method},
        exc_info=True,
    )
    return _error(500, "An unexpected error occurred. Please contact support.")
