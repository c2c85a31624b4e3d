"""
FastAPI Launchpad Gate API Server

Serves the sale admission handlers (eligibility gate, priority queue, batch
distribution planner) plus the KYC, report export and project status
endpoints around them.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import os
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import UUID

import psutil
from fastapi import FastAPI, HTTPException, Depends, Security, Request, Query, Body
from fastapi.responses import Response
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from api.models import (
    EligibilityRequest,
    EligibilityResponse,
    JoinQueueRequest,
    QueueStatusQuery,
    LeaveQueueRequest,
    JoinQueueResponse,
    QueueStatusResponse,
    SuccessResponse,
    DistributionRequest,
    DistributionResponse,
    JobStatusUpdateRequest,
    DistributionJobResponse,
    DistributionJobListResponse,
    KYCSubmitRequest,
    KYCReviewRequest,
    KYCWebhookPayload,
    KYCSubmissionResponse,
    KYCWebhookResponse,
    ProjectStatusRefreshResponse,
    HealthResponse,
    ErrorResponse,
)
from api.middleware import (
    setup_cors,
    setup_exception_handlers,
    RequestLoggingMiddleware,
)
from config_manager import get_config, ConfigManager, ConfigurationError
from database.connection import get_db, init_db, close_db, get_db_provider
from database.errors import ValidationError, InvalidSignatureError
from database.models import JobStatus
from database.monitoring import check_health, configure_monitoring
from database.eligibility_service import EligibilityService
from database.queue_service import QueueService
from database.distribution_service import DistributionService
from database.kyc_service import KYCService
from database.report_service import ReportService
from database.project_service import ProjectService
from log_utils import setup_logging, sanitize_for_logging
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))
CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yaml")
API_KEY = os.getenv("API_KEY", "")  # Required for admin endpoints
AUTO_CREATE_TABLES = os.getenv("AUTO_CREATE_TABLES", "false").lower() == "true"

# Global state
_config: Optional[ConfigManager] = None
_startup_time: Optional[datetime] = None

# API Key security scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    500: {"model": ErrorResponse, "description": "Storage or internal error"},
}
ADMIN_ERROR_RESPONSES = {
    **ERROR_RESPONSES,
    401: {"model": ErrorResponse, "description": "Missing API key"},
    403: {"model": ErrorResponse, "description": "Invalid API key"},
}


async def verify_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header)
) -> str:
    """Verify API key for admin endpoints.

    If API_KEY environment variable is not set, authentication is disabled.

    Returns:
        Actor label recorded in the audit log
    """
    if not API_KEY:
        # API key not configured - allow all requests (development mode)
        return "dev-mode"

    source_ip = request.client.host if request.client else ""

    if not api_key:
        get_security_logger().log_unauthorized(request.url.path, False, source_ip)
        raise HTTPException(
            status_code=401, detail="Missing API key. Provide X-API-Key header."
        )

    if api_key != API_KEY:
        get_security_logger().log_unauthorized(request.url.path, True, source_ip)
        raise HTTPException(status_code=403, detail="Invalid API key")

    return "api-key"


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()[:64]
    return request.client.host if request.client else None


def _user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


# Create FastAPI application
app = FastAPI(
    title="Launchpad Gate API",
    description="Sale admission control: eligibility gate, priority queue and distribution planning",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
async def startup():
    """Load configuration, set up logging and connect to the database."""
    global _config, _startup_time

    try:
        _config = get_config(CONFIG_PATH)
        setup_logging(
            level=_config.logging.level,
            log_format=_config.logging.format,
            log_file=_config.logging.file or None,
            console=_config.logging.console,
        )
        get_security_logger(log_dir=_config.logging.security_log_dir)
        configure_monitoring()
        logger.info(f"Configuration loaded from {_config.config_path}")

        provider = await run_in_threadpool(init_db)
        if AUTO_CREATE_TABLES:
            await run_in_threadpool(provider.create_tables)

        _startup_time = datetime.now(timezone.utc)
        logger.info("Launchpad Gate API ready")

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise
    except Exception as e:
        logger.error(f"Startup error: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Launchpad Gate API...")
    close_db()


# ============================================
# ELIGIBILITY GATE
# ============================================

@app.post(
    "/api/v1/eligibility/check",
    response_model=EligibilityResponse,
    responses=ERROR_RESPONSES,
    summary="Check sale eligibility",
    description="Combine KYC approval, geo-blocking and sanctions screening into a stored verdict",
)
def check_eligibility(
    body: EligibilityRequest,
    request: Request,
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
):
    service = EligibilityService(db, config)
    verdict = service.check(body.wallet_address, ip_address=body.ip_address)
    db.commit()

    if verdict.geo_blocked:
        get_security_logger().log_geo_block(
            verdict.wallet_address, verdict.country, source_ip=_client_ip(request) or ""
        )
    return verdict.to_dict()


# ============================================
# PRIORITY QUEUE
# ============================================

@app.post(
    "/api/v1/queue",
    response_model=None,
    responses={
        **ERROR_RESPONSES,
        200: {"description": "JoinQueueResponse, QueueStatusResponse or SuccessResponse by action"},
    },
    summary="Priority queue ticketing",
    description="action=join (default), status (ticketId query parameter) or leave",
)
def queue(
    action: str = Query(default="join"),
    ticket_id: Optional[str] = Query(default=None, alias="ticketId"),
    body: Optional[Dict[str, Any]] = Body(default=None),
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
):
    service = QueueService(db, config)

    if action == "join":
        request = JoinQueueRequest.model_validate(body or {})
        result = service.join(request.wallet_address, request.project_id)
        db.commit()
        return JoinQueueResponse(**result)

    if action == "status":
        query = QueueStatusQuery.model_validate({"ticketId": ticket_id} if ticket_id else {})
        return QueueStatusResponse(**service.status(query.ticket_id))

    if action == "leave":
        request = LeaveQueueRequest.model_validate(body or {})
        result = service.leave(request.ticket_id)
        db.commit()
        return SuccessResponse(**result)

    raise ValidationError("Invalid action")


# ============================================
# DISTRIBUTION
# ============================================

@app.post(
    "/api/v1/distribution/batches",
    response_model=DistributionResponse,
    response_model_exclude_none=True,
    responses=ADMIN_ERROR_RESPONSES,
    summary="Plan batch distribution",
    description="Partition pending investments into batches and persist a distribution job",
)
def plan_distribution(
    body: DistributionRequest,
    request: Request,
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
    actor: str = Depends(verify_api_key),
):
    service = DistributionService(db, config)
    result = service.plan(
        body.project_id,
        batch_size=body.batch_size,
        actor=actor,
        ip_address=_client_ip(request),
        user_agent=_user_agent(request),
    )
    db.commit()
    return result


@app.get(
    "/api/v1/distribution/jobs",
    response_model=DistributionJobListResponse,
    response_model_exclude_none=True,
    responses=ADMIN_ERROR_RESPONSES,
    summary="List distribution jobs",
)
def list_distribution_jobs(
    project_id: Optional[UUID] = Query(default=None, alias="projectId"),
    status: Optional[JobStatus] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: str = Depends(verify_api_key),
):
    jobs = DistributionService(db).list_jobs(project_id=project_id, status=status, limit=limit)
    return {"jobs": jobs, "count": len(jobs)}


@app.get(
    "/api/v1/distribution/jobs/{job_id}",
    response_model=DistributionJobResponse,
    responses=ADMIN_ERROR_RESPONSES,
    summary="Get a distribution job with its batches",
)
def get_distribution_job(
    job_id: UUID,
    db: Session = Depends(get_db),
    actor: str = Depends(verify_api_key),
):
    return DistributionService(db).get_job(job_id)


@app.post(
    "/api/v1/distribution/jobs/{job_id}/status",
    response_model=DistributionJobResponse,
    response_model_exclude_none=True,
    responses=ADMIN_ERROR_RESPONSES,
    summary="Progress a distribution job",
    description="pending -> in_progress -> completed | failed",
)
def update_distribution_job(
    job_id: UUID,
    body: JobStatusUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    actor: str = Depends(verify_api_key),
):
    result = DistributionService(db).update_status(
        job_id,
        JobStatus(body.status),
        completed_batches=body.completed_batches,
        error_message=body.error_message,
        actor=actor,
        ip_address=_client_ip(request),
        user_agent=_user_agent(request),
    )
    db.commit()
    return result


# ============================================
# KYC
# ============================================

@app.post(
    "/api/v1/kyc/submit",
    response_model=KYCSubmissionResponse,
    response_model_exclude_none=True,
    responses=ERROR_RESPONSES,
    summary="Submit KYC",
)
def submit_kyc(
    body: KYCSubmitRequest,
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
):
    result = KYCService(db, config).submit(
        wallet_address=body.wallet_address,
        full_name=body.full_name,
        email=body.email,
        country=body.country,
        document_type=body.document_type,
        document_number=body.document_number,
    )
    db.commit()
    return result


@app.post(
    "/api/v1/kyc/webhook",
    response_model=KYCWebhookResponse,
    responses={**ERROR_RESPONSES, 401: {"model": ErrorResponse, "description": "Invalid signature"}},
    summary="KYC provider webhook",
    description="HMAC-SHA256 signed status update from a KYC provider",
)
async def kyc_webhook(
    request: Request,
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
):
    raw_body = await request.body()
    signature = request.headers.get("x-provider-signature")

    try:
        data = json.loads(raw_body or b"{}")
    except ValueError:
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON body")

    payload = KYCWebhookPayload.model_validate(data)
    logger.info(
        "KYC webhook received: provider=%s status=%s",
        sanitize_for_logging(payload.provider),
        sanitize_for_logging(payload.status),
    )

    def process() -> Dict[str, Any]:
        service = KYCService(db, config)
        try:
            service.verify_signature(payload.provider, raw_body, signature)
        except InvalidSignatureError:
            get_security_logger().log_invalid_signature(
                payload.provider, signature or "", source_ip=_client_ip(request) or ""
            )
            raise
        result = service.process_webhook(payload.model_dump(), signature=signature)
        db.commit()
        return result

    return await run_in_threadpool(process)


@app.post(
    "/api/v1/kyc/{submission_id}/review",
    response_model=KYCSubmissionResponse,
    response_model_exclude_none=True,
    responses=ADMIN_ERROR_RESPONSES,
    summary="Review a KYC submission",
    description="approve, reject or reset a submission and refresh the wallet's eligibility",
)
def review_kyc(
    submission_id: UUID,
    body: KYCReviewRequest,
    request: Request,
    db: Session = Depends(get_db),
    config: ConfigManager = Depends(get_config_instance),
    actor: str = Depends(verify_api_key),
):
    result = KYCService(db, config).review(
        submission_id,
        body.decision,
        reviewer=body.reviewer or actor,
        rejection_reason=body.rejection_reason,
        ip_address=_client_ip(request),
        user_agent=_user_agent(request),
    )
    db.commit()
    return result


# ============================================
# REPORTS AND PROJECTS
# ============================================

@app.api_route(
    "/api/v1/reports/sale",
    methods=["GET", "POST"],
    response_class=Response,
    responses={
        **ADMIN_ERROR_RESPONSES,
        200: {"content": {"text/csv": {}}, "description": "CSV sale report"},
    },
    summary="Export sale report",
)
def export_sale_report(
    project_id: Optional[UUID] = Query(default=None, alias="projectId"),
    db: Session = Depends(get_db),
    actor: str = Depends(verify_api_key),
):
    if project_id is None:
        raise ValidationError("Project ID is required")

    report = ReportService(db).export_sale_report(project_id, actor=actor)
    db.commit()
    return Response(
        content=report.content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{report.filename}"'},
    )


@app.post(
    "/api/v1/projects/statuses/refresh",
    response_model=ProjectStatusRefreshResponse,
    responses=ADMIN_ERROR_RESPONSES,
    summary="Settle ended sales",
    description="Mark ended live/upcoming projects success or failed by soft cap",
)
def refresh_project_statuses(
    db: Session = Depends(get_db),
    actor: str = Depends(verify_api_key),
):
    result = ProjectService(db).refresh_statuses(actor=actor)
    db.commit()
    return result


# ============================================
# HEALTH
# ============================================

@app.get(
    "/api/v1/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database health",
)
def health_check():
    """Return health status. Always returns HTTP 200."""
    try:
        provider = get_db_provider()
        if not provider.initialized:
            provider.init()
        db_health = check_health(provider.engine, provider.session_factory)

        process = psutil.Process()
        memory_usage_mb = round(process.memory_info().rss / (1024 * 1024), 2)

        uptime_seconds = None
        if _startup_time:
            uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())

        return HealthResponse(
            status="healthy" if db_health.healthy else "degraded",
            database=db_health.to_dict(),
            memory_usage_mb=memory_usage_mb,
            uptime_seconds=uptime_seconds,
        )
    except Exception as e:
        # Always return HTTP 200, but report error in JSON
        logger.error(f"Health check failed: {sanitize_for_logging(str(e))}")
        return HealthResponse(status="error", error_message=str(e))


@app.get("/", include_in_schema=False)
async def root():
    """Redirect root to docs."""
    return {"message": "Launchpad Gate API", "docs": "/api/docs"}
