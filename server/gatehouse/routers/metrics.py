"""Operational endpoints: liveness, readiness, service info and Prometheus scraping."""

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST

from ..core.config import settings
from ..core.database import check_db
from ..core.observability import SERVICE_NAME, SERVICE_VERSION, get_logger, get_prometheus_metrics
from ..core.security import CredentialKind
from ..workers.manager import worker_manager

logger = get_logger(__name__)

router = APIRouter()


@router.get("/health", tags=["Health"], summary="Health Check")
async def health_check():
    """Liveness: the process is up and serving requests."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "environment": settings.environment,
    }


@router.get("/ready", tags=["Health"], summary="Readiness Check")
async def readiness_check():
    """Readiness: the database answers a trivial query."""
    try:
        await check_db()
    except Exception as e:
        logger.warning("Readiness check failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "service": SERVICE_NAME, "checks": {"database": "error"}},
        )

    return {
        "status": "ready",
        "service": SERVICE_NAME,
        "checks": {"database": "ok", "workers": worker_manager.get_worker_status()},
    }


@router.get("/info", tags=["Info"], summary="Service Information")
async def service_info():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "environment": settings.environment,
        "societyTimezone": settings.society_timezone,
        "features": {
            "credentialKinds": [kind.value for kind in CredentialKind],
            "idempotency": True,
            "tracing": True,
            "problemDetails": True,
        },
    }


@router.get(
    "/metrics",
    summary="Prometheus Metrics",
    description="Gate, lifecycle and ledger counters in the Prometheus text format",
    response_class=Response,
    tags=["Observability"],
)
async def metrics():
    return Response(content=get_prometheus_metrics(), media_type=CONTENT_TYPE_LATEST)
