"""Health check endpoints for liveness and readiness probes."""
from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from payments.services.database_client import DatabaseServiceClient

logger = structlog.get_logger(__name__)

router = APIRouter()

VERSION = "1.0.0"


@router.get("/health", status_code=status.HTTP_200_OK, tags=["Health"])
async def health_check() -> dict[str, str]:
    """
    Liveness probe.

    Does not check external dependencies.
    """
    return {
        "status": "healthy",
        "service": "payment-service",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready", tags=["Health"])
async def readiness_check(request: Request) -> JSONResponse:
    """
    Readiness probe.

    Returns 200 only when the database service answers. The gateway
    configuration is reported but does not affect readiness.
    """
    database = await DatabaseServiceClient(request.app.state.http_client).check_health()
    gateway = request.app.state.stripe_adapter.validate_configuration()

    ready = database.get("status") == "UP"
    if not ready:
        logger.error("database_service_health_check_failed", result=database)
    if not gateway.is_valid:
        logger.warning("stripe_configuration_invalid", warnings=gateway.warnings)

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "ready": ready,
            "checks": {
                "database_service": database.get("status"),
                "stripe": gateway.model_dump(),
            },
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
