"""FastAPI application entry point."""
import traceback
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from payments.adapters.stripe_adapter import StripeAdapter
from payments.api.v1 import health, payments
from payments.api.webhooks import stripe as stripe_webhooks
from payments.config import settings
from payments.exceptions import PaymentServiceError
from payments.integrations.notification_service import ReservationNotifier
from payments.middleware.logging import LoggingMiddleware, setup_logging
from payments.middleware.metrics import MetricsMiddleware
from payments.schemas.error import REMEDIATION_HINTS, ErrorCode, ErrorDetail, ErrorResponse

# Setup structured logging
setup_logging()
logger = structlog.get_logger(__name__)

SERVICE_NAME = "payment-service"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the shared HTTP client and gateway adapter; close them on shutdown."""
    logger.info("application_starting", env=settings.app_env)

    http_client = httpx.AsyncClient(
        base_url=settings.database_service_url,
        timeout=settings.database_service_timeout,
    )
    stripe_adapter = StripeAdapter()

    app.state.http_client = http_client
    app.state.stripe_adapter = stripe_adapter
    app.state.notifier = ReservationNotifier(http_client)

    gateway_status = stripe_adapter.validate_configuration()
    logger.info(
        "stripe_configuration",
        simulation_mode=gateway_status.simulation_mode,
        is_valid=gateway_status.is_valid,
        warnings=gateway_status.warnings,
    )

    try:
        yield
    finally:
        await http_client.aclose()
        logger.info("application_shutting_down")


app = FastAPI(
    title="Payment Service",
    description="Payment orchestration: checkout links, webhook reconciliation and refunds",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(MetricsMiddleware)
# Added last so it runs first and every log line carries the request id
app.add_middleware(LoggingMiddleware)

metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get(
        "x-request-id", f"req_{uuid.uuid4().hex[:12]}"
    )


def _envelope(
    request: Request,
    error: str,
    message: str,
    details: list[dict[str, Any]],
    remediation: str | None,
    stack_trace: str | None = None,
) -> dict[str, Any]:
    response = ErrorResponse(
        error=error,
        message=message,
        details=[ErrorDetail(**detail) for detail in details],
        remediation=remediation,
        request_id=_request_id(request),
        stack_trace=stack_trace if settings.app_env != "production" else None,
    )
    return response.model_dump(mode="json", exclude_none=True)


@app.exception_handler(PaymentServiceError)
async def payment_exception_handler(request: Request, exc: PaymentServiceError) -> JSONResponse:
    """
    Render domain errors with the status and code they carry.

    Client errors are logged at warning, upstream and gateway failures at error.
    """
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "payment_service_error",
        path=request.url.path,
        method=request.method,
        error=exc.error,
        code=exc.code,
        status_code=exc.status_code,
        message=exc.message,
    )

    details = exc.details or [{"code": exc.code, "message": exc.message}]
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(request, exc.error, exc.message, details, REMEDIATION_HINTS.get(exc.code)),
        headers={"Retry-After": "5"} if getattr(exc, "retryable", False) else None,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """
    Handle request validation errors with structured response.

    Returns 422 with field-level details.
    """
    details = []
    for error in exc.errors():
        field_path = ".".join(str(loc) for loc in error["loc"])
        code = ErrorCode.MISSING_REQUIRED_FIELD if error["type"] == "missing" else ErrorCode.VALIDATION_FAILED
        details.append(
            {
                "code": code,
                "message": error["msg"],
                "field": field_path,
                "value": error.get("input") if isinstance(error.get("input"), (str, int, float, bool)) else None,
            }
        )

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        error_count=len(details),
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_envelope(
            request,
            "ValidationError",
            "Request validation failed",
            details,
            REMEDIATION_HINTS.get(ErrorCode.VALIDATION_FAILED),
        ),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other uncaught exceptions.

    Logs the full stack trace; the client gets a safe message.
    """
    logger.exception(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        exception_type=type(exc).__name__,
        exception_message=str(exc),
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(
            request,
            "InternalServerError",
            "An unexpected error occurred",
            [
                {
                    "code": ErrorCode.INTERNAL_ERROR,
                    "message": str(exc) if settings.debug else "Internal server error",
                }
            ],
            "Please contact support with the request ID",
            stack_trace="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        ),
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint with service information."""
    return {
        "service": SERVICE_NAME,
        "version": VERSION,
        "status": "operational",
        "docs": "/docs",
    }


app.include_router(health.router, tags=["Health"])
app.include_router(payments.router, prefix="/v1", tags=["Payments"])
app.include_router(stripe_webhooks.router, prefix="/v1", tags=["Webhooks"])
