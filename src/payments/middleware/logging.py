"""Structured logging setup and request-context middleware."""
import logging
import sys
import time
import uuid
from typing import Any, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from payments.config import settings

SERVICE_NAME = "payment-service"
REQUEST_ID_HEADER = "X-Request-ID"
CALLER_HEADER = "X-Service-Name"


def _add_service_name(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """
    Route structlog through the standard library logger.

    Args:
        level: Log level name (defaults to ``LOG_LEVEL``)
        json_logs: Emit JSON lines (defaults to True in production)
    """
    if json_logs is None:
        json_logs = settings.app_env == "production"

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            _add_service_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
    )
    # One line per request comes from the middleware below
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Binds a request id to every log entry written while serving a request.

    An incoming ``X-Request-ID`` is reused so ids can be followed across
    services; otherwise a new one is generated. The id is echoed on the
    response and kept on ``request.state`` for error envelopes.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path, method=request.method)

        logger = structlog.get_logger(__name__)
        caller = request.headers.get(CALLER_HEADER)
        logger.debug("request_started", caller=caller)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed", duration_ms=round((time.perf_counter() - started) * 1000, 1))
            raise

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            caller=caller,
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
