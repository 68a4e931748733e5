"""Stripe webhook endpoint."""
import asyncio
from functools import partial

import structlog
from fastapi import APIRouter, Depends, Request

from payments import metrics
from payments.adapters.stripe_adapter import StripeAdapter
from payments.api.deps import get_stripe_adapter, get_webhook_service
from payments.exceptions import InvalidSignatureError
from payments.services.webhook_service import WebhookService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/stripe", tags=["webhooks"])

# Handlers still running after their request was cancelled
_detached_tasks: set[asyncio.Task] = set()


def _log_detached_failure(event_type: str, task: asyncio.Task) -> None:
    """Log the failure of a handler whose request went away before it finished."""
    _detached_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("stripe_webhook_handler_failed", event_type=event_type, error=str(exc), exc_info=exc)


@router.post("")
async def handle_stripe_webhook(
    request: Request,
    stripe_adapter: StripeAdapter = Depends(get_stripe_adapter),
    service: WebhookService = Depends(get_webhook_service),
) -> dict:
    """
    Handle incoming Stripe webhook events.

    The signature is checked against the raw body before anything else.
    Events that match no payment are acknowledged so Stripe stops resending
    them; database failures return 5xx so Stripe retries.

    Raises:
        InvalidSignatureError: If the signature or payload is invalid (400)
    """
    body = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = await stripe_adapter.verify_and_parse_webhook(body, signature)
    except InvalidSignatureError as e:
        logger.error("stripe_webhook_verification_failed", error=e.message)
        metrics.webhook_events_total.labels(event_type="unknown", outcome="rejected").inc()
        raise

    # A client disconnect must not cancel a half-applied update
    task = asyncio.create_task(service.handle_event(event))
    try:
        outcome = await asyncio.shield(task)
    except asyncio.CancelledError:
        _detached_tasks.add(task)
        task.add_done_callback(partial(_log_detached_failure, event.type))
        raise

    return {"received": True, "event_type": event.type, "outcome": outcome}
