"""FastAPI dependencies for authentication and service wiring."""
from typing import Optional

import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from payments.adapters.stripe_adapter import StripeAdapter
from payments.config import settings
from payments.exceptions import UnauthorizedError
from payments.integrations.notification_service import ReservationNotifier
from payments.services.database_client import DatabaseServiceClient
from payments.services.payment_service import PaymentService
from payments.services.webhook_service import WebhookService

logger = structlog.get_logger(__name__)

# Missing credentials are reported through the error envelope, not FastAPI's 403
security = HTTPBearer(auto_error=False)


async def get_access_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Verify the bearer JWT and return it unchanged.

    The raw token is forwarded to the database service, which applies its own
    authorization.

    Raises:
        UnauthorizedError: If the token is missing, expired or invalid
    """
    if not credentials:
        raise UnauthorizedError("Authentication required")

    token = credentials.credentials

    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as e:
        logger.warning("token_expired")
        raise UnauthorizedError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning("invalid_token", error=str(e))
        raise UnauthorizedError(f"Invalid authentication token: {e}") from e

    logger.debug("user_authenticated", user_id=payload.get("sub"), role=payload.get("role"))
    return token


def get_stripe_adapter(request: Request) -> StripeAdapter:
    return request.app.state.stripe_adapter


def get_notifier(request: Request) -> ReservationNotifier:
    return request.app.state.notifier


def get_payment_service(
    request: Request,
    token: str = Depends(get_access_token),
    gateway: StripeAdapter = Depends(get_stripe_adapter),
    notifier: ReservationNotifier = Depends(get_notifier),
) -> PaymentService:
    """Build a payment service acting with the caller's token."""
    db = DatabaseServiceClient(request.app.state.http_client, token)
    return PaymentService(db, gateway, notifier)


def get_webhook_service(
    request: Request,
    gateway: StripeAdapter = Depends(get_stripe_adapter),
    notifier: ReservationNotifier = Depends(get_notifier),
) -> WebhookService:
    """Build a webhook service. Gateway callbacks carry no user token."""
    db = DatabaseServiceClient(request.app.state.http_client)
    return WebhookService(PaymentService(db, gateway, notifier))
