"""Pytest configuration and fixtures for async testing."""
import random
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import httpx
import jwt
import pytest
import pytest_asyncio

from payments.adapters.stripe_adapter import StripeAdapter
from payments.config import settings
from payments.integrations.notification_service import ReservationNotifier
from payments.main import app
from payments.services.database_client import DatabaseServiceClient
from payments.services.payment_service import PaymentService
from payments.services.webhook_service import WebhookService
from tests.utils.fake_database import FakeDatabaseService

TEST_TOKEN_SUBJECT = "test-user-123"


class FrozenClock:
    """Clock returning a fixed UTC time that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    """Clock pinned to the current time at test start."""
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def fake_db() -> FakeDatabaseService:
    """
    In-memory database service with one open reservation ``R1``.

    Returns:
        FakeDatabaseService: Fake mounted behind the HTTP client fixture
    """
    service = FakeDatabaseService()
    service.add_reservation("R1", status="pending")
    return service


@pytest_asyncio.fixture
async def http_client(fake_db: FakeDatabaseService) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client whose every request is answered by the fake database service."""
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(fake_db.handle),
        base_url="http://database-service",
    ) as client:
        yield client


@pytest.fixture
def stripe_adapter(clock: FrozenClock) -> StripeAdapter:
    """Stripe adapter in simulation mode with a seeded random source."""
    return StripeAdapter(
        secret_key="sk_test_dummy",
        webhook_secret="whsec_test_secret",
        simulation_mode=True,
        simulation_outcome=None,
        session_ttl_hours=24,
        rng=random.Random(1234),
        clock=clock,
    )


@pytest.fixture
def notifier(http_client: httpx.AsyncClient) -> ReservationNotifier:
    return ReservationNotifier(
        http_client,
        reservation_service_url="http://reservation-service",
        notification_service_url="http://notification-service",
        enabled=True,
    )


@pytest.fixture
def payment_service(
    http_client: httpx.AsyncClient,
    stripe_adapter: StripeAdapter,
    notifier: ReservationNotifier,
    clock: FrozenClock,
) -> PaymentService:
    """Payment service wired to the fake database service and simulated gateway."""
    return PaymentService(
        DatabaseServiceClient(http_client, token="test-token"),
        stripe_adapter,
        notifier,
        fee_overrides={},
        clock=clock,
    )


@pytest.fixture
def webhook_service(payment_service: PaymentService) -> WebhookService:
    return WebhookService(payment_service)


def make_token(subject: str = TEST_TOKEN_SUBJECT, expires_in: timedelta = timedelta(hours=1)) -> str:
    """Sign a JWT the API accepts."""
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": subject, "role": "staff", "iat": now, "exp": now + expires_in},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


@pytest_asyncio.fixture
async def async_client(
    http_client: httpx.AsyncClient,
    stripe_adapter: StripeAdapter,
    notifier: ReservationNotifier,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for API testing.

    The ASGI transport does not run the lifespan, so the shared clients it
    would build are installed on ``app.state`` directly.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    app.state.http_client = http_client
    app.state.stripe_adapter = stripe_adapter
    app.state.notifier = notifier

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
