"""Integration tests for the payment endpoints."""
from datetime import timedelta

import httpx
import pytest
from httpx import AsyncClient

from tests.conftest import make_token
from tests.utils.factories import PaymentPayloadFactory, PaymentRecordFactory
from tests.utils.fake_database import FakeDatabaseService


def _seed(fake_db: FakeDatabaseService, **overrides: object) -> str:
    return fake_db.add_payment(PaymentRecordFactory.create(overrides))["_id"]


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_missing_token_is_rejected(async_client: AsyncClient) -> None:
    """Test that payment endpoints require a bearer token."""
    response = await async_client.get("/v1/payments")

    assert response.status_code == 401
    body = response.json()
    assert body["error"] == "Unauthorized"
    assert body["details"][0]["code"] == "unauthorized"


@pytest.mark.asyncio
async def test_expired_token_is_rejected(async_client: AsyncClient) -> None:
    """Test that an expired JWT is rejected."""
    token = make_token(expires_in=timedelta(seconds=-10))

    response = await async_client.get("/v1/payments", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401
    assert response.json()["message"] == "Token has expired"


@pytest.mark.asyncio
async def test_token_is_forwarded_to_database_service(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that the caller's token is passed on to the database service."""
    await async_client.get("/v1/payments", headers=auth_headers)

    assert fake_db.requests[-1].headers["Authorization"] == auth_headers["Authorization"]


# ----------------------------------------------------------------------
# Create / get
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_payment(async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService) -> None:
    """Test creating a pending card payment."""
    payload = PaymentPayloadFactory.create(
        {"paymentDetails": {"cardNumber": "4242424242424242", "expiryDate": "12/30", "cvv": "123"}}
    )

    response = await async_client.post("/v1/payments", json=payload, headers=auth_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["reservationId"] == "R1"
    assert data["amount"] == 100.0
    assert data["paymentMethod"] == "card"
    assert data["transactionId"].startswith("TXN_")
    assert "paymentDetails" not in fake_db.payments[data["id"]]


@pytest.mark.asyncio
async def test_create_payment_validation_envelope(async_client: AsyncClient, auth_headers: dict[str, str]) -> None:
    """Test that business validation errors come back as a 400 envelope."""
    response = await async_client.post(
        "/v1/payments",
        json={"reservationId": "R1", "amount": 0, "paymentMethod": "crypto"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "ValidationError"
    assert "remediation" in body
    assert "request_id" in body
    assert [detail["message"] for detail in body["details"]] == [
        "Amount must be greater than 0",
        "Invalid payment method. Allowed: card, paypal, bank_transfer, cash, other",
    ]


@pytest.mark.asyncio
async def test_create_payment_for_unknown_reservation(async_client: AsyncClient, auth_headers: dict[str, str]) -> None:
    """Test that a payment for a missing reservation returns 404."""
    response = await async_client.post(
        "/v1/payments",
        json=PaymentPayloadFactory.create({"reservationId": "R404"}),
        headers=auth_headers,
    )

    assert response.status_code == 404
    assert response.json()["details"][0]["code"] == "reservation_not_found"


@pytest.mark.asyncio
async def test_get_payment(async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService) -> None:
    """Test fetching a payment by ID."""
    payment_id = _seed(fake_db, amount=59.7)

    response = await async_client.get(f"/v1/payments/{payment_id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["id"] == payment_id
    assert response.json()["amount"] == 59.7


@pytest.mark.asyncio
async def test_get_unknown_payment(async_client: AsyncClient, auth_headers: dict[str, str]) -> None:
    """Test that an unknown payment returns the not-found envelope."""
    response = await async_client.get("/v1/payments/does-not-exist", headers=auth_headers)

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "NotFound"
    assert body["details"][0]["code"] == "payment_not_found"


# ----------------------------------------------------------------------
# Listing
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_list_payments_filters_and_paginates(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test status filtering with pagination metadata."""
    for status in ("completed", "completed", "completed", "pending"):
        _seed(fake_db, status=status)

    response = await async_client.get(
        "/v1/payments", params={"status": "completed", "page": 2, "limit": 2}, headers=auth_headers
    )

    assert response.status_code == 200
    body = response.json()
    assert len(body["data"]) == 1
    assert all(item["status"] == "completed" for item in body["data"])
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}


@pytest.mark.asyncio
async def test_list_payments_rejects_unknown_status(async_client: AsyncClient, auth_headers: dict[str, str]) -> None:
    """Test that query validation errors return 422."""
    response = await async_client.get("/v1/payments", params={"status": "lost"}, headers=auth_headers)

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"


@pytest.mark.asyncio
async def test_list_payments_limit_is_capped(async_client: AsyncClient, auth_headers: dict[str, str]) -> None:
    """Test that page sizes above 100 are rejected."""
    response = await async_client.get("/v1/payments", params={"limit": 101}, headers=auth_headers)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_reservation_payments(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test listing the payments of one reservation."""
    first = _seed(fake_db, reservationId="R1")
    second = _seed(fake_db, reservationId="R1", status="failed")
    _seed(fake_db, reservationId="R2")

    response = await async_client.get("/v1/payments/reservation/R1", headers=auth_headers)

    assert response.status_code == 200
    assert {item["id"] for item in response.json()} == {first, second}


@pytest.mark.asyncio
async def test_payment_stats(async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService) -> None:
    """Test that statistics from the database service are passed through."""
    _seed(fake_db, status="completed")
    _seed(fake_db, status="pending")

    response = await async_client.get("/v1/payments/stats", params={"dateFrom": "2024-01-01"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"total": 2, "byStatus": {"completed": 1, "pending": 1}}


# ----------------------------------------------------------------------
# Status changes
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_manual_cash_settlement(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test settling a cash payment at the front desk."""
    payment_id = _seed(fake_db, paymentMethod="cash")

    response = await async_client.put(
        f"/v1/payments/{payment_id}/status",
        json={"status": "completed", "transactionId": "CASH-0001", "notes": "Paid at reception"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["transactionId"] == "CASH-0001"
    assert data["fees"] == 0
    assert data["netAmount"] == 100.0
    assert data["paymentDate"] is not None


@pytest.mark.asyncio
async def test_status_update_to_refunded_is_rejected(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that refunds cannot be recorded through the status endpoint."""
    payment_id = _seed(fake_db, status="completed")

    response = await async_client.put(
        f"/v1/payments/{payment_id}/status", json={"status": "refunded"}, headers=auth_headers
    )

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidTransition"


@pytest.mark.asyncio
async def test_cancel_pending_payment(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test cancelling a pending payment."""
    payment_id = _seed(fake_db)

    response = await async_client.delete(f"/v1/payments/{payment_id}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_completed_payment_is_rejected(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that completed payments cannot be cancelled."""
    payment_id = _seed(fake_db, status="completed")

    response = await async_client.delete(f"/v1/payments/{payment_id}", headers=auth_headers)

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "InvalidTransition"
    assert body["details"][0]["code"] == "invalid_state_transition"
    assert "refund" in body["message"]
    assert fake_db.payments[payment_id]["status"] == "completed"


# ----------------------------------------------------------------------
# Checkout
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_checkout_link(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test creating a checkout link for a pending card payment."""
    payment_id = _seed(fake_db)

    response = await async_client.post(
        f"/v1/payments/{payment_id}/checkout",
        json={"successUrl": "https://hotel.example/ok", "cancelUrl": "https://hotel.example/cancel"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["sessionId"].startswith("cs_sim_")
    assert data["checkoutUrl"].endswith(data["sessionId"])
    assert data["payment"]["status"] == "processing"
    assert data["payment"]["checkoutSessionId"] == data["sessionId"]


@pytest.mark.asyncio
async def test_create_checkout_link_without_body(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that redirect URLs are optional."""
    payment_id = _seed(fake_db)

    response = await async_client.post(f"/v1/payments/{payment_id}/checkout", headers=auth_headers)

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_checkout_link_for_paypal_is_rejected(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that checkout links are card-only."""
    payment_id = _seed(fake_db, paymentMethod="paypal")

    response = await async_client.post(f"/v1/payments/{payment_id}/checkout", headers=auth_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "InvalidMethod"


@pytest.mark.asyncio
async def test_checkout_session_status(async_client: AsyncClient, auth_headers: dict[str, str], clock) -> None:
    """Test looking up a simulated checkout session."""
    session_id = f"cs_sim_{int(clock().timestamp() * 1000)}_success01"

    response = await async_client.get(f"/v1/payments/checkout-sessions/{session_id}", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "complete"
    assert data["payment_intent"] == "pi_sim_" + session_id[len("cs_sim_"):]
    assert data["simulated"] is True


# ----------------------------------------------------------------------
# Refunds
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_refund_pending_payment_is_rejected(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that only completed payments can be refunded."""
    payment_id = _seed(fake_db)

    response = await async_client.post(
        f"/v1/payments/{payment_id}/refund",
        json={"amount": 10, "reason": "Guest cancelled"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "InvalidState"
    assert body["details"][0]["code"] == "invalid_state"


@pytest.mark.asyncio
async def test_refund_reason_too_short(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that a refund needs a reason of at least five characters."""
    payment_id = _seed(fake_db, status="completed")

    response = await async_client.post(
        f"/v1/payments/{payment_id}/refund", json={"amount": 10, "reason": "no"}, headers=auth_headers
    )

    assert response.status_code == 422
    assert any(detail["field"].endswith("reason") for detail in response.json()["details"])


@pytest.mark.asyncio
async def test_refund_of_fractional_cents_is_rejected(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that refund amounts must be whole cents."""
    payment_id = _seed(fake_db, status="completed")

    response = await async_client.post(
        f"/v1/payments/{payment_id}/refund", json={"amount": 0.005, "reason": "Rounding fix"}, headers=auth_headers
    )
    preview = await async_client.get(
        f"/v1/payments/{payment_id}/refund-eligibility", params={"amount": "0.005"}, headers=auth_headers
    )

    assert response.status_code == 422
    assert any(detail["field"].endswith("amount") for detail in response.json()["details"])
    assert preview.status_code == 422
    assert "refundReason" not in fake_db.payments[payment_id]


@pytest.mark.asyncio
async def test_refund_above_remaining_amount(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that refunds cannot exceed what is left of the payment."""
    payment_id = _seed(fake_db, status="completed", refundAmount=80)

    response = await async_client.post(
        f"/v1/payments/{payment_id}/refund", json={"amount": 30, "reason": "Guest cancelled"}, headers=auth_headers
    )

    assert response.status_code == 400
    body = response.json()
    assert body["details"][0]["code"] == "refund_not_eligible"
    assert body["message"] == "Maximum refundable amount: 20.00 EUR."


@pytest.mark.asyncio
async def test_refund_eligibility_preview(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test the refund eligibility preview."""
    payment_id = _seed(fake_db, status="completed")

    allowed = await async_client.get(
        f"/v1/payments/{payment_id}/refund-eligibility", params={"amount": 50}, headers=auth_headers
    )
    denied = await async_client.get(
        f"/v1/payments/{payment_id}/refund-eligibility", params={"amount": 150}, headers=auth_headers
    )

    assert allowed.status_code == 200
    assert allowed.json()["eligible"] is True
    assert allowed.json()["maxRefundable"] == 100.0
    assert denied.json()["eligible"] is False
    assert denied.json()["reason"] == "Maximum refundable amount: 100.00 EUR."


# ----------------------------------------------------------------------
# Upstream failures
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_database_unreachable(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that an unreachable database service returns 503."""
    fake_db.fail_next = httpx.ConnectError("connection refused")

    response = await async_client.get("/v1/payments/any", headers=auth_headers)

    assert response.status_code == 503
    body = response.json()
    assert body["error"] == "UpstreamError"
    assert "Retry-After" not in response.headers


@pytest.mark.asyncio
async def test_database_timeout_is_retryable(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that a database timeout returns 504 with Retry-After."""
    fake_db.fail_next = httpx.ReadTimeout("timed out")

    response = await async_client.get("/v1/payments/any", headers=auth_headers)

    assert response.status_code == 504
    assert response.headers["Retry-After"] == "5"
    assert response.json()["details"][0]["code"] == "external_service_timeout"


# ----------------------------------------------------------------------
# Service endpoints
# ----------------------------------------------------------------------


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient) -> None:
    """Test the liveness probe."""
    response = await async_client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "payment-service"


@pytest.mark.asyncio
async def test_readiness(async_client: AsyncClient) -> None:
    """Test the readiness probe with a healthy database service."""
    response = await async_client.get("/health/ready")

    assert response.status_code == 200
    data = response.json()
    assert data["ready"] is True
    assert data["checks"]["database_service"] == "UP"
    assert data["checks"]["stripe"]["simulation_mode"] is True


@pytest.mark.asyncio
async def test_readiness_without_database(async_client: AsyncClient, fake_db: FakeDatabaseService) -> None:
    """Test that readiness fails when the database service is down."""
    fake_db.fail_next = httpx.ConnectError("connection refused")

    response = await async_client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["database_service"] == "DOWN"


@pytest.mark.asyncio
async def test_root(async_client: AsyncClient) -> None:
    """Test the service descriptor."""
    response = await async_client.get("/")

    assert response.status_code == 200
    assert response.json()["service"] == "payment-service"


@pytest.mark.asyncio
async def test_metrics_use_route_templates(
    async_client: AsyncClient, auth_headers: dict[str, str], fake_db: FakeDatabaseService
) -> None:
    """Test that request metrics are labelled by route template, not raw path."""
    payment_id = _seed(fake_db)
    await async_client.get(f"/v1/payments/{payment_id}", headers=auth_headers)

    response = await async_client.get("/metrics/")

    assert response.status_code == 200
    assert 'route="/v1/payments/{payment_id}"' in response.text
    assert payment_id not in response.text


@pytest.mark.asyncio
async def test_request_id_is_echoed(async_client: AsyncClient) -> None:
    """Test that an incoming X-Request-ID is reused on the response."""
    response = await async_client.get("/health", headers={"X-Request-ID": "req_trace_42"})

    assert response.headers["X-Request-ID"] == "req_trace_42"


@pytest.mark.asyncio
async def test_request_id_in_error_envelope(async_client: AsyncClient, auth_headers: dict[str, str]) -> None:
    """Test that error envelopes carry the request ID."""
    response = await async_client.get(
        "/v1/payments/does-not-exist", headers={**auth_headers, "X-Request-ID": "req_trace_43"}
    )

    assert response.json()["request_id"] == "req_trace_43"
