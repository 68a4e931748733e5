"""HTTP client for the database microservice.

The payment service owns no storage: every read and write goes through the
database service's REST API. Responses arrive either wrapped
(``{"data": ..., "pagination": ...}``) or bare, and are normalised here so the
rest of the code only sees typed results.
"""
import math
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from urllib.parse import quote

import httpx
import structlog

from payments.exceptions import UpstreamError, UpstreamTimeoutError
from payments.schemas.payment import Pagination, Payment, PaymentFilters, PaymentPage, Reservation

logger = structlog.get_logger(__name__)

SERVICE_NAME = "payment-service"


def _encode(value: Any) -> Any:
    """Make a change set JSON-ready: Decimal -> float, datetime -> ISO 8601."""
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if isinstance(message, str) and message:
            return message
    return f"Database service returned HTTP {response.status_code}"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class DatabaseServiceClient:
    """Typed client for the database microservice."""

    def __init__(self, http: httpx.AsyncClient, token: Optional[str] = None):
        """
        Initialize the client.

        Args:
            http: Shared client, configured with the service base URL and timeout
            token: Bearer token forwarded verbatim, None for unauthenticated calls
        """
        self.http = http
        self.token = token

    def with_token(self, token: Optional[str]) -> "DatabaseServiceClient":
        """Return a client that forwards ``token`` on every call."""
        return DatabaseServiceClient(self.http, token)

    def _headers(self) -> dict[str, str]:
        headers = {"X-Service-Name": SERVICE_NAME}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> Any:
        """
        Send one request and return the decoded body.

        Raises:
            UpstreamTimeoutError: If the service does not answer in time
            UpstreamError: If the service is unreachable or answers with an error
        """
        try:
            response = await self.http.request(
                method,
                path,
                params=params,
                json=_encode(json) if json is not None else None,
                headers=self._headers(),
            )
        except httpx.TimeoutException as e:
            logger.warning("database_service_timeout", method=method, path=path)
            raise UpstreamTimeoutError(f"Database service timed out on {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error("database_service_unreachable", method=method, path=path, error=str(e))
            raise UpstreamError(f"Database service unavailable: {e}", status_code=503) from e

        if response.status_code == 404 and allow_not_found:
            return None

        if response.is_error:
            message = _error_message(response)
            logger.warning(
                "database_service_error",
                method=method,
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise UpstreamError(message, status_code=response.status_code)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError("Database service returned an invalid JSON body") from e

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def create_payment(self, data: dict[str, Any]) -> Payment:
        body = await self._request("POST", "/api/payments", json=data)
        return Payment.model_validate(_unwrap(body))

    async def find_payment_by_id(self, payment_id: str) -> Optional[Payment]:
        """Get a payment, or None if the database service does not know it."""
        body = await self._request("GET", f"/api/payments/{_segment(payment_id)}", allow_not_found=True)
        data = _unwrap(body)
        if not data:
            return None
        return Payment.model_validate(data)

    async def find_payments(self, filters: PaymentFilters) -> PaymentPage:
        """
        List payments matching the filters.

        Args:
            filters: Status, method, date range, transaction id and paging

        Returns:
            One page of payments. When the service sends a bare list, the
            pagination envelope is rebuilt from it.
        """
        body = await self._request("GET", "/api/payments", params=filters.to_query())
        items = [Payment.model_validate(item) for item in (_unwrap(body) or [])]

        pagination_data = body.get("pagination") if isinstance(body, dict) else None
        if pagination_data:
            pagination = Pagination.model_validate(pagination_data)
        else:
            total = len(items)
            pagination = Pagination(
                page=filters.page,
                limit=filters.limit,
                total=total,
                pages=math.ceil(total / filters.limit) if total else 0,
            )

        return PaymentPage(items=items, pagination=pagination)

    async def find_payments_by_transaction_id(self, transaction_id: str) -> list[Payment]:
        page = await self.find_payments(PaymentFilters(transaction_id=transaction_id, limit=100))
        # Older database service versions ignore the filter
        return [payment for payment in page.items if payment.transaction_id == transaction_id]

    async def find_payments_by_reservation(self, reservation_id: str) -> list[Payment]:
        body = await self._request("GET", f"/api/payments/reservation/{_segment(reservation_id)}")
        return [Payment.model_validate(item) for item in (_unwrap(body) or [])]

    async def update_payment(self, payment_id: str, changes: dict[str, Any]) -> Payment:
        body = await self._request("PUT", f"/api/payments/{_segment(payment_id)}", json=changes)
        return Payment.model_validate(_unwrap(body))

    async def delete_payment(self, payment_id: str) -> None:
        await self._request("DELETE", f"/api/payments/{_segment(payment_id)}")

    async def get_payment_stats(
        self,
        date_from: Optional[str] = None,
        date_to: Optional[str] = None,
    ) -> dict[str, Any]:
        params = {key: value for key, value in {"dateFrom": date_from, "dateTo": date_to}.items() if value}
        body = await self._request("GET", "/api/payments/stats", params=params)
        return _unwrap(body) or {}

    # ------------------------------------------------------------------
    # Reservations (read-only)
    # ------------------------------------------------------------------

    async def find_reservation_by_id(self, reservation_id: str) -> Optional[Reservation]:
        body = await self._request("GET", f"/api/reservations/{_segment(reservation_id)}", allow_not_found=True)
        data = _unwrap(body)
        if not data:
            return None
        return Reservation.model_validate(data)

    async def check_health(self) -> dict[str, Any]:
        """Probe the database service. Never raises."""
        try:
            response = await self.http.get("/health", headers=self._headers())
        except httpx.HTTPError as e:
            return {"status": "DOWN", "error": str(e)}

        if response.is_error:
            return {"status": "DOWN", "status_code": response.status_code}
        try:
            body = response.json()
        except ValueError:
            body = {}
        return {**(body if isinstance(body, dict) else {}), "status": "UP"}
