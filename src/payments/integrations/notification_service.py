"""Downstream notifications for payment status changes."""
from typing import Any, Optional

import httpx
import structlog

from payments.config import settings
from payments.models.payment import PaymentStatus
from payments.schemas.payment import Payment
from payments.utils.currency import format_amount

logger = structlog.get_logger(__name__)

# Status changes the reservation and notification services care about
NOTIFIED_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
    }
)

NOTIFICATION_TEMPLATES = {
    PaymentStatus.COMPLETED: "payment_confirmation",
    PaymentStatus.FAILED: "payment_failed",
    PaymentStatus.CANCELLED: "payment_cancelled",
    PaymentStatus.REFUNDED: "payment_refunded",
}


class ReservationNotifier:
    """
    Tells the reservation and notification services about payment outcomes.

    Delivery is best effort: a failing downstream service is logged and
    never fails the payment operation that triggered it.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        reservation_service_url: Optional[str] = None,
        notification_service_url: Optional[str] = None,
        enabled: Optional[bool] = None,
    ):
        """
        Initialize the notifier.

        Args:
            http: Shared HTTP client
            reservation_service_url: Reservation service base URL
            notification_service_url: Notification service base URL
            enabled: Send notifications at all (defaults to settings)
        """
        self.http = http
        self.reservation_service_url = (reservation_service_url or settings.reservation_service_url).rstrip("/")
        self.notification_service_url = (notification_service_url or settings.notification_service_url).rstrip("/")
        self.enabled = settings.notifications_enabled if enabled is None else enabled

    async def payment_status_changed(self, payment: Payment, token: Optional[str] = None) -> None:
        """
        Notify downstream services of a payment's new status.

        Args:
            payment: Payment after the change
            token: Bearer token forwarded to the downstream services
        """
        if not self.enabled or payment.status not in NOTIFIED_STATUSES:
            return

        headers = {"X-Service-Name": "payment-service"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        await self._send(
            "PUT",
            f"{self.reservation_service_url}/api/reservations/{payment.reservation_id}/payment-status",
            {
                "paymentId": payment.id,
                "paymentStatus": payment.status.value,
                "amount": float(payment.amount),
                "currency": payment.currency,
                "transactionId": payment.transaction_id,
            },
            headers,
            payment,
        )
        await self._send(
            "POST",
            f"{self.notification_service_url}/api/notifications",
            {
                "type": NOTIFICATION_TEMPLATES[payment.status],
                "reservationId": payment.reservation_id,
                "paymentId": payment.id,
                "data": {
                    "amount": format_amount(payment.amount, payment.currency),
                    "status": payment.status.value,
                    "refundAmount": float(payment.refund_amount),
                },
            },
            headers,
            payment,
        )

    async def _send(
        self,
        method: str,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
        payment: Payment,
    ) -> None:
        try:
            response = await self.http.request(method, url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(
                "downstream_notification_failed",
                url=url,
                payment_id=payment.id,
                status=payment.status.value,
                error=str(e),
            )
            return

        logger.info(
            "downstream_notification_sent",
            url=url,
            payment_id=payment.id,
            status=payment.status.value,
        )
