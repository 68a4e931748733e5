"""Payment service: creation, checkout, status changes, refunds and cancellation."""
import secrets
import string
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

import structlog
from pydantic import ValidationError

from payments import metrics
from payments.adapters.stripe_adapter import StripeAdapter
from payments.config import FeeRate, settings
from payments.exceptions import (
    InvalidMethodError,
    InvalidStateError,
    InvalidTransitionError,
    NotFoundError,
    PaymentValidationError,
    RefundNotEligibleError,
    UpstreamError,
)
from payments.integrations.notification_service import ReservationNotifier
from payments.models.payment import CHECKOUT_STATUSES, PaymentMethod, PaymentStatus, can_transition
from payments.schemas.gateway import CheckoutSessionRequest, SessionStatus
from payments.schemas.payment import (
    CheckoutLinkResponse,
    Payment,
    PaymentCreate,
    PaymentFilters,
    PaymentPage,
    RefundEligibility,
)
from payments.services.database_client import DatabaseServiceClient
from payments.utils.currency import round_money
from payments.utils.fees import build_fee_schedule, calculate_fees
from payments.utils.refunds import check_refund_eligibility as evaluate_refund
from payments.utils.validation import strip_sensitive_fields, validate_payment_data

logger = structlog.get_logger(__name__)

PLACEHOLDER_TRANSACTION_PREFIX = "TXN_"
REFUND_HINT = "Use the refund operation instead."

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(number: int) -> str:
    digits = []
    while True:
        number, remainder = divmod(number, 36)
        digits.append(_BASE36[remainder])
        if number == 0:
            return "".join(reversed(digits))


def generate_placeholder_transaction_id() -> str:
    """
    Generate the transaction id a payment carries until the gateway reports one.

    Example:
        >>> generate_placeholder_transaction_id()  # doctest: +SKIP
        'TXN_LZX3K2Q1_4F7GH2K9A'
    """
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{PLACEHOLDER_TRANSACTION_PREFIX}{_to_base36(int(time.time() * 1000))}_{suffix}".upper()


def append_note(existing: Optional[str], note: str) -> Optional[str]:
    """Append ``note`` to the payment notes; None if it is already recorded."""
    if existing and note in existing:
        return None
    return f"{existing}\n{note}" if existing else note


def _format_validation_errors(error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


class PaymentService:
    """Service orchestrating the payment lifecycle."""

    def __init__(
        self,
        db: DatabaseServiceClient,
        gateway: StripeAdapter,
        notifier: Optional[ReservationNotifier] = None,
        fee_overrides: Optional[Mapping[str, FeeRate]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize payment service.

        Args:
            db: Database service client (already carrying the caller's token)
            gateway: Payment gateway adapter
            notifier: Downstream notifier for status changes
            fee_overrides: Per-method fee rates (defaults to settings)
            clock: Returns the current UTC time
        """
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.fee_schedule = build_fee_schedule(settings.fee_overrides if fee_overrides is None else fee_overrides)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_payment(self, payment_id: str) -> Payment:
        """
        Get payment by ID.

        Raises:
            NotFoundError: If the payment does not exist
        """
        payment = await self.db.find_payment_by_id(payment_id)
        if payment is None:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(self, filters: PaymentFilters) -> PaymentPage:
        return await self.db.find_payments(filters)

    async def list_by_reservation(self, reservation_id: str) -> list[Payment]:
        return await self.db.find_payments_by_reservation(reservation_id)

    async def get_stats(self, date_from: Optional[str] = None, date_to: Optional[str] = None) -> dict[str, Any]:
        return await self.db.get_payment_stats(date_from, date_to)

    async def get_checkout_session_status(self, session_id: str) -> SessionStatus:
        return await self.gateway.retrieve_session(session_id)

    async def check_refund_eligibility(self, payment_id: str, amount: Decimal) -> RefundEligibility:
        """Preview whether a refund of ``amount`` would be accepted."""
        payment = await self.get_payment(payment_id)
        return evaluate_refund(payment, amount, now=self._clock(), window_days=settings.refund_window_days)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create_payment(self, payload: dict[str, Any]) -> Payment:
        """
        Create a pending payment for a reservation.

        Args:
            payload: Raw request body (camelCase keys)

        Returns:
            Created payment

        Raises:
            PaymentValidationError: If the payload is invalid
            NotFoundError: If the reservation does not exist
            InvalidStateError: If the reservation is cancelled or already paid
        """
        errors = validate_payment_data(payload, require_card_details=settings.legacy_card_details_enabled)
        if errors:
            raise PaymentValidationError.from_messages(errors)

        try:
            data = PaymentCreate.model_validate(strip_sensitive_fields(payload))
        except ValidationError as e:
            raise PaymentValidationError.from_messages(_format_validation_errors(e)) from e

        reservation = await self.db.find_reservation_by_id(data.reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", data.reservation_id)
        if reservation.status == "cancelled":
            raise InvalidStateError(f"Reservation {data.reservation_id} is cancelled")
        if reservation.status == "confirmed":
            raise InvalidStateError(f"Reservation {data.reservation_id} is already paid")

        record = data.model_dump(mode="json", by_alias=True, exclude_none=True)
        record["status"] = PaymentStatus.PENDING.value
        record["transactionId"] = generate_placeholder_transaction_id()

        payment = await self.db.create_payment(record)

        metrics.payments_created_total.labels(
            payment_method=payment.payment_method.value,
            currency=payment.currency,
        ).inc()
        logger.info(
            "payment_created",
            payment_id=payment.id,
            reservation_id=payment.reservation_id,
            amount=str(payment.amount),
            currency=payment.currency,
            payment_method=payment.payment_method.value,
        )

        return payment

    async def update_status(
        self,
        payment_id: str,
        status: PaymentStatus | str,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Payment:
        """
        Move a payment to a new status (manual settlement and corrections).

        Setting the current status again is a no-op. Completed payments only
        leave their status through a refund.

        Raises:
            NotFoundError: If the payment does not exist
            InvalidTransitionError: If the transition is not allowed
        """
        payment = await self.get_payment(payment_id)
        target = PaymentStatus(status)

        if target == payment.status:
            return payment
        if target == PaymentStatus.REFUNDED or payment.status == PaymentStatus.COMPLETED:
            raise InvalidTransitionError(payment.status.value, target.value, hint=REFUND_HINT)
        if not can_transition(payment.status, target):
            raise InvalidTransitionError(payment.status.value, target.value)

        changes: dict[str, Any] = {"status": target}
        if transaction_id:
            changes["transactionId"] = transaction_id
        if notes:
            changes["notes"] = notes
        if target == PaymentStatus.COMPLETED:
            changes.update(self.completion_changes(payment, payment.amount))

        return await self.apply_changes(payment, changes)

    async def create_checkout_link(
        self,
        payment_id: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CheckoutLinkResponse:
        """
        Open a hosted checkout session for a card payment.

        A new session replaces any session stored on the payment. The payment
        is only updated once the gateway has created the session.

        Args:
            payment_id: Payment ID
            success_url: Redirect after payment (defaults to the frontend success page)
            cancel_url: Redirect on cancel (defaults to the frontend cancel page)

        Returns:
            Updated payment with the checkout URL

        Raises:
            NotFoundError: If the payment does not exist
            InvalidStateError: If the payment is not pending or processing
            InvalidMethodError: If the payment is not a card payment
            GatewayError: If the gateway rejects the session
        """
        payment = await self.get_payment(payment_id)

        if payment.status not in CHECKOUT_STATUSES:
            raise InvalidStateError(f"Cannot start checkout for a {payment.status.value} payment")
        if payment.payment_method != PaymentMethod.CARD:
            raise InvalidMethodError("Checkout links are only available for card payments")

        frontend_url = settings.frontend_url.rstrip("/")
        request = CheckoutSessionRequest(
            payment_id=payment.id,
            reservation_id=payment.reservation_id,
            amount=payment.amount,
            currency=payment.currency,
            description=payment.description or f"Reservation {payment.reservation_id}",
            success_url=success_url
            or f"{frontend_url}/payment/success?session_id={{CHECKOUT_SESSION_ID}}&payment_id={payment.id}",
            cancel_url=cancel_url or f"{frontend_url}/payment/cancel?payment_id={payment.id}",
            customer_email=(payment.billing_address or {}).get("email"),
        )
        session = await self.gateway.create_checkout_session(request)

        changes: dict[str, Any] = {
            "checkoutSessionId": session.session_id,
            "checkoutUrl": session.url,
            "checkoutCreatedAt": self._clock(),
        }
        if payment.status != PaymentStatus.PROCESSING:
            changes["status"] = PaymentStatus.PROCESSING
        updated = await self.apply_changes(payment, changes)

        metrics.checkout_sessions_created_total.labels(
            simulated=str(session.session_id.startswith("cs_sim_")).lower(),
        ).inc()
        logger.info(
            "checkout_link_created",
            payment_id=payment.id,
            session_id=session.session_id,
            superseded_session_id=payment.checkout_session_id,
        )

        return CheckoutLinkResponse(
            payment=updated,
            session_id=session.session_id,
            checkout_url=session.url,
            expires_at=session.expires_at,
        )

    async def process_refund(self, payment_id: str, amount: Decimal, reason: str) -> Payment:
        """
        Refund part or all of a completed payment.

        Card payments settled through the gateway are refunded there first;
        other methods are recorded only. The payment becomes ``refunded`` once
        the cumulative refund equals the amount.

        Args:
            payment_id: Payment ID
            amount: Amount to refund in major units
            reason: Reason shown to operators

        Returns:
            Updated payment

        Raises:
            NotFoundError: If the payment does not exist
            InvalidStateError: If the payment is not completed
            PaymentValidationError: If the amount is not a positive number of whole cents
            RefundNotEligibleError: If the amount or refund window rules fail
            GatewayError: If the gateway rejects the refund
        """
        payment = await self.get_payment(payment_id)
        if payment.status != PaymentStatus.COMPLETED:
            raise InvalidStateError(f"Only completed payments can be refunded (status: {payment.status.value})")

        amount = Decimal(amount)
        if round_money(amount) <= 0 or round_money(amount) != amount:
            raise PaymentValidationError.from_messages(["Refund amount must be a positive number of whole cents"])

        now = self._clock()
        eligibility = evaluate_refund(payment, amount, now=now, window_days=settings.refund_window_days)
        if not eligibility.eligible:
            raise RefundNotEligibleError(eligibility.reason or "Refund not allowed")

        refund_id = None
        if self._settled_by_gateway(payment):
            refund = await self.gateway.create_refund(payment.transaction_id, amount, reason, payment.currency)
            refund_id = refund.id

        total_refunded = round_money(payment.refund_amount + amount)
        fully_refunded = total_refunded == payment.amount
        changes: dict[str, Any] = {
            "refundAmount": total_refunded,
            "refundDate": now,
            "refundReason": reason,
        }
        if refund_id:
            changes["refundTransactionId"] = refund_id
        if fully_refunded:
            changes["status"] = PaymentStatus.REFUNDED

        try:
            updated = await self.apply_changes(payment, changes)
        except UpstreamError:
            # Money already moved at the gateway; the record needs fixing by hand
            logger.error(
                "refund_not_recorded",
                payment_id=payment.id,
                refund_id=refund_id,
                amount=str(amount),
            )
            raise

        metrics.refunds_processed_total.labels(
            currency=payment.currency,
            kind="full" if fully_refunded else "partial",
        ).inc()
        metrics.refund_amount_total.labels(currency=payment.currency).inc(float(amount))
        logger.info(
            "refund_processed",
            payment_id=payment.id,
            amount=str(amount),
            refund_total=str(total_refunded),
            refund_id=refund_id,
        )

        return updated

    async def cancel_payment(self, payment_id: str) -> Payment:
        """
        Cancel a payment that has not been settled.

        Cancelling an already cancelled payment returns it unchanged. A failed
        payment may still be cancelled to close it out.

        Raises:
            NotFoundError: If the payment does not exist
            InvalidTransitionError: If the payment is completed or refunded
        """
        payment = await self.get_payment(payment_id)

        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            raise InvalidTransitionError(payment.status.value, PaymentStatus.CANCELLED.value, hint=REFUND_HINT)
        if payment.status == PaymentStatus.CANCELLED:
            return payment
        if payment.status != PaymentStatus.FAILED and not can_transition(payment.status, PaymentStatus.CANCELLED):
            raise InvalidTransitionError(payment.status.value, PaymentStatus.CANCELLED.value)

        return await self.apply_changes(payment, {"status": PaymentStatus.CANCELLED})

    # ------------------------------------------------------------------
    # Shared with webhook reconciliation
    # ------------------------------------------------------------------

    def completion_changes(self, payment: Payment, gross: Decimal) -> dict[str, Any]:
        """Fields written when a payment completes: payment date, fees and net amount."""
        fees = calculate_fees(gross, payment.payment_method, self.fee_schedule)
        return {
            "paymentDate": self._clock(),
            "fees": fees.total_fees,
            "netAmount": fees.net_amount,
        }

    async def apply_changes(self, payment: Payment, changes: dict[str, Any]) -> Payment:
        """
        Persist changes and report a status change.

        Args:
            payment: Payment as read before the change
            changes: camelCase fields to write

        Returns:
            Payment as stored after the change
        """
        updated = await self.db.update_payment(payment.id, changes)

        if updated.status != payment.status:
            metrics.payment_status_transitions_total.labels(
                from_status=payment.status.value,
                to_status=updated.status.value,
            ).inc()
            logger.info(
                "payment_status_changed",
                payment_id=payment.id,
                from_status=payment.status.value,
                to_status=updated.status.value,
            )
            if self.notifier is not None:
                await self.notifier.payment_status_changed(updated, token=self.db.token)

        return updated

    @staticmethod
    def _settled_by_gateway(payment: Payment) -> bool:
        # Placeholder ids mean the gateway never reported a charge
        return (
            payment.payment_method == PaymentMethod.CARD
            and bool(payment.transaction_id)
            and not payment.transaction_id.startswith(PLACEHOLDER_TRANSACTION_PREFIX)
        )
