"""Reconciliation of gateway webhook events with stored payments.

Gateway events can arrive late, out of order or more than once. Every handler
re-reads the payment and only moves it forward: a completed, refunded, failed
or cancelled payment is never regressed by a later event.
"""
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import structlog

from payments import metrics
from payments.models.payment import CHECKOUT_STATUSES, PaymentStatus
from payments.schemas.gateway import GatewayEvent
from payments.schemas.payment import Payment
from payments.services.payment_service import PaymentService, append_note
from payments.utils.currency import convert_from_smallest_unit

logger = structlog.get_logger(__name__)

PROCESSED = "processed"
IGNORED = "ignored"
UNMATCHED = "unmatched"


def _object_id(value: Any) -> Optional[str]:
    # Expanded Stripe references arrive as objects instead of ids
    if isinstance(value, dict):
        return value.get("id")
    return value


def _card_details(obj: dict[str, Any]) -> dict[str, str]:
    card = (obj.get("payment_method_details") or {}).get("card") or {}
    details = {}
    if card.get("brand"):
        details["cardBrand"] = card["brand"]
    if card.get("last4"):
        details["cardLast4"] = card["last4"]
    return details


class WebhookService:
    """Applies verified gateway events to payments."""

    def __init__(self, payments: PaymentService):
        """
        Initialize webhook service.

        Args:
            payments: Payment service used to read and update payments
        """
        self.payments = payments
        self.db = payments.db
        self._handlers: dict[str, Callable[[GatewayEvent], Awaitable[str]]] = {
            "checkout.session.completed": self._handle_checkout_completed,
            "checkout.session.expired": self._handle_checkout_expired,
            "payment_intent.succeeded": self._handle_payment_intent_succeeded,
            "payment_intent.payment_failed": self._handle_payment_intent_failed,
            "charge.dispute.created": self._handle_dispute_created,
        }

    async def handle_event(self, event: GatewayEvent) -> str:
        """
        Apply one event.

        Correlation misses are logged and acknowledged. Database service
        errors propagate so the gateway redelivers the event.

        Args:
            event: Verified gateway event

        Returns:
            Outcome: processed, ignored or unmatched
        """
        logger.info(
            "stripe_webhook_received",
            event_id=event.id,
            event_type=event.type,
            simulated=event.simulated,
        )

        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("stripe_webhook_unhandled", event_id=event.id, event_type=event.type)
            outcome = IGNORED
        else:
            try:
                outcome = await handler(event)
            except Exception:
                metrics.webhook_events_total.labels(event_type=event.type, outcome="failed").inc()
                raise

        metrics.webhook_events_total.labels(event_type=event.type, outcome=outcome).inc()
        return outcome

    # ------------------------------------------------------------------
    # Checkout sessions
    # ------------------------------------------------------------------

    async def _handle_checkout_completed(self, event: GatewayEvent) -> str:
        session = event.data_object
        payment = await self._find_by_metadata(event)
        if payment is None:
            return UNMATCHED

        if session.get("payment_status") != "paid":
            logger.warning(
                "checkout_completed_unpaid",
                payment_id=payment.id,
                session_id=session.get("id"),
                payment_status=session.get("payment_status"),
            )
            return IGNORED

        if payment.status in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED):
            logger.info("payment_already_completed", payment_id=payment.id, session_id=session.get("id"))
            return IGNORED

        if payment.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            logger.warning(
                "payment_completed_after_final_status",
                payment_id=payment.id,
                status=payment.status.value,
                session_id=session.get("id"),
            )
            await self._add_note(
                payment,
                f"Checkout session {session.get('id')} completed while the payment was "
                f"{payment.status.value}; review manually.",
            )
            return IGNORED

        gross = payment.amount
        if session.get("amount_total") is not None:
            gross = convert_from_smallest_unit(session["amount_total"], session.get("currency") or payment.currency)

        await self._complete(
            payment,
            gross,
            transaction_id=_object_id(session.get("payment_intent")),
            extra=_card_details(session),
        )
        return PROCESSED

    async def _handle_checkout_expired(self, event: GatewayEvent) -> str:
        session = event.data_object
        session_id = session.get("id")
        payment = await self._find_by_metadata(event)
        if payment is None:
            return UNMATCHED

        if payment.status not in CHECKOUT_STATUSES:
            logger.info("checkout_expired_ignored", payment_id=payment.id, status=payment.status.value)
            return IGNORED

        if payment.checkout_session_id and session_id != payment.checkout_session_id:
            logger.info(
                "checkout_session_superseded",
                payment_id=payment.id,
                session_id=session_id,
                current_session_id=payment.checkout_session_id,
            )
            return IGNORED

        changes: dict[str, Any] = {"status": PaymentStatus.FAILED}
        notes = append_note(payment.notes, f"Checkout session {session_id} expired.")
        if notes is not None:
            changes["notes"] = notes
        await self.payments.apply_changes(payment, changes)
        return PROCESSED

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    async def _handle_payment_intent_succeeded(self, event: GatewayEvent) -> str:
        intent = event.data_object
        payment = await self._find_by_transaction(intent.get("id"), event)
        if payment is None:
            return UNMATCHED

        if payment.status not in CHECKOUT_STATUSES:
            logger.info("payment_intent_succeeded_ignored", payment_id=payment.id, status=payment.status.value)
            return IGNORED

        gross = payment.amount
        received = intent.get("amount_received") or intent.get("amount")
        if received is not None:
            gross = convert_from_smallest_unit(received, intent.get("currency") or payment.currency)

        await self._complete(payment, gross, transaction_id=intent.get("id"))
        return PROCESSED

    async def _handle_payment_intent_failed(self, event: GatewayEvent) -> str:
        intent = event.data_object
        payment = await self._find_by_transaction(intent.get("id"), event)
        if payment is None:
            return UNMATCHED

        if payment.status not in CHECKOUT_STATUSES:
            logger.info("payment_intent_failed_ignored", payment_id=payment.id, status=payment.status.value)
            return IGNORED

        error = intent.get("last_payment_error") or {}
        message = error.get("message") or "Payment failed at the gateway"
        changes: dict[str, Any] = {"status": PaymentStatus.FAILED}
        notes = append_note(payment.notes, f"Payment failed: {message}")
        if notes is not None:
            changes["notes"] = notes
        await self.payments.apply_changes(payment, changes)

        logger.warning("payment_failed", payment_id=payment.id, error=message, decline_code=error.get("decline_code"))
        return PROCESSED

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def _handle_dispute_created(self, event: GatewayEvent) -> str:
        dispute = event.data_object
        payment = None
        for reference in (_object_id(dispute.get("payment_intent")), _object_id(dispute.get("charge"))):
            if reference:
                payment = await self._find_by_transaction(reference, event, warn=False)
                if payment is not None:
                    break

        if payment is None:
            logger.warning("stripe_dispute_unmatched", event_id=event.id, dispute_id=dispute.get("id"))
            return UNMATCHED

        logger.warning(
            "payment_disputed",
            payment_id=payment.id,
            dispute_id=dispute.get("id"),
            reason=dispute.get("reason"),
        )
        added = await self._add_note(
            payment,
            f"Dispute {dispute.get('id')} opened: {dispute.get('reason') or 'no reason given'}.",
        )
        return PROCESSED if added else IGNORED

    # ------------------------------------------------------------------

    async def _complete(
        self,
        payment: Payment,
        gross: Decimal,
        transaction_id: Optional[str] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> Payment:
        changes: dict[str, Any] = {"status": PaymentStatus.COMPLETED}
        changes.update(self.payments.completion_changes(payment, gross))
        if transaction_id:
            changes["transactionId"] = transaction_id
        changes.update(extra or {})

        updated = await self.payments.apply_changes(payment, changes)
        logger.info(
            "payment_completed",
            payment_id=payment.id,
            transaction_id=transaction_id,
            fees=str(changes["fees"]),
            net_amount=str(changes["netAmount"]),
        )
        return updated

    async def _add_note(self, payment: Payment, note: str) -> bool:
        notes = append_note(payment.notes, note)
        if notes is None:
            return False
        await self.payments.apply_changes(payment, {"notes": notes})
        return True

    async def _find_by_metadata(self, event: GatewayEvent) -> Optional[Payment]:
        payment_id = event.metadata.get("paymentId")
        if not payment_id:
            logger.warning("stripe_webhook_missing_payment_id", event_id=event.id, event_type=event.type)
            return None

        payment = await self.db.find_payment_by_id(payment_id)
        if payment is None:
            logger.warning(
                "stripe_webhook_payment_not_found",
                event_id=event.id,
                event_type=event.type,
                payment_id=payment_id,
            )
        return payment

    async def _find_by_transaction(
        self,
        transaction_id: Optional[str],
        event: GatewayEvent,
        warn: bool = True,
    ) -> Optional[Payment]:
        payments = await self.db.find_payments_by_transaction_id(transaction_id) if transaction_id else []
        if payments:
            return payments[0]

        if warn:
            logger.warning(
                "stripe_webhook_payment_not_found",
                event_id=event.id,
                event_type=event.type,
                transaction_id=transaction_id,
            )
        return None
