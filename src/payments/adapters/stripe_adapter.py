"""Stripe Checkout gateway adapter.

Two modes, chosen at construction:

- live: Stripe Checkout sessions, refunds and signed webhooks through the
  Stripe SDK;
- simulation: locally generated sessions, refunds and unsigned webhook events
  for integration testing without network access.

Simulated ids carry the ``cs_sim_`` / ``pi_sim_`` prefixes, and lookups and
refunds are routed by id shape so a session is always served by the mode that
created it.

The Stripe SDK is synchronous, so live calls run in a worker thread.
"""
import asyncio
import json
import random
import string
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import stripe
import structlog

from payments.config import settings
from payments.exceptions import GatewayError, InvalidSignatureError
from payments.schemas.gateway import (
    CheckoutSession,
    CheckoutSessionRequest,
    GatewayConfigStatus,
    GatewayEvent,
    GatewayRefund,
    SessionStatus,
)
from payments.utils.currency import convert_to_smallest_unit

logger = structlog.get_logger(__name__)

SIMULATED_SESSION_PREFIX = "cs_sim_"
SIMULATED_INTENT_PREFIX = "pi_sim_"
SIMULATED_CHECKOUT_URL = "https://checkout.stripe.com/c/pay/"
SIMULATED_OPEN_MAX_AGE = timedelta(hours=1)
SIMULATED_COMPLETE_PROBABILITY = 0.3

# Stripe only accepts these refund reasons; free text goes to metadata
STRIPE_REFUND_REASON = "requested_by_customer"


def _plain(obj: Any) -> dict[str, Any]:
    """Convert a Stripe object (or None) to a plain dict."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _from_timestamp(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class StripeAdapter:
    """Adapter for Stripe Checkout integration."""

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        simulation_mode: bool | None = None,
        simulation_outcome: str | None = None,
        session_ttl_hours: int | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the adapter.

        Args:
            secret_key: Stripe secret key (defaults to settings)
            webhook_secret: Webhook signing secret (defaults to settings)
            simulation_mode: Fake Stripe locally (defaults to settings)
            simulation_outcome: Force simulated session status: open, complete or expired
            session_ttl_hours: Checkout session lifetime
            rng: Random source for simulated ids and outcomes
            clock: Returns the current UTC time
        """
        self.secret_key = settings.stripe_secret_key if secret_key is None else secret_key
        self.webhook_secret = settings.stripe_webhook_secret if webhook_secret is None else webhook_secret
        self.simulation_mode = settings.stripe_simulation_mode if simulation_mode is None else simulation_mode
        self.simulation_outcome = (
            settings.stripe_simulation_outcome if simulation_outcome is None else simulation_outcome
        )
        self.session_ttl = timedelta(
            hours=settings.checkout_session_ttl_hours if session_ttl_hours is None else session_ttl_hours
        )
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Checkout sessions
    # ------------------------------------------------------------------

    async def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        """
        Create a hosted checkout session for one payment.

        The internal payment and reservation ids travel as session metadata;
        webhook events use them to find the payment again.

        Args:
            request: Amount, currency, redirect URLs and internal ids

        Returns:
            Created session with its redirect URL and expiry

        Raises:
            GatewayError: If Stripe rejects the request
        """
        metadata = {"paymentId": request.payment_id, "reservationId": request.reservation_id}
        expires_at = self._clock() + self.session_ttl

        if self.simulation_mode:
            return self._create_simulated_session(request, metadata, expires_at)

        params: dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": request.currency.lower(),
                        "product_data": {"name": request.description or "Payment"},
                        "unit_amount": convert_to_smallest_unit(request.amount, request.currency),
                    },
                    "quantity": 1,
                }
            ],
            "mode": "payment",
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
            "metadata": metadata,
            "expires_at": int(expires_at.timestamp()),
        }
        if request.customer_email:
            params["customer_email"] = request.customer_email

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise self._gateway_error("checkout_session_create", e) from e

        logger.info(
            "stripe_checkout_session_created",
            session_id=session.id,
            payment_id=request.payment_id,
        )

        return CheckoutSession(
            session_id=session.id,
            url=session.url,
            status=getattr(session, "status", None) or "open",
            amount_total=getattr(session, "amount_total", None),
            currency=getattr(session, "currency", None),
            expires_at=_from_timestamp(getattr(session, "expires_at", None)) or expires_at,
            metadata=_plain(getattr(session, "metadata", None)),
        )

    async def retrieve_session(self, session_id: str) -> SessionStatus:
        """
        Get the current state of a checkout session.

        Args:
            session_id: Stripe (or simulated) session ID

        Returns:
            Session status

        Raises:
            GatewayError: If the session cannot be retrieved
        """
        if session_id.startswith(SIMULATED_SESSION_PREFIX):
            return self._simulated_session_status(session_id)

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.retrieve, session_id, api_key=self.secret_key)
        except stripe.StripeError as e:
            raise self._gateway_error("checkout_session_retrieve", e) from e

        customer_details = getattr(session, "customer_details", None)
        payment_intent = getattr(session, "payment_intent", None)

        return SessionStatus(
            id=session.id,
            status=session.status,
            payment_status=getattr(session, "payment_status", None),
            amount_total=getattr(session, "amount_total", None),
            currency=getattr(session, "currency", None),
            customer_email=getattr(customer_details, "email", None) if customer_details else None,
            expires_at=_from_timestamp(getattr(session, "expires_at", None)),
            metadata=_plain(getattr(session, "metadata", None)),
            payment_intent=payment_intent if isinstance(payment_intent, str) else getattr(payment_intent, "id", None),
        )

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def create_refund(
        self,
        transaction_id: str,
        amount: Decimal | None = None,
        reason: str = STRIPE_REFUND_REASON,
        currency: str = "EUR",
    ) -> GatewayRefund:
        """
        Refund a captured payment, fully or partially.

        Args:
            transaction_id: Payment intent (``pi_``) or charge (``ch_``) ID
            amount: Amount in major units, None for the full remaining amount
            reason: Free-text reason, stored in refund metadata
            currency: Currency of ``amount``

        Returns:
            Refund record

        Raises:
            GatewayError: If Stripe rejects the refund
        """
        minor_amount = convert_to_smallest_unit(amount, currency) if amount is not None else None

        if self.simulation_mode or transaction_id.startswith(SIMULATED_INTENT_PREFIX):
            return self._create_simulated_refund(transaction_id, minor_amount, reason, currency)

        params: dict[str, Any] = {
            "reason": STRIPE_REFUND_REASON,
            "metadata": {"reason": reason[:500]},
        }
        if transaction_id.startswith("ch_"):
            params["charge"] = transaction_id
        else:
            params["payment_intent"] = transaction_id
        if minor_amount is not None:
            params["amount"] = minor_amount

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            raise self._gateway_error("refund_create", e) from e

        logger.info(
            "stripe_refund_created",
            refund_id=refund.id,
            transaction_id=transaction_id,
            amount=minor_amount,
        )

        return GatewayRefund(
            id=refund.id,
            amount=getattr(refund, "amount", None),
            currency=getattr(refund, "currency", None),
            status=refund.status,
            reason=reason,
            payment_intent=transaction_id,
            created=getattr(refund, "created", None),
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def verify_and_parse_webhook(self, payload: bytes, signature: str | None) -> GatewayEvent:
        """
        Verify a webhook delivery and parse it into an event.

        Args:
            payload: Raw request body, byte-exact as received
            signature: Value of the ``Stripe-Signature`` header

        Returns:
            Verified event

        Raises:
            InvalidSignatureError: If the payload cannot be verified or parsed
        """
        if self.simulation_mode:
            return self._parse_simulated_webhook(payload)

        if not self.webhook_secret:
            raise InvalidSignatureError("Webhook signing secret is not configured")
        if not signature:
            raise InvalidSignatureError("Missing Stripe signature")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise InvalidSignatureError(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError(f"Invalid signature: {e}") from e

        body = json.loads(payload)
        return GatewayEvent(
            id=body.get("id", ""),
            type=body.get("type", ""),
            created=body.get("created"),
            data_object=(body.get("data") or {}).get("object") or {},
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def validate_configuration(self) -> GatewayConfigStatus:
        """Report whether the adapter is configured for its mode."""
        has_secret_key = bool(self.secret_key)
        has_webhook_secret = bool(self.webhook_secret)

        warnings = []
        if not has_secret_key:
            warnings.append("STRIPE_SECRET_KEY is missing")
        if not self.simulation_mode and not has_webhook_secret:
            warnings.append("STRIPE_WEBHOOK_SECRET is required to accept live webhooks")
        if self.simulation_mode:
            warnings.append("Simulation mode enabled: no real payments are collected")

        return GatewayConfigStatus(
            has_secret_key=has_secret_key,
            has_webhook_secret=has_webhook_secret,
            simulation_mode=self.simulation_mode,
            is_valid=self.simulation_mode or (has_secret_key and has_webhook_secret),
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def _random_token(self, length: int) -> str:
        return "".join(self._rng.choices(string.ascii_lowercase + string.digits, k=length))

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def _create_simulated_session(
        self,
        request: CheckoutSessionRequest,
        metadata: dict[str, str],
        expires_at: datetime,
    ) -> CheckoutSession:
        session_id = f"{SIMULATED_SESSION_PREFIX}{self._now_ms()}_{self._random_token(9)}"

        logger.info(
            "stripe_simulated_session_created",
            session_id=session_id,
            payment_id=request.payment_id,
        )

        return CheckoutSession(
            session_id=session_id,
            url=f"{SIMULATED_CHECKOUT_URL}{session_id}",
            status="open",
            amount_total=convert_to_smallest_unit(request.amount, request.currency),
            currency=request.currency.lower(),
            expires_at=expires_at,
            metadata={**metadata, "simulation": "true"},
        )

    def _simulated_session_status(self, session_id: str) -> SessionStatus:
        now = self._clock()
        try:
            created = datetime.fromtimestamp(int(session_id.split("_")[2]) / 1000, tz=timezone.utc)
        except (IndexError, ValueError):
            created = now

        if self.simulation_outcome:
            status = self.simulation_outcome
        elif now - created > SIMULATED_OPEN_MAX_AGE:
            status = "expired"
        elif "success" in session_id or self._rng.random() < SIMULATED_COMPLETE_PROBABILITY:
            status = "complete"
        else:
            status = "open"

        complete = status == "complete"
        return SessionStatus(
            id=session_id,
            status=status,
            payment_status="paid" if complete else None,
            expires_at=created + self.session_ttl,
            metadata={"simulation": "true"},
            payment_intent=self.simulated_intent_id(session_id) if complete else None,
            simulated=True,
        )

    @staticmethod
    def simulated_intent_id(session_id: str) -> str:
        """Payment intent ID reported for a simulated session (stable per session)."""
        suffix = session_id[len(SIMULATED_SESSION_PREFIX):] if session_id.startswith(SIMULATED_SESSION_PREFIX) else session_id
        return f"{SIMULATED_INTENT_PREFIX}{suffix}"

    def _create_simulated_refund(
        self,
        transaction_id: str,
        amount: int | None,
        reason: str,
        currency: str,
    ) -> GatewayRefund:
        refund_id = f"re_sim_{self._now_ms()}_{self._random_token(6)}"
        logger.info("stripe_simulated_refund_created", refund_id=refund_id, transaction_id=transaction_id)
        return GatewayRefund(
            id=refund_id,
            amount=amount,
            currency=currency.lower(),
            status="succeeded",
            reason=reason,
            payment_intent=transaction_id,
            created=int(self._clock().timestamp()),
            simulated=True,
        )

    def _parse_simulated_webhook(self, payload: bytes) -> GatewayEvent:
        """
        Build an event from an unsigned simulation payload.

        Accepted body::

            {"type": "checkout.session.completed", "session_id": "cs_sim_...",
             "metadata": {"paymentId": "..."}, "amount_total": 10000,
             "currency": "eur", "payment_intent": "pi_...",
             "payment_method_details": {"card": {"brand": "visa", "last4": "4242"}}}

        A full ``object`` dict replaces the generated session object, which
        allows simulating payment-intent and dispute events.
        """
        try:
            data = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise InvalidSignatureError("Invalid simulated webhook payload") from e
        if not isinstance(data, dict):
            raise InvalidSignatureError("Invalid simulated webhook payload")

        event_type = data.get("type") or "checkout.session.completed"
        obj = data.get("object")
        if not isinstance(obj, dict):
            session_id = data.get("session_id") or f"{SIMULATED_SESSION_PREFIX}test"
            expired = event_type == "checkout.session.expired"
            obj = {
                "id": session_id,
                "object": "checkout.session",
                "status": "expired" if expired else "complete",
                "payment_status": "unpaid" if expired else "paid",
                "metadata": data.get("metadata") or {},
                "amount_total": data.get("amount_total"),
                "currency": data.get("currency"),
                "payment_intent": None if expired else data.get("payment_intent") or self.simulated_intent_id(session_id),
            }
            if data.get("payment_method_details"):
                obj["payment_method_details"] = data["payment_method_details"]

        return GatewayEvent(
            id=data.get("id") or f"evt_sim_{self._now_ms()}",
            type=event_type,
            created=int(self._clock().timestamp()),
            data_object=obj,
            simulated=True,
        )

    # ------------------------------------------------------------------

    @staticmethod
    def _gateway_error(action: str, error: stripe.StripeError) -> GatewayError:
        # Card and request errors are the caller's to fix; everything else is Stripe's side
        client_side = isinstance(error, (stripe.CardError, stripe.InvalidRequestError))
        logger.error(
            "stripe_request_failed",
            action=action,
            stripe_code=getattr(error, "code", None),
            error=str(error),
        )
        return GatewayError(
            f"Stripe {action} failed: {getattr(error, 'user_message', None) or error}",
            status_code=400 if client_side else 502,
            gateway_code=getattr(error, "code", None),
        )
