"""Payment endpoints: creation, checkout, status, refunds and cancellation."""
from decimal import Decimal
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from payments.api.deps import get_payment_service
from payments.models.payment import PaymentMethod, PaymentStatus
from payments.schemas.gateway import SessionStatus
from payments.schemas.payment import (
    CheckoutLinkResponse,
    CheckoutRequest,
    Payment,
    PaymentFilters,
    PaymentPage,
    PaymentStatusUpdate,
    RefundEligibility,
    RefundRequest,
)
from payments.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=Payment, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payload: dict[str, Any] = Body(..., description="reservationId, amount, currency, paymentMethod, billingAddress"),
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    """
    Create a pending payment for a reservation.

    Card numbers and other raw card data in the body are discarded.
    """
    return await service.create_payment(payload)


@router.get("", response_model=PaymentPage)
async def list_payments(
    status_filter: Optional[PaymentStatus] = Query(None, alias="status", description="Filter by payment status"),
    payment_method: Optional[PaymentMethod] = Query(None, alias="paymentMethod", description="Filter by method"),
    date_from: Optional[str] = Query(None, alias="dateFrom", description="Created on or after (ISO 8601)"),
    date_to: Optional[str] = Query(None, alias="dateTo", description="Created on or before (ISO 8601)"),
    transaction_id: Optional[str] = Query(None, alias="transactionId", description="Filter by gateway transaction"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Results per page"),
    service: PaymentService = Depends(get_payment_service),
) -> PaymentPage:
    """
    List payments with optional filters.

    - **status**: pending, processing, completed, failed, refunded, cancelled
    - **paymentMethod**: card, paypal, bank_transfer, cash, other
    - **dateFrom** / **dateTo**: creation date range
    - **page** / **limit**: pagination
    """
    filters = PaymentFilters(
        status=status_filter,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        transaction_id=transaction_id,
        page=page,
        limit=limit,
    )
    return await service.list_payments(filters)


@router.get("/stats", response_model=dict)
async def get_payment_stats(
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    service: PaymentService = Depends(get_payment_service),
) -> dict:
    """Aggregate payment statistics computed by the database service."""
    return await service.get_stats(date_from, date_to)


@router.get("/reservation/{reservation_id}", response_model=List[Payment])
async def list_reservation_payments(
    reservation_id: str,
    service: PaymentService = Depends(get_payment_service),
) -> List[Payment]:
    """All payments made for one reservation."""
    return await service.list_by_reservation(reservation_id)


@router.get("/checkout-sessions/{session_id}", response_model=SessionStatus)
async def get_checkout_session(
    session_id: str,
    service: PaymentService = Depends(get_payment_service),
) -> SessionStatus:
    """Current gateway status of a checkout session."""
    return await service.get_checkout_session_status(session_id)


@router.get("/{payment_id}", response_model=Payment)
async def get_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    """Get payment details by ID."""
    return await service.get_payment(payment_id)


@router.put("/{payment_id}/status", response_model=Payment)
async def update_payment_status(
    payment_id: str,
    update: PaymentStatusUpdate,
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    """
    Change a payment's status.

    Used for manual settlement of offline payments and corrections. Completed
    payments can only be refunded.
    """
    return await service.update_status(
        payment_id,
        update.status,
        transaction_id=update.transaction_id,
        notes=update.notes,
    )


@router.delete("/{payment_id}", response_model=Payment)
async def cancel_payment(
    payment_id: str,
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    """Cancel a payment that has not been settled."""
    return await service.cancel_payment(payment_id)


@router.post("/{payment_id}/checkout", response_model=CheckoutLinkResponse)
async def create_checkout_link(
    payment_id: str,
    checkout: Optional[CheckoutRequest] = None,
    service: PaymentService = Depends(get_payment_service),
) -> CheckoutLinkResponse:
    """
    Create a hosted checkout link for a card payment.

    The payment moves to ``processing``; the outcome arrives by webhook.
    """
    checkout = checkout or CheckoutRequest()
    return await service.create_checkout_link(
        payment_id,
        success_url=checkout.success_url,
        cancel_url=checkout.cancel_url,
    )


@router.post("/{payment_id}/refund", response_model=Payment)
async def refund_payment(
    payment_id: str,
    refund: RefundRequest,
    service: PaymentService = Depends(get_payment_service),
) -> Payment:
    """
    Refund part or all of a completed payment.

    Partial refunds accumulate; the payment becomes ``refunded`` once the
    whole amount has been returned.
    """
    return await service.process_refund(payment_id, refund.amount, refund.reason)


@router.get("/{payment_id}/refund-eligibility", response_model=RefundEligibility)
async def get_refund_eligibility(
    payment_id: str,
    amount: Decimal = Query(..., gt=0, decimal_places=2, description="Amount to refund"),
    service: PaymentService = Depends(get_payment_service),
) -> RefundEligibility:
    """Check whether a refund would be accepted, without refunding."""
    return await service.check_refund_eligibility(payment_id, amount)
