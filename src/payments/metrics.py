"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter

# Payment metrics
payments_created_total = Counter(
    "payments_created_total",
    "Total payments created",
    labelnames=["payment_method", "currency"],
)

payment_status_transitions_total = Counter(
    "payment_status_transitions_total",
    "Total payment status transitions",
    labelnames=["from_status", "to_status"],
)

checkout_sessions_created_total = Counter(
    "checkout_sessions_created_total",
    "Total checkout sessions created",
    labelnames=["simulated"],
)

# Refund metrics
refunds_processed_total = Counter(
    "refunds_processed_total",
    "Total refunds processed",
    labelnames=["currency", "kind"],  # kind: partial, full
)

refund_amount_total = Counter(
    "refund_amount_total",
    "Total refunded amount in major currency units",
    labelnames=["currency"],
)

# Webhook metrics
webhook_events_total = Counter(
    "webhook_events_total",
    "Total gateway webhook events received",
    labelnames=["event_type", "outcome"],  # outcome: processed, ignored, unmatched, failed
)
