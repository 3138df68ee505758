"""
Prometheus metrics for the donation pipeline.

Tracks:
- Charge creation outcomes
- Gateway request counts and latency
- Webhook items by outcome
- Reconciliation decisions
- Live notification deliveries and open subscriptions
"""
from prometheus_client import Counter, Gauge, Histogram

# Charge metrics
pix_charges_created_total = Counter(
    "pix_charges_created_total",
    "Total charge creation attempts",
    ["status"],  # created, rejected, failed
)

# Gateway metrics
pix_gateway_requests_total = Counter(
    "pix_gateway_requests_total",
    "Total Pix gateway requests",
    ["operation", "status"],  # operation: token, create_charge, charge_details, ...
)

pix_gateway_request_duration_seconds = Histogram(
    "pix_gateway_request_duration_seconds",
    "Pix gateway call duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# Webhook metrics
pix_webhook_items_total = Counter(
    "pix_webhook_items_total",
    "Total webhook notification items",
    ["outcome"],  # succeeded, failed, skipped
)

# Reconciliation metrics
reconciliation_actions_total = Counter(
    "reconciliation_actions_total",
    "Reconciliation decisions applied",
    ["action"],
)

# Notification metrics
donation_notifications_total = Counter(
    "donation_notifications_total",
    "Confirmed donations handed to the notification hub",
    ["delivered"],  # true, false
)

notification_subscribers = Gauge(
    "notification_subscribers",
    "Number of live notification subscribers",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_charge(status: str) -> None:
        """Record a charge creation attempt."""
        pix_charges_created_total.labels(status=status).inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a gateway API call."""
        pix_gateway_requests_total.labels(operation=operation, status=status).inc()
        pix_gateway_request_duration_seconds.labels(operation=operation).observe(
            duration_seconds
        )

    @staticmethod
    def record_webhook_item(outcome: str) -> None:
        """Record one webhook notification item."""
        pix_webhook_items_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_reconciliation(action: str) -> None:
        """Record a reconciliation decision."""
        reconciliation_actions_total.labels(action=action).inc()

    @staticmethod
    def record_notification(delivered: bool) -> None:
        """Record a notification delivery attempt."""
        donation_notifications_total.labels(delivered=str(delivered).lower()).inc()

    @staticmethod
    def set_subscribers(count: int) -> None:
        """Set the number of live subscribers."""
        notification_subscribers.set(count)


# Export singleton instance
metrics = MetricsCollector()
