from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Outgoing deliveries
# ---------------------------------------------------------------------------
webhook_events_emitted_total = Counter(
    "webhook_events_emitted_total",
    "Domain events handed to the delivery engine",
)
webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Delivery attempts by outcome (delivered, retry, failed, skipped)",
    ["outcome"],
)
webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Duration of a single outgoing delivery attempt in seconds",
    buckets=[0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)
webhook_deliveries_in_flight = Gauge(
    "webhook_deliveries_in_flight",
    "Deliveries currently waiting on the subscriber endpoint",
)
webhook_retries_scheduled = Gauge(
    "webhook_retries_scheduled",
    "Retry timers currently armed in this process",
)
webhook_retry_sweep_total = Counter(
    "webhook_retry_sweep_total",
    "Deliveries resumed by the due-retry sweep",
)

# ---------------------------------------------------------------------------
# Incoming webhooks
# ---------------------------------------------------------------------------
webhook_inbound_total = Counter(
    "webhook_inbound_total",
    "Incoming webhook calls by provider and result (accepted, duplicate, rejected)",
    ["provider", "result"],
)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
