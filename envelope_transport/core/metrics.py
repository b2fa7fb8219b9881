"""Prometheus metrics for envelope delivery."""

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest

# --- Metrics ---

TRANSPORT_INFO = Info("envelope_transport", "Envelope transport info")
TRANSPORT_INFO.info({"version": "0.1.0", "name": "envelope_transport"})

ENVELOPES_ENQUEUED = Counter(
    "envelopes_enqueued_total",
    "Envelopes accepted into the delivery queue",
)

ENVELOPES_DROPPED = Counter(
    "envelopes_dropped_total",
    "Envelopes dropped before or during delivery",
    ["reason"],
)

RESPONSES_RECEIVED = Counter(
    "envelope_responses_total",
    "Responses received from the ingestion endpoint",
    ["status"],
)

RATE_LIMIT_UPDATES = Counter(
    "rate_limit_updates_total",
    "Rate limiter updates by signal source",
    ["source"],
)

DELIVERY_DURATION = Histogram(
    "envelope_delivery_duration_seconds",
    "Time spent submitting a single envelope",
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

QUEUE_DEPTH = Gauge(
    "envelope_queue_depth",
    "Envelopes waiting in the delivery queue",
)


def metrics_text() -> bytes:
    """Render the registry in Prometheus text format."""
    return generate_latest()
