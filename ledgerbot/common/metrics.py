"""Prometheus metric definitions shared across components."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


commands_total = Counter("commands_total", "Inbound commands handled", ["service", "command", "outcome"])
dispatch_latency_seconds = Histogram(
    "dispatch_latency_seconds",
    "Time spent handling one inbound update",
    ["service", "command"],
)
duplicate_updates_skipped_total = Counter(
    "duplicate_updates_skipped_total",
    "Redelivered inbound updates short-circuited by the intake guard",
    ["service"],
)
ledger_entries_total = Counter("ledger_entries_total", "Ledger entries appended", ["service", "kind", "currency"])
approval_decisions_total = Counter("approval_decisions_total", "Approval requests resolved", ["service", "decision"])
outbox_sent_total = Counter("outbox_sent_total", "Outbox items delivered", ["service"])
outbox_send_failures_total = Counter(
    "outbox_send_failures_total",
    "Failed outbound send attempts",
    ["service", "error_type"],
)
outbox_exhausted_total = Counter(
    "outbox_exhausted_total",
    "Outbox items that reached the retry ceiling",
    ["service"],
)
outbox_pending_total = Gauge(
    "outbox_pending_total",
    "Current count of outbox items not yet sent and still retryable",
    ["service"],
)
outbox_oldest_pending_age_seconds = Gauge(
    "outbox_oldest_pending_age_seconds",
    "Age in seconds of the oldest unsent outbox item",
    ["service"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
