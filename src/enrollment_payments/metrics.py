"""
Prometheus metrics for payment notifications and reconciliation.

The webhook always acknowledges the provider, so failures on its internal
path are only visible here and in the logs.
"""
from prometheus_client import Counter

webhook_notifications_total = Counter(
    "webhook_notifications_total",
    "Total provider notifications received",
    ["outcome"],  # processed, ignored, invalid, failed
)

webhook_swallowed_errors_total = Counter(
    "webhook_swallowed_errors_total",
    "Errors swallowed while acknowledging a provider notification",
    ["stage"],  # credentials, lookup, event_log, submission_update, unexpected
)

reconciliation_items_total = Counter(
    "reconciliation_items_total",
    "Submissions processed by the reconciliation sweep",
    ["outcome"],  # updated, unchanged, failed
)

provider_requests_total = Counter(
    "provider_requests_total",
    "Total Mercado Pago API requests",
    ["operation", "status"],  # status: ok, error
)
