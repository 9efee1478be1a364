"""
Prometheus metrics for the channel sync engine
"""

from prometheus_client import Counter, Gauge, Histogram

sync_operations_total = Counter(
    "channel_sync_operations_total",
    "Sync operations attempted, one per audit log entry",
    ["direction", "entity_kind", "operation", "status"],
)

remote_requests_total = Counter(
    "channel_sync_remote_requests_total",
    "Requests sent to the remote channel manager",
    ["method", "outcome"],
)

remote_request_duration_seconds = Histogram(
    "channel_sync_remote_request_duration_seconds",
    "Remote request duration in seconds",
    ["method"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

circuit_state = Gauge(
    "channel_sync_circuit_state",
    "Circuit breaker state per remote account (0=closed, 1=half_open, 2=open)",
    ["account"],
)

rate_limited_total = Counter(
    "channel_sync_rate_limited_total",
    "Requests refused by the local token bucket",
    ["account"],
)

inbound_runs_total = Counter(
    "channel_sync_inbound_runs_total",
    "Inbound sync runs by mode and final status",
    ["mode", "status"],
)

inbound_run_duration_seconds = Histogram(
    "channel_sync_inbound_run_duration_seconds",
    "Inbound sync run duration in seconds",
    ["mode"],
    buckets=(1, 5, 15, 30, 60, 120, 300, 600, 1800),
)

queue_messages_total = Counter(
    "channel_sync_queue_messages_total",
    "Queue deliveries by outcome",
    ["channel", "outcome"],
)
