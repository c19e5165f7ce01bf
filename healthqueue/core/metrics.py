"""Prometheus metrics for the queue engine.

HTTP metrics come from prometheus-fastapi-instrumentator; these cover what
happens behind the endpoints and on the realtime channel.
"""

from prometheus_client import Counter, Gauge

QUEUE_TRANSITIONS = Counter(
    "healthqueue_queue_transitions_total",
    "Accepted queue mutations by reason",
    ["reason"],
)

QUEUE_REJECTIONS = Counter(
    "healthqueue_queue_rejections_total",
    "Rejected queue mutations by error",
    ["error"],
)

HUB_SUBSCRIBERS = Gauge(
    "healthqueue_realtime_subscribers",
    "Currently connected realtime subscribers",
)

HUB_DELIVERIES = Counter(
    "healthqueue_realtime_deliveries_total",
    "Queue events queued for subscribers",
)

HUB_DROPPED_EVENTS = Counter(
    "healthqueue_realtime_dropped_events_total",
    "Queue events dropped because a subscriber fell behind",
)
