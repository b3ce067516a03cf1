"""Prometheus metrics for the relay"""
from prometheus_client import Counter, Histogram, Gauge, Info

from ccrelay.core.error_types import KNOWN_ERROR_TYPES

# Label value for upstream-supplied strings outside the known vocabulary
OTHER_LABEL = "other"

KNOWN_EVENT_TYPES = frozenset({
    "message_start",
    "content_block_start",
    "content_block_delta",
    "content_block_stop",
    "message_delta",
    "message_stop",
})

# Request metrics
REQUEST_COUNT = Counter(
    'ccrelay_requests_total',
    'Total number of requests',
    ['method', 'endpoint', 'status_code']
)

REQUEST_DURATION = Histogram(
    'ccrelay_request_duration_seconds',
    'Time until response headers were sent, in seconds',
    ['method', 'endpoint'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0, float('inf'))
)

ACTIVE_REQUESTS = Gauge(
    'ccrelay_active_requests',
    'Number of active requests',
    ['endpoint']
)

# Upstream metrics
UPSTREAM_ERRORS = Counter(
    'ccrelay_upstream_errors_total',
    'Upstream failures reported to callers',
    ['error_type', 'status_code']
)

STREAM_EVENTS = Counter(
    'ccrelay_stream_events_total',
    'Upstream events relayed to streaming callers',
    ['event_type']
)

CLIENT_DISCONNECTS = Counter(
    'ccrelay_client_disconnects_total',
    'Streams abandoned because the caller disconnected'
)

# Application info
APP_INFO = Info('ccrelay_app', 'Application information')


def event_type_label(event_type) -> str:
    """Bound the event_type label to the Messages stream vocabulary"""
    if isinstance(event_type, str) and event_type in KNOWN_EVENT_TYPES:
        return event_type
    return OTHER_LABEL


def error_type_label(error_type) -> str:
    """Bound the error_type label to known error types"""
    if isinstance(error_type, str) and error_type in KNOWN_ERROR_TYPES:
        return error_type
    return OTHER_LABEL
