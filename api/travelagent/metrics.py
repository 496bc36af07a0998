"""
Prometheus Metrics
"""
from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

REQUEST_LATENCY = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint']
)

BOOKING_TRANSITIONS = Counter(
    'booking_transitions_total',
    'Booking lifecycle transitions',
    ['status']
)

REFUND_OUTCOMES = Counter(
    'booking_refunds_total',
    'Refund attempts on cancelled bookings',
    ['outcome']
)

SIDE_EFFECT_FAILURES = Counter(
    'side_effect_failures_total',
    'Best-effort side effects that failed (emails, notifications, analytics)',
    ['kind']
)
