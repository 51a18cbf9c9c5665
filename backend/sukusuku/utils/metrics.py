"""
Prometheus metrics definitions.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram

# HTTP request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Account metrics
auth_events_total = Counter(
    'auth_events_total',
    'Authentication events',
    ['event', 'provider']
)

tokens_issued_total = Counter(
    'tokens_issued_total',
    'Tokens issued',
    ['token_type']
)

# Remote credit lookups, outcome is live / stale / default
remote_credit_requests_total = Counter(
    'remote_credit_requests_total',
    'Credit values served by source',
    ['app', 'source']
)

remote_credit_latency_seconds = Histogram(
    'remote_credit_latency_seconds',
    'Remote credit lookup latency in seconds',
    ['app'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0]
)

credits_synced_total = Counter(
    'credits_synced_total',
    'Credit usage reports applied',
    ['app']
)

# Contact form
contact_submissions_total = Counter(
    'contact_submissions_total',
    'Contact form submissions',
    ['delivered']
)
