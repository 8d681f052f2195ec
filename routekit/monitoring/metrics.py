"""
Prometheus metrics for route composition and response handling.

Metrics are module-level collectors registered once per process against the
default prometheus-client registry:

- ``routekit_routes_registered_total``: routes connected by a router
- ``routekit_routes_skipped_total``: routes skipped at registration (reason label)
- ``routekit_envelopes_total``: envelopes built, by kind, error type and status
- ``routekit_representations_total``: negotiated response representations
- ``routekit_pipeline_duration_seconds``: time spent running a route pipeline
"""

from prometheus_client import Counter, Histogram

ROUTES_REGISTERED = Counter(
    'routekit_routes_registered_total',
    'Routes connected to a router',
    ['router', 'method']
)

ROUTES_SKIPPED = Counter(
    'routekit_routes_skipped_total',
    'Routes skipped during registration',
    ['router', 'reason']
)

ENVELOPES_BUILT = Counter(
    'routekit_envelopes_total',
    'Response envelopes built',
    ['kind', 'error_type', 'status_code']
)

REPRESENTATIONS = Counter(
    'routekit_representations_total',
    'Negotiated response representations',
    ['representation', 'status_code']
)

PIPELINE_DURATION = Histogram(
    'routekit_pipeline_duration_seconds',
    'Time spent running a route pipeline',
    ['method', 'rule'],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)
