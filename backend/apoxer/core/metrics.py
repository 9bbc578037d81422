"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Voting metrics
vote_operations = Counter(
    'vote_operations_total',
    'Weekly game vote operations',
    ['operation']  # cast, removed, rejected
)

round_transitions = Counter(
    'round_transitions_total',
    'Weekly round status transitions',
    ['status']  # open, locked, processed
)

# Event metrics
events_materialized = Counter(
    'events_materialized_total',
    'Events created',
    ['source']  # round, selection, manual
)

# Lobby metrics
lobbies_closed = Counter(
    'lobbies_closed_total',
    'Lobbies closed',
    ['reason']  # replaced, inactive, host_left
)

# External services
external_calls = Counter(
    'external_api_calls_total',
    'Calls to third-party APIs',
    ['service', 'result']  # steamgriddb/stripe/exophase, ok/error/skipped
)

external_latency = Histogram(
    'external_api_latency_seconds',
    'Third-party API latency',
    ['service'],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['namespace', 'result']  # hit/miss
)


def metrics_endpoint() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_vote(operation: str):
    """Operation: cast, removed, rejected"""
    vote_operations.labels(operation=operation).inc()


def record_round_transition(status: str):
    round_transitions.labels(status=status).inc()


def record_event_created(source: str):
    events_materialized.labels(source=source).inc()


def record_lobbies_closed(reason: str, count: int = 1):
    if count:
        lobbies_closed.labels(reason=reason).inc(count)


def record_external_call(service: str, result: str):
    external_calls.labels(service=service, result=result).inc()


def record_cache_operation(namespace: str, hit: bool):
    result = "hit" if hit else "miss"
    cache_operations.labels(namespace=namespace, result=result).inc()
