"""Prometheus metrics for cache effectiveness, fetch outcomes and HTTP latency"""

from prometheus_client import Counter, Histogram

# Cache metrics
cache_lookup_counter = Counter(
    "receivables_cache_lookups_total",
    "Result cache lookups",
    ["tier", "outcome"],  # memory | durable ; hit | miss | expired | corrupt
)

# Fetch metrics
fetch_counter = Counter(
    "receivables_fetch_total",
    "Fetches issued to the accounting system",
    ["outcome"],  # success | cancelled | timeout | transport | auth | invalid_response
)

fetch_latency_histogram = Histogram(
    "receivables_fetch_latency_seconds",
    "Accounting system response time",
    buckets=[0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_cache_lookup(tier: str, outcome: str) -> None:
    cache_lookup_counter.labels(tier=tier, outcome=outcome).inc()


def record_fetch(outcome: str) -> None:
    fetch_counter.labels(outcome=outcome).inc()
