"""
Prometheus metrics for the ingestion service.

Metrics exposed:
- Provider request counters and latency histogram
- Provider quota and circuit breaker gauges
- Ingested record counters per entity/outcome
- Domain event publish counters
"""
from prometheus_client import Counter, Gauge, Histogram

# Provider HTTP metrics
provider_requests_total = Counter(
    "provider_requests_total",
    "Total requests issued to external sports providers",
    ["provider", "outcome"]
)

provider_request_duration_seconds = Histogram(
    "provider_request_duration_seconds",
    "Provider request latency in seconds",
    ["provider"]
)

# Quota / breaker gauges
provider_quota_remaining = Gauge(
    "provider_quota_remaining",
    "Remaining requests in the provider's current daily window",
    ["provider"]
)

circuit_breaker_open = Gauge(
    "circuit_breaker_open",
    "1 when the provider's circuit breaker is open, 0 otherwise",
    ["provider"]
)

# Pipeline metrics
ingestion_records_total = Counter(
    "ingestion_records_total",
    "Canonical records written by the upsert engine",
    ["entity", "outcome"]
)

domain_events_published_total = Counter(
    "domain_events_published_total",
    "Domain events published on the event bus",
    ["event_key", "outcome"]
)


def record_provider_request(provider: str, outcome: str, duration_seconds: float | None = None) -> None:
    """Record one provider request outcome ('success', 'failure', 'rejected')."""
    provider_requests_total.labels(provider=provider, outcome=outcome).inc()
    if duration_seconds is not None:
        provider_request_duration_seconds.labels(provider=provider).observe(duration_seconds)


def record_upsert(entity: str, created: int, updated: int, errors: int) -> None:
    """Record the counters of one upsert batch."""
    for outcome, value in (("created", created), ("updated", updated), ("error", errors)):
        if value:
            ingestion_records_total.labels(entity=entity, outcome=outcome).inc(value)
