"""Prometheus counters for the sync engine."""

from prometheus_client import CollectorRegistry, Counter, generate_latest

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

FETCHES = Counter("sync_fetches", "Message list fetches issued", registry=CUSTOM_REGISTRY)
FETCH_ERRORS = Counter("sync_fetch_errors", "Message list fetches that failed", registry=CUSTOM_REGISTRY)
STALE_RESULTS = Counter("sync_stale_results", "Fetch results discarded as stale", registry=CUSTOM_REGISTRY)
SKIPPED_TICKS = Counter("sync_skipped_ticks", "Poll ticks skipped", registry=CUSTOM_REGISTRY)
SENDS = Counter("sync_sends", "Messages handed to the transport", registry=CUSTOM_REGISTRY)
SEND_FAILURES = Counter("sync_send_failures", "Sends rolled back after a failure", registry=CUSTOM_REGISTRY)


def render_metrics() -> bytes:
    """Prometheus exposition text for the engine's registry."""
    return generate_latest(CUSTOM_REGISTRY)
