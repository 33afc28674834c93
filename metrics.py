"""
Prometheus counters for the watcher pipeline.
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest, start_http_server

registry = CollectorRegistry()

events_received_total = Counter(
    'jenkins_watch_events_received_total',
    'Build events accepted by the ingestor',
    ['source'],
    registry=registry,
)

events_filtered_total = Counter(
    'jenkins_watch_events_filtered_total',
    'Build events rejected by the filter rule',
    registry=registry,
)

events_duplicate_total = Counter(
    'jenkins_watch_events_duplicate_total',
    'Build events suppressed inside the debounce window',
    registry=registry,
)

malformed_events_total = Counter(
    'jenkins_watch_malformed_events_total',
    'Inbound payloads dropped as malformed',
    ['source'],
    registry=registry,
)

analyses_failed_total = Counter(
    'jenkins_watch_analyses_failed_total',
    'Builds that got a degraded notification instead of an analysis',
    registry=registry,
)

notifications_sent_total = Counter(
    'jenkins_watch_notifications_sent_total',
    'Messages delivered',
    ['platform'],
    registry=registry,
)

notification_failures_total = Counter(
    'jenkins_watch_notification_failures_total',
    'Messages that could not be delivered after all retries',
    ['platform'],
    registry=registry,
)


def render_latest() -> bytes:
    return generate_latest(registry)


def serve(port: int) -> None:
    """Expose the registry on its own HTTP port."""
    start_http_server(port, registry=registry)
