"""
Prometheus metrics for geoipd
"""

import os
from prometheus_client import Counter, Gauge, generate_latest, CONTENT_TYPE_LATEST

# Build info
BUILD_INFO = Gauge(
    'geoipd_build_info',
    'Build information',
    ['version']
)

REQUESTS_TOTAL = Counter(
    'geoipd_requests_total',
    'Total number of HTTP requests',
    ['status_class']
)

LOOKUPS_TOTAL = Counter(
    'geoipd_lookups_total',
    'Total number of database lookups by result',
    ['result']
)

CACHE_TOTAL = Counter(
    'geoipd_cache_total',
    'Lookup cache hits and misses',
    ['result']
)

REFRESHES_TOTAL = Counter(
    'geoipd_refreshes_total',
    'Database refreshes by outcome',
    ['outcome']
)

INSTALLS_TOTAL = Counter(
    'geoipd_database_installs_total',
    'Number of database handles installed'
)

DATABASE_LOADED = Gauge(
    'geoipd_database_loaded',
    'Whether a database is installed (1=loaded, 0=not loaded)'
)

LAST_REFRESH = Gauge(
    'geoipd_database_last_refresh_timestamp',
    'Unix time of the last successful refresh'
)


class PrometheusMetrics:
    """Service for managing Prometheus metrics."""

    def __init__(self):
        BUILD_INFO.labels(version=os.getenv("APP_VERSION", "dev")).set(1)

    def increment_requests(self, status_code: int):
        """Increment request counter."""
        if 200 <= status_code < 300:
            status_class = "2xx"
        elif 400 <= status_code < 500:
            status_class = "4xx"
        elif 500 <= status_code < 600:
            status_class = "5xx"
        else:
            status_class = "other"
        REQUESTS_TOTAL.labels(status_class=status_class).inc()

    def increment_lookups(self, result: str):
        LOOKUPS_TOTAL.labels(result=result).inc()

    def increment_cache(self, result: str):
        CACHE_TOTAL.labels(result=result).inc()

    def increment_refreshes(self, outcome: str):
        REFRESHES_TOTAL.labels(outcome=outcome).inc()

    def increment_installs(self):
        INSTALLS_TOTAL.inc()

    def set_database_loaded(self, loaded: bool):
        DATABASE_LOADED.set(1 if loaded else 0)

    def set_last_refresh(self, timestamp: float):
        LAST_REFRESH.set(timestamp)

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics in text format."""
        return generate_latest()

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST


# Global metrics instance
prometheus_metrics = PrometheusMetrics()
