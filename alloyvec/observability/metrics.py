"""
Prometheus metrics for the vector store engine.

Defines metrics for:
- Records written and deleted
- Search counts and latency
- Connection failures

Exposing them over HTTP is left to the host application
(prometheus_client.start_http_server or its own /metrics route).
"""

import logging

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


class MetricsCollector:
    """
    Prometheus metrics collector for vector store operations.

    Usage:
        metrics = get_metrics()
        metrics.record_search("documents", "cosine_distance", latency=0.012)
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        """
        Initialize Prometheus metrics.

        Args:
            registry: Registry to register with (tests pass a fresh one)
        """
        self.records_written = Counter(
            "alloyvec_records_written_total",
            "Total number of embedding records written",
            ["table", "operation"],  # operation: insert, upsert
            registry=registry,
        )

        self.records_deleted = Counter(
            "alloyvec_records_deleted_total",
            "Total number of embedding records deleted",
            ["table"],
            registry=registry,
        )

        self.searches = Counter(
            "alloyvec_searches_total",
            "Total number of similarity searches",
            ["table", "distance_strategy"],
            registry=registry,
        )

        self.search_latency = Histogram(
            "alloyvec_search_latency_seconds",
            "Time to run a similarity search",
            ["table"],
            buckets=LATENCY_BUCKETS,
            registry=registry,
        )

        self.connection_errors = Counter(
            "alloyvec_connection_errors_total",
            "Total connection failures",
            ["error_type"],  # pool_exhausted, connect_failed, identity
            registry=registry,
        )

    def record_write(self, table: str, count: int, operation: str = "insert") -> None:
        """
        Record written embedding records.

        Args:
            table: Target table name
            count: Number of records written
            operation: insert or upsert
        """
        if count > 0:
            self.records_written.labels(table=table, operation=operation).inc(count)

    def record_delete(self, table: str, count: int) -> None:
        """Record deleted embedding records."""
        if count > 0:
            self.records_deleted.labels(table=table).inc(count)

    def record_search(self, table: str, distance_strategy: str, latency: float) -> None:
        """
        Record a completed similarity search.

        Args:
            table: Searched table name
            distance_strategy: Distance strategy value
            latency: Wall-clock latency in seconds
        """
        self.searches.labels(table=table, distance_strategy=distance_strategy).inc()
        self.search_latency.labels(table=table).observe(latency)

    def record_connection_error(self, error_type: str) -> None:
        """Record a connection failure."""
        self.connection_errors.labels(error_type=error_type).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
