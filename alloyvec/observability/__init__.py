"""Observability layer - logging and metrics."""

from alloyvec.observability.logging import setup_logging
from alloyvec.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
