"""Monitoring: logging setup and metrics."""

from basket_engine.monitoring.metrics import MetricsCollector
from basket_engine.monitoring.logs import setup_logging

__all__ = ["MetricsCollector", "setup_logging"]
