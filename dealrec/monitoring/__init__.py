"""Monitoring and observability components."""

from .logger import setup_logging
from .metrics import MetricsCollector

__all__ = [
    "MetricsCollector",
    "setup_logging",
]
