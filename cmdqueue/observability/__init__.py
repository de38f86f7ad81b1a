"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from cmdqueue.observability.logging import bind_context, clear_context, setup_logging
from cmdqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from cmdqueue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing

__all__ = [
    "setup_logging",
    "bind_context",
    "clear_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "instrument_sqlalchemy",
]
