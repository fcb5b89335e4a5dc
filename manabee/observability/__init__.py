"""
Observability module - Logging, Metrics, and Tracing.
"""

from manabee.observability.logging import get_logger, log_context, setup_logging
from manabee.observability.metrics import metrics
from manabee.observability.tracing import setup_tracing, trace_operation

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
    "setup_tracing",
    "trace_operation",
]
