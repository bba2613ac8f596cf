"""
Observability module - Logging and Metrics.
"""

from giftcards.observability.logging import get_logger, log_context, setup_logging
from giftcards.observability.metrics import metrics

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
]
