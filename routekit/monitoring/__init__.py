"""Structured logging and Prometheus metrics for routekit."""

from routekit.monitoring.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_structured_logging,
)

__all__ = [
    'bind_request_context',
    'clear_request_context',
    'get_logger',
    'setup_structured_logging',
]
