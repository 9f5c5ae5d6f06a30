"""
Careflow Observability

Structured logging configuration.
"""

from careflow.observability.logging import LogLevel, configure_logging, get_logger

__all__ = ["LogLevel", "configure_logging", "get_logger"]
