"""
Decision Core Logging Infrastructure

- coordinator: decision-scoped context management using contextvars
- config: structlog configuration with JSON formatting and processors
"""

from .config import DecisionCoreLogger, configure_logging, get_logger
from .coordinator import LogContext, LoggingCoordinator, log_context

__all__ = [
    "DecisionCoreLogger",
    "LogContext",
    "LoggingCoordinator",
    "configure_logging",
    "get_logger",
    "log_context",
]
