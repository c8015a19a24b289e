"""
Decision Core Logging Configuration

Configures structlog over the standard library with JSON formatting,
decision context injection and OpenTelemetry span correlation.
"""

import logging
from typing import Any, Dict, Optional

import structlog
from opentelemetry import trace


class DecisionCoreLogger:
    """
    Structured logging configuration.

    Sets up a processor chain that handles level filtering, logger name and
    level, ISO timestamps, exception formatting, decision context injection,
    trace context and final rendering.
    """

    def __init__(self, level: str = "INFO", json_output: bool = True):
        self.level = level
        self.json_output = json_output
        self.configure_structlog()

    def configure_structlog(self) -> None:
        logging.basicConfig(
            format="%(message)s",
            level=getattr(logging, self.level.upper(), logging.INFO),
        )

        renderer = (
            structlog.processors.JSONRenderer()
            if self.json_output
            else structlog.dev.ConsoleRenderer(colors=False)
        )

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                self.add_decision_context,
                self.add_trace_context,
                renderer,
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    @staticmethod
    def add_decision_context(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """
        Inject the active decision's identifiers into the event.

        Fields already present on the event are left alone.
        """
        # Import here to avoid circular imports
        from decisioncore.infrastructure.logging.coordinator import log_context

        ctx = log_context.get()
        if ctx:
            for key, value in ctx.as_fields().items():
                if key not in event_dict and value is not None:
                    event_dict[key] = value
        return event_dict

    @staticmethod
    def add_trace_context(logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Add OpenTelemetry trace and span ids when a span is recording."""
        span = trace.get_current_span()
        if span and span.is_recording():
            span_context = span.get_span_context()
            # decision trace ids use the "trace_id" key, so span ids get their own
            if "otel_trace_id" not in event_dict:
                event_dict["otel_trace_id"] = format(span_context.trace_id, "032x")
            if "otel_span_id" not in event_dict:
                event_dict["otel_span_id"] = format(span_context.span_id, "016x")
        return event_dict


_logger_config: Optional[DecisionCoreLogger] = None


def configure_logging(level: str = "INFO", json_output: bool = True) -> DecisionCoreLogger:
    """(Re)configure structlog. Called once by the container with settings values."""
    global _logger_config
    _logger_config = DecisionCoreLogger(level=level, json_output=json_output)
    return _logger_config


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name, typically module or class name

    Returns:
        Configured structlog BoundLogger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("replay_hit", procedure_id="p-1", version=3)
    """
    global _logger_config
    if _logger_config is None:
        _logger_config = DecisionCoreLogger()
    return structlog.get_logger(name)
