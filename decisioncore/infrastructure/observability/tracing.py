"""tracing.py

Purpose: OpenTelemetry spans around decision operations

Key Components:
  def get_tracer():
  def trace(name: str):
"""

import functools
from typing import Any, Callable, Dict, Optional

from opentelemetry import trace as otel_trace
from opentelemetry.trace import Status, StatusCode


TRACER_NAME = "decisioncore"


def get_tracer():
    """Return the decision core tracer from the globally configured provider."""
    return otel_trace.get_tracer(TRACER_NAME)


def set_span_attributes(attributes: Dict[str, Any]) -> None:
    """Attach attributes to the current span, skipping None values."""
    span = otel_trace.get_current_span()
    if span is None or not span.is_recording():
        return
    for key, value in attributes.items():
        if value is not None:
            span.set_attribute(key, value)


def trace(name: str, attributes: Optional[Dict[str, Any]] = None):
    """
    Decorator wrapping an async function in an OpenTelemetry span.

    Exceptions are recorded on the span and re-raised unchanged.

    Args:
        name: Name for the span
        attributes: Optional static span attributes

    Returns:
        Decorated coroutine function
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            with get_tracer().start_as_current_span(
                name, record_exception=False, set_status_on_exception=False
            ) as span:
                if attributes:
                    for key, value in attributes.items():
                        span.set_attribute(key, value)
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    span.record_exception(e)
                    span.set_status(Status(StatusCode.ERROR, type(e).__name__))
                    raise

        return wrapper

    return decorator
