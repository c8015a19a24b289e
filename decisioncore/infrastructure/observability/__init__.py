"""Observability: Prometheus metrics and OpenTelemetry spans."""

from .tracing import get_tracer, set_span_attributes, trace

__all__ = ["get_tracer", "set_span_attributes", "trace"]
