"""Infrastructure layer: logging, observability, persistence, security and telemetry."""
