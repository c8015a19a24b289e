"""
Decision Logging Coordinator

Keeps the identifiers of the decision being processed in a context
variable so every log line emitted while deciding carries them, including
lines from collaborators running in the same task.
"""

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class LogContext:
    """
    Request-scoped logging data for one decision.

    Attributes:
        correlation_id: Unique identifier for request tracing
        tenant_id: Owning tenant
        organization_id: Owning organization
        fingerprint: Context fingerprint, once computed
        decision_path: replay, planned or fallback, once known
        trace_id: Decision trace id, once known
        start_time: When the decision started
    """
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: Optional[str] = None
    organization_id: Optional[str] = None
    fingerprint: Optional[str] = None
    decision_path: Optional[str] = None
    trace_id: Optional[str] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_fields(self) -> Dict[str, Any]:
        return {
            "correlation_id": self.correlation_id,
            "tenant_id": self.tenant_id,
            "organization_id": self.organization_id,
            "fingerprint": self.fingerprint,
            "decision_path": self.decision_path,
            "trace_id": self.trace_id,
        }


log_context: ContextVar[Optional[LogContext]] = ContextVar("decision_log_context", default=None)


class LoggingCoordinator:
    """
    Binds a LogContext for the lifetime of one decision.

    Usable as a context manager; the previous context is restored on exit
    so nested or concurrent decisions never see each other's identifiers.
    """

    def __init__(self, **initial_context: Any):
        self.context = LogContext(**initial_context)
        self._token: Optional[Token] = None

    def start(self) -> LogContext:
        self._token = log_context.set(self.context)
        return self.context

    def update(self, **fields: Any) -> None:
        for key, value in fields.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)

    def end(self) -> Dict[str, Any]:
        """Unbind the context and return a summary for the closing log line."""
        if self._token is not None:
            log_context.reset(self._token)
            self._token = None
        duration = (datetime.now(timezone.utc) - self.context.start_time).total_seconds()
        return {"correlation_id": self.context.correlation_id, "duration_seconds": duration}

    def __enter__(self) -> "LoggingCoordinator":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end()
        return False
