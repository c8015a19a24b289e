"""Decision Records & Telemetry

Emits the required dimensions of every decision as a structured log event
and keeps a bounded in-process buffer of recent records, override audits
and degraded-mode events for audit queries and tests.

Implementation Notes:
- Records are tenant-scoped; queries always filter by tenant
- The buffer is bounded; the structured log stream is the durable sink
"""

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from decisioncore.infrastructure.logging.config import get_logger
from decisioncore.infrastructure.observability import metrics
from decisioncore.models.interfaces import ITelemetryEmitter
from decisioncore.models.trace import DecisionTelemetry
from decisioncore.models.validation import OverrideAudit


class DecisionRecorder(ITelemetryEmitter):
    """
    Decision telemetry and audit recorder.

    Provides:
    - Decision record emission (procedure, version, trace, tenant, replay,
      fallback and override-required dimensions)
    - Override audit entries
    - Degraded-mode escalation (e.g. lost traces)
    """

    def __init__(self, max_records: int = 1000):
        """
        Args:
            max_records: Size of each in-process buffer
        """
        self._logger = get_logger("decisioncore.telemetry")
        self._records: Deque[DecisionTelemetry] = deque(maxlen=max_records)
        self._overrides: Deque[OverrideAudit] = deque(maxlen=max_records)
        self._degraded: Deque[Dict[str, Any]] = deque(maxlen=max_records)
        self._lock = asyncio.Lock()

    async def emit(self, record: DecisionTelemetry) -> None:
        async with self._lock:
            self._records.append(record)
        self._logger.info(
            "decision_recorded",
            success=record.success,
            failure_code=record.failure_code,
            **record.dimensions(),
        )

    async def record_override(self, audit: OverrideAudit) -> None:
        async with self._lock:
            self._overrides.append(audit)
        metrics.record_override(audit.risk_class.value)
        # justification is free text and stays out of the log stream
        self._logger.warning(
            "override_exercised",
            risk_class=audit.risk_class.value,
            override_key=audit.override_key,
            actor=audit.actor,
            tenant_id=audit.tenant_id,
            trace_id=audit.trace_id,
            justified=audit.justification is not None,
        )

    async def record_degraded(self, event: str, tenant_id: str, details: Optional[dict] = None) -> None:
        entry = {
            "event": event,
            "tenant_id": tenant_id,
            "details": dict(details or {}),
            "recorded_at": datetime.now(timezone.utc).isoformat(),
        }
        async with self._lock:
            self._degraded.append(entry)
        self._logger.warning("degraded_mode", degraded_event=event, tenant_id=tenant_id, **entry["details"])

    def records_for(self, tenant_id: str) -> List[DecisionTelemetry]:
        return [r for r in self._records if r.tenant_id == tenant_id]

    def overrides_for(self, tenant_id: str) -> List[OverrideAudit]:
        return [a for a in self._overrides if a.tenant_id == tenant_id]

    def degraded_events(self, tenant_id: str) -> List[Dict[str, Any]]:
        return [e for e in self._degraded if e["tenant_id"] == tenant_id]
