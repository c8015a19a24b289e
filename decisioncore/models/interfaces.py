# File: decisioncore/models/interfaces.py
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from decisioncore.models.procedures import PlannerResponse, PlanningRequest, Procedure
from decisioncore.models.trace import DecisionTelemetry, Trace
from decisioncore.models.validation import HarmAnalysis, OverrideAudit


class IProcedureStore(ABC):
    """Persistence contract for procedures and traces.

    Every operation is scoped by tenant. Implementations must never return
    a record owned by another tenant, whatever the other arguments are.
    """

    @abstractmethod
    async def find_procedures(self, tenant_id: str, fingerprint: str) -> List[Procedure]:
        """Return every stored version of every procedure mapped to the fingerprint.

        Args:
            tenant_id: Owning tenant
            fingerprint: Context fingerprint

        Returns:
            Procedure versions, deprecated ones included, in no particular order
        """
        pass

    @abstractmethod
    async def get_versions(self, tenant_id: str, procedure_id: str) -> List[Procedure]:
        """Return all versions of one procedure ordered by version ascending."""
        pass

    @abstractmethod
    async def save_procedure(self, procedure: Procedure) -> bool:
        """Store a new procedure version.

        Returns:
            False if that (procedure_id, version) already exists
        """
        pass

    @abstractmethod
    async def set_deprecated(self, tenant_id: str, procedure_id: str, version: int, deprecated: bool = True) -> bool:
        """Mark a version (un)usable for replay. Returns False when the version is unknown."""
        pass

    @abstractmethod
    async def find_promotion(self, tenant_id: str, trace_id: str) -> Optional[Procedure]:
        """Return the procedure version promoted from the trace, if any."""
        pass

    @abstractmethod
    async def save_trace(self, trace: Trace) -> bool:
        """Append a trace. Returns False when the trace id already exists (traces are immutable)."""
        pass

    @abstractmethod
    async def get_trace(self, tenant_id: str, trace_id: str) -> Optional[Trace]:
        pass

    @abstractmethod
    async def get_success_rate(self, tenant_id: str, procedure_id: str) -> Optional[float]:
        """Success rate over traces that executed the procedure, None when it never ran."""
        pass


class IAgentPlanner(ABC):
    """AI planner collaborator. Its internal model is opaque to the core."""

    @abstractmethod
    async def plan(self, request: PlanningRequest) -> PlannerResponse:
        """Turn an action request into candidate steps with a confidence score."""
        pass


class IContentSafetyAnalyzer(ABC):
    """Content safety / harm analysis. Synchronous: it runs inside the pure pipeline."""

    @abstractmethod
    def analyze(self, text: str) -> HarmAnalysis:
        pass


class ISanitizer(ABC):
    """PII detection and redaction."""

    @abstractmethod
    def sanitize(self, data: Any) -> Any:
        """Return a copy of data with PII replaced by redaction markers."""
        pass

    @abstractmethod
    def detect(self, text: str) -> List[str]:
        """Return the PII entity types found in text."""
        pass


class ITelemetryEmitter(ABC):
    """Decision telemetry and audit sink."""

    @abstractmethod
    async def emit(self, record: DecisionTelemetry) -> None:
        pass

    @abstractmethod
    async def record_override(self, audit: OverrideAudit) -> None:
        pass

    @abstractmethod
    async def record_degraded(self, event: str, tenant_id: str, details: Optional[dict] = None) -> None:
        """Escalate a degraded-mode condition such as a lost trace."""
        pass
