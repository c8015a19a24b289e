"""Trace, promotion and telemetry models."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from decisioncore.models.procedures import ExecutionResult, ProcedureStep, utc_now
from decisioncore.models.validation import ValidationOutcome


DecisionPath = Literal["replay", "planned", "fallback"]


class TracePayload(BaseModel):
    """Full decision record handed to trace capture.

    ``context`` is the PII-redacted request snapshot. ``plan`` holds the
    executed steps with request-specific values lifted back into
    placeholders, ready for promotion.
    """

    model_config = ConfigDict(frozen=True)

    tenant_id: str
    organization_id: str
    fingerprint: str
    action_type: str
    context: Dict[str, Any] = Field(default_factory=dict)
    plan: List[ProcedureStep] = Field(default_factory=list)
    decision_path: DecisionPath = "planned"
    procedure_id: Optional[str] = None
    procedure_version: Optional[int] = None
    outcome: Optional[ValidationOutcome] = None
    result: ExecutionResult
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime = Field(default_factory=utc_now)


class Trace(BaseModel):
    """Append-only record of one decision-and-execution attempt."""

    model_config = ConfigDict(frozen=True)

    trace_id: str
    payload: TracePayload
    captured_at: datetime = Field(default_factory=utc_now)

    @property
    def tenant_id(self) -> str:
        return self.payload.tenant_id

    @property
    def organization_id(self) -> str:
        return self.payload.organization_id

    @property
    def succeeded(self) -> bool:
        return self.payload.result.success


class PromotionOptions(BaseModel):
    """Options for compiling a trace into a procedure version.

    Attributes:
        tenant_id: Tenant the trace must belong to
        organization_id: Scope the procedure to this organization (None = tenant-wide)
        name: Procedure name; defaults to the trace's action type
        procedure_id: Append a version to this procedure instead of the fingerprint's
        requires_validation: Whether replays of the procedure are validated
    """

    tenant_id: str
    organization_id: Optional[str] = None
    name: Optional[str] = None
    procedure_id: Optional[str] = None
    requires_validation: bool = True


class DecisionTelemetry(BaseModel):
    """Dimensions attached to every decision, success or failure."""

    model_config = ConfigDict(frozen=True)

    procedure_id: str = ""
    procedure_version: Optional[int] = None
    trace_id: str
    tenant_id: str
    replay: bool = False
    fallback: bool = False
    override_required: bool = False
    success: bool = False
    failure_code: Optional[str] = None
    decision_path: Optional[DecisionPath] = None
    industry: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utc_now)

    def dimensions(self) -> Dict[str, Any]:
        dims = {
            "procedure_id": self.procedure_id,
            "procedure_version": self.procedure_version,
            "trace_id": self.trace_id,
            "tenant_id": self.tenant_id,
            "replay": self.replay,
            "fallback": self.fallback,
            "override_required": self.override_required,
        }
        if self.decision_path is not None:
            dims["decision_path"] = self.decision_path
        if self.industry is not None:
            dims["industry"] = self.industry
        return dims
