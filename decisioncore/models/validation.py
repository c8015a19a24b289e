"""Validation and guardrail models."""

from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from decisioncore.models.procedures import utc_now


class GuardrailSeverity(IntEnum):
    """Severity of a guardrail finding. Ordered so max() gives the overall severity."""
    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class GuardrailAction(str, Enum):
    ALLOW = "allow"
    FLAG = "flag"
    REDACT = "redact"
    BLOCK = "block"
    ESCALATE = "escalate"


class RiskClass(str, Enum):
    """Risk classes a caller may acknowledge with an override."""
    AFTER_HOURS = "after_hours"
    LOW_CONFIDENCE = "low_confidence"
    PROMPT_INJECTION = "prompt_injection"
    HARMFUL_CONTENT = "harmful_content"
    INDUSTRY_COMPLIANCE = "industry_compliance"
    PII = "pii"
    GROUNDEDNESS = "groundedness"


def action_for(severity: GuardrailSeverity) -> GuardrailAction:
    """Recommended action for a finding of the given severity."""
    if severity >= GuardrailSeverity.HIGH:
        return GuardrailAction.BLOCK
    if severity == GuardrailSeverity.MEDIUM:
        return GuardrailAction.REDACT
    if severity == GuardrailSeverity.LOW:
        return GuardrailAction.FLAG
    return GuardrailAction.ALLOW


class HarmAnalysis(BaseModel):
    """Content safety analyzer output."""

    severity: GuardrailSeverity = GuardrailSeverity.NONE
    categories: List[str] = Field(default_factory=list)
    confidence: float = 0.0


class GuardrailCheck(BaseModel):
    """Result of one named guardrail check."""

    model_config = ConfigDict(frozen=True)

    name: str
    passed: bool
    severity: GuardrailSeverity = GuardrailSeverity.NONE
    action: GuardrailAction = GuardrailAction.ALLOW
    risk_class: Optional[RiskClass] = None
    requires_override: bool = False
    message: str = ""
    confidence: float = 0.0


class GuardrailResult(BaseModel):
    """All guardrail checks run for one candidate, in evaluation order."""

    checks: List[GuardrailCheck] = Field(default_factory=list)

    @property
    def max_severity(self) -> GuardrailSeverity:
        return max((c.severity for c in self.checks), default=GuardrailSeverity.NONE)

    @property
    def is_critical(self) -> bool:
        return self.max_severity == GuardrailSeverity.CRITICAL

    @property
    def recommended_action(self) -> GuardrailAction:
        if self.is_critical:
            return GuardrailAction.BLOCK
        return action_for(self.max_severity)

    @property
    def findings(self) -> List[GuardrailCheck]:
        return [c for c in self.checks if not c.passed]


class ValidationStage(str, Enum):
    START = "start"
    RELEVANCE = "relevance"
    RISK = "risk_and_guardrails"
    OVERRIDE = "override"
    ALLOWED = "allowed"
    BLOCKED = "blocked"


class ValidationOutcome(BaseModel):
    """Terminal value of the validation pipeline. Never mutated after construction."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    override_required: bool = False
    reason: Optional[str] = None
    reasons: List[str] = Field(default_factory=list)

    @classmethod
    def allow(cls, reasons: Optional[List[str]] = None, override_required: bool = False) -> "ValidationOutcome":
        reasons = list(reasons or [])
        return cls(
            allowed=True,
            override_required=override_required,
            reason="; ".join(reasons) or None,
            reasons=reasons,
        )

    @classmethod
    def blocked(cls, reasons: List[str], override_required: bool = False) -> "ValidationOutcome":
        reasons = list(reasons)
        return cls(
            allowed=False,
            override_required=override_required,
            reason="; ".join(reasons) or None,
            reasons=reasons,
        )


class OverrideAudit(BaseModel):
    """Audit entry for one exercised override."""

    model_config = ConfigDict(frozen=True)

    risk_class: RiskClass
    override_key: str
    actor: str
    justification: Optional[str] = None
    tenant_id: str
    organization_id: str
    trace_id: Optional[str] = None
    overrides_snapshot: str = "{}"
    exercised_at: datetime = Field(default_factory=utc_now)


class ValidationReport(BaseModel):
    """Outcome plus the evidence that produced it."""

    outcome: ValidationOutcome
    terminal_stage: ValidationStage
    decided_at: ValidationStage
    guardrails: Optional[GuardrailResult] = None
    pending_risks: List[RiskClass] = Field(default_factory=list)
    overrides: List[OverrideAudit] = Field(default_factory=list)

    @property
    def allowed(self) -> bool:
        return self.outcome.allowed
