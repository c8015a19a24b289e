"""Risk, confidence and guardrail stage."""

from typing import List, Optional

from pydantic import BaseModel, Field

from decisioncore.core.guardrails.engine import GuardrailEngine, PlanCandidate
from decisioncore.models.context import RequestContext
from decisioncore.models.validation import GuardrailCheck, GuardrailResult, ValidationOutcome


class RiskAssessment(BaseModel):
    """What the risk stage hands to the override stage."""

    guardrails: GuardrailResult
    blocked: Optional[ValidationOutcome] = None
    pending: List[GuardrailCheck] = Field(default_factory=list)


class RiskStage:
    def __init__(self, engine: GuardrailEngine):
        self.engine = engine

    def evaluate(self, candidate: PlanCandidate, ctx: RequestContext) -> RiskAssessment:
        """
        Run the guardrails and classify findings.

        Critical findings block outright. Findings that need an override are
        passed on as pending, unless the candidate is a procedure that opted
        out of validation, in which case only the critical gate applies.
        """
        guardrails = self.engine.evaluate(candidate, ctx)

        if guardrails.is_critical:
            critical = [c.message for c in guardrails.findings if c.severity == guardrails.max_severity]
            return RiskAssessment(guardrails=guardrails, blocked=ValidationOutcome.blocked(critical))

        pending: List[GuardrailCheck] = []
        if candidate.requires_validation:
            pending = [c for c in guardrails.findings if c.requires_override]
        return RiskAssessment(guardrails=guardrails, pending=pending)
