"""Validation pipeline.

State machine: Start -> Relevance -> RiskAndGuardrails -> Override ->
{Allowed | Blocked}. There is no retry inside a run; a Blocked outcome is
final for the request.
"""

import logging
from typing import Optional

from decisioncore.config.settings import ValidationSettings
from decisioncore.core.guardrails.engine import GuardrailEngine, PlanCandidate
from decisioncore.core.validation.override import OverrideStage
from decisioncore.core.validation.relevance import RelevanceStage
from decisioncore.core.validation.risk import RiskStage
from decisioncore.models.context import RequestContext
from decisioncore.models.validation import ValidationReport, ValidationStage

logger = logging.getLogger(__name__)


class ValidationPipeline:
    """Runs relevance, risk/guardrail and override stages over one candidate."""

    def __init__(self, settings: ValidationSettings, engine: GuardrailEngine):
        self.relevance = RelevanceStage(settings)
        self.risk = RiskStage(engine)
        self.override = OverrideStage(settings)

    def validate(
        self,
        candidate: PlanCandidate,
        ctx: RequestContext,
        trace_id: Optional[str] = None,
    ) -> ValidationReport:
        """
        Validate a replay plan or planned execution.

        Args:
            candidate: The plan to validate
            ctx: Request context
            trace_id: Trace id recorded on override audit entries

        Returns:
            ValidationReport whose outcome is terminal
        """
        rejected = self.relevance.evaluate(candidate, ctx)
        if rejected is not None:
            logger.info(f"Validation blocked at relevance for {candidate.kind} candidate")
            return ValidationReport(
                outcome=rejected,
                terminal_stage=ValidationStage.BLOCKED,
                decided_at=ValidationStage.RELEVANCE,
            )

        assessment = self.risk.evaluate(candidate, ctx)
        if assessment.blocked is not None:
            logger.warning(f"Validation blocked by critical guardrail for {candidate.kind} candidate")
            return ValidationReport(
                outcome=assessment.blocked,
                terminal_stage=ValidationStage.BLOCKED,
                decided_at=ValidationStage.RISK,
                guardrails=assessment.guardrails,
            )

        outcome, audits = self.override.evaluate(assessment.pending, ctx, trace_id=trace_id)
        return ValidationReport(
            outcome=outcome,
            terminal_stage=ValidationStage.ALLOWED if outcome.allowed else ValidationStage.BLOCKED,
            decided_at=ValidationStage.OVERRIDE if assessment.pending else ValidationStage.RISK,
            guardrails=assessment.guardrails,
            pending_risks=[c.risk_class for c in assessment.pending if c.risk_class is not None],
            overrides=audits,
        )
