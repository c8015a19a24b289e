"""Guardrail engine.

Runs the risk and guardrail checks over a candidate plan in a fixed order:
content safety (with industry compliance), PII, prompt injection,
groundedness, channel/timing and planner confidence. Pure and synchronous.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional, Union

from decisioncore.config.settings import ValidationSettings
from decisioncore.core.guardrails import checks
from decisioncore.infrastructure.observability.metrics import record_guardrail_finding
from decisioncore.models.context import RequestContext
from decisioncore.models.interfaces import IContentSafetyAnalyzer, ISanitizer
from decisioncore.models.procedures import PlannedExecution, ReplayPlan
from decisioncore.models.validation import GuardrailCheck, GuardrailResult

PlanCandidate = Union[ReplayPlan, PlannedExecution]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GuardrailEngine:
    """Evaluates every guardrail check for one candidate."""

    def __init__(
        self,
        settings: ValidationSettings,
        sanitizer: ISanitizer,
        analyzer: Optional[IContentSafetyAnalyzer] = None,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.settings = settings
        self.sanitizer = sanitizer
        self.analyzer = analyzer or checks.PatternHarmAnalyzer()
        self.clock = clock

    def evaluate(
        self,
        candidate: PlanCandidate,
        ctx: RequestContext,
        now: Optional[datetime] = None,
    ) -> GuardrailResult:
        """
        Run all applicable checks.

        Args:
            candidate: Replay plan or planned execution
            ctx: Request context
            now: Fallback time for a missing or malformed occurrence timestamp

        Returns:
            GuardrailResult with checks in evaluation order
        """
        now = now or self.clock()
        text = candidate.text()
        results: List[Optional[GuardrailCheck]] = [
            # (a) content safety, then industry compliance
            checks.check_content_safety(text, self.analyzer),
            checks.check_industry_compliance(text, ctx.industry),
            # (b) PII
            checks.check_pii(text, self.sanitizer),
            # (c) prompt injection
            checks.check_prompt_injection(text),
            # (d) groundedness
            checks.check_groundedness(text, candidate.source_documents, self.settings.groundedness_threshold),
            # (e) channel/timing
            checks.check_after_hours(
                ctx.channel,
                checks.parse_occurred_at(ctx.param(self.settings.occurred_at_parameter), now),
                self.settings.after_hours_channels,
                self.settings.after_hours_start_hour,
                self.settings.after_hours_end_hour,
            ),
            # (f) planner confidence
            checks.check_confidence(candidate.confidence, self.settings.confidence_threshold),
        ]
        result = GuardrailResult(checks=[c for c in results if c is not None])
        for finding in result.findings:
            record_guardrail_finding(finding.name, finding.severity.name.lower())
        return result
