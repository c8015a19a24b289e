"""Override stage.

Every pending finding must be acknowledged by its risk class's override
key set to boolean true. Each acknowledgment produces an audit entry, and
the outcome always carries a reason per pending finding.
"""

from typing import List, Optional, Sequence, Tuple

from decisioncore.config.settings import ValidationSettings
from decisioncore.models.context import ParamKind, RequestContext
from decisioncore.models.validation import GuardrailCheck, OverrideAudit, ValidationOutcome


UNKNOWN_ACTOR = "unknown"


class OverrideStage:
    def __init__(self, settings: ValidationSettings):
        self.settings = settings

    def _justification(self, ctx: RequestContext) -> Optional[str]:
        value = ctx.override(self.settings.override_reason_key)
        if value is None or value.kind != ParamKind.STRING:
            return None
        return str(value.value).strip() or None

    def evaluate(
        self,
        pending: Sequence[GuardrailCheck],
        ctx: RequestContext,
        trace_id: Optional[str] = None,
    ) -> Tuple[ValidationOutcome, List[OverrideAudit]]:
        if not pending:
            return ValidationOutcome.allow(), []

        reasons: List[str] = []
        audits: List[OverrideAudit] = []
        unresolved = False

        for finding in pending:
            key = self.settings.override_keys.get(finding.risk_class.value) if finding.risk_class else None
            if key is None:
                unresolved = True
                reasons.append(f"{finding.message}; no override is available for this risk")
                continue
            if ctx.override_flag(key):
                reasons.append(f"{finding.message}; override '{key}' acknowledged")
                audits.append(OverrideAudit(
                    risk_class=finding.risk_class,
                    override_key=key,
                    actor=ctx.user_id or UNKNOWN_ACTOR,
                    justification=self._justification(ctx),
                    tenant_id=ctx.tenant_id,
                    organization_id=ctx.organization_id,
                    trace_id=trace_id,
                    overrides_snapshot=ctx.overrides_audit_json(),
                ))
            else:
                unresolved = True
                reasons.append(f"{finding.message}; override '{key}' required")

        if unresolved:
            # nothing was exercised if the action stays blocked
            return ValidationOutcome.blocked(reasons, override_required=True), []
        return ValidationOutcome.allow(reasons, override_required=True), audits
