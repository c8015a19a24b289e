"""Relevance stage.

Rejects plans that belong to another tenant and requests carrying
privacy-sensitive tags without a declared bypass. A relevance rejection
short-circuits the pipeline and can never be overridden.
"""

from typing import Optional

from decisioncore.config.settings import ValidationSettings
from decisioncore.core.guardrails.engine import PlanCandidate
from decisioncore.models.context import RequestContext
from decisioncore.models.validation import ValidationOutcome


class RelevanceStage:
    def __init__(self, settings: ValidationSettings):
        self.settings = settings

    def has_privacy_tag(self, ctx: RequestContext) -> bool:
        tags = ctx.param(self.settings.tags_parameter)
        if tags is None:
            return False
        wanted = self.settings.privacy_tag.casefold()
        return any(tag.strip().casefold() == wanted for tag in tags.as_list())

    def evaluate(self, candidate: PlanCandidate, ctx: RequestContext) -> Optional[ValidationOutcome]:
        """
        Returns:
            A blocked outcome, or None when the candidate is relevant
        """
        if candidate.tenant_id != ctx.tenant_id:
            return ValidationOutcome.blocked(["Plan does not belong to the requesting tenant"])

        if self.has_privacy_tag(ctx) and not ctx.override_flag(self.settings.bypass_privacy_key):
            return ValidationOutcome.blocked(
                [f"Request is tagged {self.settings.privacy_tag} and no privacy bypass was declared"]
            )
        return None
