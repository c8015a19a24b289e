"""Procedural Memory Service

Looks up replay candidates by fingerprint, captures decision traces and
promotes traces into new procedure versions.

Key Features:
- Latest non-deprecated version per procedure; among competing procedures
  the highest recorded success rate wins, then organization-scoped
  procedures, then the most recent promotion
- Placeholder binding of argument templates from request parameters and
  context identifiers; a template that cannot be bound is treated as a miss
- Bounded-retry trace capture through the collaborator client
- Idempotent promotion per (tenant, trace id)
"""

import uuid
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from decisioncore.config.settings import TraceSettings
from decisioncore.exceptions import PromotionException, TraceCaptureException
from decisioncore.infrastructure.base_client import BaseExternalClient
from decisioncore.infrastructure.observability.tracing import trace
from decisioncore.models.context import ParamKind, RequestContext
from decisioncore.models.interfaces import IProcedureStore, ISanitizer
from decisioncore.models.procedures import (
    PLACEHOLDER_PATTERN,
    PlannedStep,
    Procedure,
    ProcedureStep,
    ReplayPlan,
)
from decisioncore.models.trace import PromotionOptions, Trace, TracePayload


MAX_PROMOTION_ATTEMPTS = 3


class ReplayLookup(BaseModel):
    """Lookup request: the request context and its fingerprint."""

    context: RequestContext
    fingerprint: str


class TraceCaptureClient(BaseExternalClient):
    """Trace writes, behind a breaker of their own so lost traces never trip lookups."""

    def __init__(self):
        super().__init__(
            client_name="trace_capture",
            service_name="TraceSink",
            enable_circuit_breaker=True,
            circuit_breaker_threshold=5,
            circuit_breaker_timeout=30,
        )


class ProceduralMemoryService(BaseExternalClient):
    """Replay lookup, trace capture and promotion over an IProcedureStore."""

    def __init__(
        self,
        store: IProcedureStore,
        sanitizer: ISanitizer,
        trace_settings: Optional[TraceSettings] = None,
    ):
        super().__init__(
            client_name="procedural_memory",
            service_name="ProcedureStore",
            enable_circuit_breaker=True,
            circuit_breaker_threshold=5,
            circuit_breaker_timeout=30,
        )
        self.store = store
        self.sanitizer = sanitizer
        self.trace_settings = trace_settings or TraceSettings()
        self.trace_client = TraceCaptureClient()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @trace("procedural_memory_try_get_replay")
    async def try_get_replay(self, lookup: ReplayLookup) -> Optional[ReplayPlan]:
        """
        Find a replay plan for the lookup's fingerprint.

        Args:
            lookup: Request context and fingerprint

        Returns:
            A bound ReplayPlan, or None on a miss

        Raises:
            ProcedureStoreException: If the store cannot be read
            CircuitBreakerError: If the store circuit is open
        """
        ctx = lookup.context
        procedures = await self.call_external(
            "find_procedures", self.store.find_procedures, ctx.tenant_id, lookup.fingerprint
        )

        latest: Dict[str, Procedure] = {}
        for procedure in procedures:
            if procedure.tenant_id != ctx.tenant_id or procedure.deprecated:
                continue
            if procedure.organization_id and procedure.organization_id != ctx.organization_id:
                continue
            current = latest.get(procedure.procedure_id)
            if current is None or procedure.version > current.version:
                latest[procedure.procedure_id] = procedure

        if not latest:
            self.logger.debug("replay_miss", reason="no_procedure")
            return None

        rates = {
            procedure_id: await self.call_external(
                "get_success_rate", self.store.get_success_rate, ctx.tenant_id, procedure_id
            )
            for procedure_id in latest
        }
        if len(latest) > 1:
            self.logger.warning("replay_fingerprint_collision", candidates=len(latest))

        ranked = sorted(
            latest.values(),
            key=lambda p: (
                rates[p.procedure_id] is not None,
                rates[p.procedure_id] or 0.0,
                p.organization_id is not None,
                p.promoted_at,
            ),
            reverse=True,
        )
        for procedure in ranked:
            steps = self.bind_steps(procedure.steps, ctx)
            if steps is None:
                self.logger.info(
                    "replay_unbindable",
                    procedure_id=procedure.procedure_id,
                    version=procedure.version,
                )
                continue
            rate = rates[procedure.procedure_id]
            self.logger.info("replay_hit", procedure_id=procedure.procedure_id, version=procedure.version)
            return ReplayPlan(
                procedure=procedure,
                trace_id=str(uuid.uuid4()),
                steps=steps,
                confidence=1.0 if rate is None else rate,
            )
        return None

    @staticmethod
    def bind_steps(steps: Sequence[ProcedureStep], ctx: RequestContext) -> Optional[List[PlannedStep]]:
        """Resolve argument templates. None when any placeholder is unresolvable."""
        identity = ctx.identity()
        unresolved: List[str] = []

        def resolve(match) -> str:
            name = match.group(1)
            value = ctx.param(name)
            if value is not None:
                return value.as_text()
            if identity.get(name) is not None:
                return identity[name]
            unresolved.append(name)
            return match.group(0)

        bound: List[PlannedStep] = []
        for step in steps:
            arguments = {
                key: PLACEHOLDER_PATTERN.sub(resolve, template)
                for key, template in step.argument_template.items()
            }
            bound.append(PlannedStep(kind=step.kind, name=step.name, arguments=arguments))
        return None if unresolved else bound

    # ------------------------------------------------------------------
    # Trace capture
    # ------------------------------------------------------------------

    def template_steps(self, steps: Sequence[PlannedStep], ctx: RequestContext) -> List[ProcedureStep]:
        """Lift request-specific argument values back into placeholders.

        Values that equal a context identifier or a parameter become
        ``{name}``; remaining literals are PII-redacted.
        """
        bindings: Dict[str, str] = {}
        for name, value in ctx.identity().items():
            if value:
                bindings.setdefault(value, name)
        for name, value in ctx.parameters.items():
            if not PLACEHOLDER_PATTERN.fullmatch("{" + name + "}"):
                continue
            if value.kind == ParamKind.STRING_LIST:
                continue
            text = value.as_text()
            if text:
                bindings.setdefault(text, name)

        templated: List[ProcedureStep] = []
        for step in steps:
            argument_template = {}
            for key, value in step.arguments.items():
                if value in bindings:
                    argument_template[key] = "{" + bindings[value] + "}"
                else:
                    argument_template[key] = self.sanitizer.sanitize(value)
            templated.append(ProcedureStep(kind=step.kind, name=step.name, argument_template=argument_template))
        return templated

    def snapshot_context(self, ctx: RequestContext) -> Dict[str, Any]:
        """PII-redacted snapshot of the request for the trace."""
        return {
            "tenant_id": ctx.tenant_id,
            "organization_id": ctx.organization_id,
            "user_id": ctx.user_id,
            "contact_id": ctx.contact_id,
            "action_type": ctx.action_type,
            "channel": ctx.channel,
            "industry": ctx.industry,
            "risk_band": ctx.risk_band,
            "parameters": self.sanitizer.sanitize({k: v.to_raw() for k, v in ctx.parameters.items()}),
            "user_overrides": self.sanitizer.sanitize({k: v.to_raw() for k, v in ctx.user_overrides.items()}),
        }

    @trace("procedural_memory_capture_trace")
    async def capture_trace(self, trace_id: str, payload: TracePayload) -> Trace:
        """
        Persist a decision trace with bounded retry.

        Args:
            trace_id: Decision trace id
            payload: Full decision record

        Returns:
            The captured trace

        Raises:
            TraceCaptureException: If the trace could not be persisted, or its
                id was already taken by an earlier trace
        """
        record = Trace(trace_id=trace_id, payload=payload)
        try:
            created = await self.trace_client.call_external(
                "save_trace",
                self.store.save_trace,
                record,
                timeout=self.trace_settings.capture_timeout_seconds,
                retries=self.trace_settings.capture_retries,
                retry_delay=self.trace_settings.capture_retry_delay_seconds,
            )
        except Exception as e:
            raise TraceCaptureException(
                "Trace could not be persisted",
                details={"trace_id": trace_id, "error_type": type(e).__name__},
            ) from e
        if not created:
            self.logger.warning("trace_id_reused", trace_id=trace_id)
            raise TraceCaptureException(
                "Trace id already captured; the new trace was dropped",
                details={"trace_id": trace_id, "error_type": "DuplicateTraceId"},
            )
        return record

    # ------------------------------------------------------------------
    # Promotion and deprecation
    # ------------------------------------------------------------------

    async def _resolve_procedure_id(self, captured: Trace, options: PromotionOptions) -> str:
        if options.procedure_id:
            return options.procedure_id
        if captured.payload.procedure_id:
            return captured.payload.procedure_id
        existing = await self.store.find_procedures(options.tenant_id, captured.payload.fingerprint)
        for procedure in sorted(existing, key=lambda p: p.procedure_id):
            if procedure.organization_id == options.organization_id:
                return procedure.procedure_id
        return f"proc-{uuid.uuid4().hex[:12]}"

    @trace("procedural_memory_promote")
    async def promote(self, trace_id: str, options: PromotionOptions) -> Procedure:
        """
        Compile a captured trace into a new procedure version.

        Promoting the same trace twice returns the version created the first
        time instead of creating another one.

        Args:
            trace_id: Captured trace to compile
            options: Tenant scope and naming options

        Returns:
            The promoted procedure version

        Raises:
            PromotionException: If the trace is unknown, was blocked or
                failed, has no steps, or cannot be stored
        """
        promoted = await self.store.find_promotion(options.tenant_id, trace_id)
        if promoted is not None:
            return promoted

        captured = await self.store.get_trace(options.tenant_id, trace_id)
        if captured is None:
            raise PromotionException("Trace not found", details={"trace_id": trace_id})
        payload = captured.payload
        if payload.outcome is None or not payload.outcome.allowed or not payload.result.success:
            raise PromotionException(
                "Only allowed and successfully executed traces can be promoted",
                details={"trace_id": trace_id, "decision_path": payload.decision_path},
            )
        if not payload.plan:
            raise PromotionException("Trace has no executed steps to compile", details={"trace_id": trace_id})

        procedure_id = await self._resolve_procedure_id(captured, options)
        for _ in range(MAX_PROMOTION_ATTEMPTS):
            versions = await self.store.get_versions(options.tenant_id, procedure_id)
            next_version = max((p.version for p in versions), default=0) + 1
            procedure = Procedure(
                procedure_id=procedure_id,
                version=next_version,
                name=options.name or captured.payload.action_type,
                tenant_id=options.tenant_id,
                organization_id=options.organization_id,
                fingerprint=captured.payload.fingerprint,
                steps=list(captured.payload.plan),
                requires_validation=options.requires_validation,
                source_trace_id=trace_id,
            )
            if await self.store.save_procedure(procedure):
                self.logger.info("procedure_promoted", procedure_id=procedure_id, version=next_version)
                return procedure
            # lost a race: either the trace was promoted concurrently or the version was taken
            promoted = await self.store.find_promotion(options.tenant_id, trace_id)
            if promoted is not None:
                return promoted

        raise PromotionException(
            "Could not allocate a procedure version",
            details={"trace_id": trace_id, "procedure_id": procedure_id},
        )

    async def deprecate(self, tenant_id: str, procedure_id: str, version: int) -> bool:
        """Mark a version unusable for replay. Returns False when it does not exist."""
        updated = await self.store.set_deprecated(tenant_id, procedure_id, version, True)
        if updated:
            self.logger.info("procedure_deprecated", procedure_id=procedure_id, version=version)
        return updated
