"""Decision Orchestrator

Composes the decision flow for one request:

    fingerprint -> replay lookup -> [hit: validate replay | miss: plan -> validate]
    -> execute or block -> capture trace -> emit telemetry

Collaborator failures become ExecutionResult failures with a reason code.
Only tenant-isolation violations are raised to the caller. A lost trace is
escalated as a degraded-mode event and never fails the decision.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Union

from decisioncore.config.settings import OrchestratorSettings, TelemetrySettings
from decisioncore.core.fingerprint import FingerprintBuilder
from decisioncore.core.validation.pipeline import ValidationPipeline
from decisioncore.exceptions import PlannerException, TraceCaptureException
from decisioncore.infrastructure.logging.config import get_logger
from decisioncore.infrastructure.logging.coordinator import LoggingCoordinator
from decisioncore.infrastructure.observability import metrics
from decisioncore.infrastructure.observability.tracing import get_tracer
from decisioncore.models.context import RequestContext
from decisioncore.models.interfaces import ITelemetryEmitter
from decisioncore.models.procedures import (
    ExecutionResult,
    FailureCode,
    PlannedExecution,
    ReplayPlan,
)
from decisioncore.models.trace import DecisionTelemetry, TracePayload
from decisioncore.models.validation import ValidationReport
from decisioncore.services.planner_gateway import AgentPlannerGateway
from decisioncore.services.procedural_memory import ProceduralMemoryService, ReplayLookup
from decisioncore.services.procedure_executor import ProcedureExecutor


PLANNING_UNAVAILABLE = "planning unavailable"
PROCEDURE_STORE_UNAVAILABLE = "procedure store unavailable"
EXECUTION_FAILED = "execution failed"


@dataclass
class _Decision:
    """Mutable bookkeeping for one decide() call. Never shared between calls."""
    ctx: RequestContext
    fingerprint: str
    started_at: datetime
    candidate: Optional[Union[ReplayPlan, PlannedExecution]] = None
    replay: Optional[ReplayPlan] = None
    report: Optional[ValidationReport] = None
    fallback: bool = False
    result: Optional[ExecutionResult] = None
    reports: List[ValidationReport] = field(default_factory=list)
    generated_trace_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def path(self) -> str:
        if self.fallback:
            return "fallback"
        if isinstance(self.candidate, ReplayPlan):
            return "replay"
        return "planned"

    @property
    def trace_id(self) -> str:
        if self.candidate is not None:
            return self.candidate.trace_id
        if self.replay is not None:
            return self.replay.trace_id
        return self.generated_trace_id


class Orchestrator:
    """Single entry point of the decision core."""

    def __init__(
        self,
        fingerprints: FingerprintBuilder,
        memory: ProceduralMemoryService,
        planner: AgentPlannerGateway,
        pipeline: ValidationPipeline,
        executor: ProcedureExecutor,
        telemetry: ITelemetryEmitter,
        settings: Optional[OrchestratorSettings] = None,
        telemetry_settings: Optional[TelemetrySettings] = None,
    ):
        self.fingerprints = fingerprints
        self.memory = memory
        self.planner = planner
        self.pipeline = pipeline
        self.executor = executor
        self.telemetry = telemetry
        self.settings = settings or OrchestratorSettings()
        self.telemetry_settings = telemetry_settings or TelemetrySettings()
        self.logger = get_logger("decisioncore.orchestrator")

    async def decide(self, ctx: RequestContext, timeout: Optional[float] = None) -> ExecutionResult:
        """
        Decide on and, when allowed, execute the requested action.

        Args:
            ctx: Request context
            timeout: Optional overall budget in seconds bounding planning and execution

        Returns:
            ExecutionResult; denials and collaborator failures carry a FailureReason

        Raises:
            TenantIsolationError: If the context lacks tenant or organization ids
            asyncio.CancelledError: If the caller cancels the request
        """
        fingerprint = self.fingerprints.fingerprint(ctx)
        deadline = time.monotonic() + timeout if timeout else None
        decision = _Decision(ctx=ctx, fingerprint=fingerprint, started_at=datetime.now(timezone.utc))
        started = time.monotonic()

        with LoggingCoordinator(
            tenant_id=ctx.tenant_id,
            organization_id=ctx.organization_id,
            fingerprint=fingerprint,
        ) as coordinator, get_tracer().start_as_current_span("decisioncore.decide") as span:
            await self._run(decision, deadline)
            coordinator.update(decision_path=decision.path, trace_id=decision.trace_id)

            result = decision.result.model_copy(update={
                "trace_id": decision.trace_id,
                "procedure_id": decision.replay.procedure.procedure_id if decision.replay else None,
                "procedure_version": decision.replay.procedure.version if decision.replay else None,
                "replay": isinstance(decision.candidate, ReplayPlan),
                "fallback": decision.fallback,
                "override_required": decision.report.outcome.override_required if decision.report else False,
            })
            decision.result = result

            await self._capture(decision)
            await self._emit(decision)

            outcome = "success" if result.success else result.failure_reason.code.value
            metrics.record_decision(decision.path, outcome, time.monotonic() - started)
            span.set_attribute("decisioncore.path", decision.path)
            span.set_attribute("decisioncore.success", result.success)
            span.set_attribute("decisioncore.trace_id", decision.trace_id)
            self.logger.info(
                "decision_completed",
                success=result.success,
                outcome=outcome,
                replay=result.replay,
                fallback=result.fallback,
                override_required=result.override_required,
            )
            return result

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    async def _run(self, decision: _Decision, deadline: Optional[float]) -> None:
        ctx = decision.ctx
        try:
            decision.replay = await self.memory.try_get_replay(
                ReplayLookup(context=ctx, fingerprint=decision.fingerprint)
            )
        except Exception as e:
            self.logger.error("replay_lookup_failed", error_type=type(e).__name__)
            decision.result = ExecutionResult.failed(
                FailureCode.PROCEDURE_STORE_UNAVAILABLE, PROCEDURE_STORE_UNAVAILABLE
            )
            return

        if decision.replay is not None:
            report = self._validate(decision.replay, ctx)
            decision.reports.append(report)
            if report.allowed:
                decision.candidate = decision.replay
                decision.report = report
                decision.result = await self._execute(
                    lambda: self.executor.execute(decision.replay.steps, ctx), deadline
                )
                await self._record_overrides(report)
                return
            if not self.settings.fallback_on_replay_denial:
                decision.candidate = decision.replay
                decision.report = report
                decision.result = self._denial(report)
                return
            self.logger.info("replay_denied_falling_back", procedure_id=decision.replay.procedure.procedure_id)
            decision.fallback = True

        try:
            planned = await self.planner.plan(ctx, timeout=self._remaining(deadline, self.settings.planner_timeout_seconds))
        except PlannerException as e:
            self.logger.warning("planning_failed", error_type=type(e).__name__)
            if decision.fallback:
                # the replay denial is the more useful answer for the caller
                decision.candidate = decision.replay
                decision.report = decision.reports[-1]
                decision.fallback = False
                decision.result = self._denial(decision.report)
            else:
                decision.result = ExecutionResult.failed(FailureCode.PLANNING_UNAVAILABLE, PLANNING_UNAVAILABLE)
            return

        report = self._validate(planned, ctx)
        decision.reports.append(report)
        decision.candidate = planned
        decision.report = report
        if not report.allowed:
            decision.result = self._denial(report)
            return
        decision.result = await self._execute(planned.run, deadline)
        await self._record_overrides(report)

    def _validate(self, candidate: Union[ReplayPlan, PlannedExecution], ctx: RequestContext) -> ValidationReport:
        with get_tracer().start_as_current_span("decisioncore.validate") as span:
            report = self.pipeline.validate(candidate, ctx, trace_id=candidate.trace_id)
            span.set_attribute("decisioncore.candidate", candidate.kind)
            span.set_attribute("decisioncore.allowed", report.allowed)
            return report

    def _remaining(self, deadline: Optional[float], budget: float) -> float:
        if deadline is None:
            return budget
        # a spent budget still gets a minimal slice so the timeout is reported by the callee
        return max(min(budget, deadline - time.monotonic()), 0.001)

    async def _execute(
        self,
        work: Callable[[], Awaitable[ExecutionResult]],
        deadline: Optional[float],
    ) -> ExecutionResult:
        """Invoke an allowed plan exactly once."""
        budget = self._remaining(deadline, self.settings.execution_timeout_seconds)
        with get_tracer().start_as_current_span("decisioncore.execute"):
            try:
                return await asyncio.wait_for(work(), timeout=budget)
            except asyncio.TimeoutError:
                self.logger.error("execution_timed_out", timeout=budget)
                return ExecutionResult.failed(FailureCode.EXECUTION_FAILED, f"{EXECUTION_FAILED}: timed out")
            except Exception as e:
                self.logger.error("execution_raised", error_type=type(e).__name__)
                return ExecutionResult.failed(FailureCode.EXECUTION_FAILED, EXECUTION_FAILED)

    @staticmethod
    def _denial(report: ValidationReport) -> ExecutionResult:
        outcome = report.outcome
        return ExecutionResult.failed(
            FailureCode.VALIDATION_DENIED,
            outcome.reason or "request denied by validation",
            reasons=list(outcome.reasons),
        )

    async def _record_overrides(self, report: ValidationReport) -> None:
        for audit in report.overrides:
            try:
                await self.telemetry.record_override(audit)
            except Exception as e:
                self.logger.error("override_audit_failed", error_type=type(e).__name__)

    # ------------------------------------------------------------------
    # Trace and telemetry
    # ------------------------------------------------------------------

    async def _capture(self, decision: _Decision) -> None:
        ctx = decision.ctx
        result = decision.result
        replayed = isinstance(decision.candidate, ReplayPlan)
        payload = TracePayload(
            tenant_id=ctx.tenant_id,
            organization_id=ctx.organization_id,
            fingerprint=decision.fingerprint,
            action_type=ctx.action_type,
            context=self.memory.snapshot_context(ctx),
            plan=self.memory.template_steps(decision.candidate.steps, ctx) if decision.candidate else [],
            decision_path=decision.path,
            procedure_id=decision.replay.procedure.procedure_id if replayed else None,
            procedure_version=decision.replay.procedure.version if replayed else None,
            outcome=decision.report.outcome if decision.report else None,
            result=result,
            started_at=decision.started_at,
            completed_at=datetime.now(timezone.utc),
        )
        try:
            await self.memory.capture_trace(decision.trace_id, payload)
        except TraceCaptureException as e:
            metrics.record_trace_capture_failure()
            self.logger.warning("trace_capture_degraded", error_type=e.details.get("error_type"))
            try:
                await self.telemetry.record_degraded(
                    "trace_capture_failed",
                    ctx.tenant_id,
                    {"trace_id": decision.trace_id, "error_type": e.details.get("error_type")},
                )
            except Exception as telemetry_error:
                self.logger.error("degraded_escalation_failed", error_type=type(telemetry_error).__name__)

    async def _emit(self, decision: _Decision) -> None:
        result = decision.result
        enrich = self.telemetry_settings.enrich_procedure_fields
        record = DecisionTelemetry(
            procedure_id=result.procedure_id or "",
            procedure_version=result.procedure_version,
            trace_id=decision.trace_id,
            tenant_id=decision.ctx.tenant_id,
            replay=result.replay,
            fallback=result.fallback,
            override_required=result.override_required,
            success=result.success,
            failure_code=result.failure_reason.code.value if result.failure_reason else None,
            decision_path=decision.path if enrich else None,
            industry=decision.ctx.industry if enrich else None,
        )
        try:
            await self.telemetry.emit(record)
        except Exception as e:
            self.logger.error("telemetry_emit_failed", error_type=type(e).__name__)
