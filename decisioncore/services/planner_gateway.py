"""AI Planner Gateway

Asks the AI planner collaborator for a fresh plan when no replay is
available and wraps the answer in a deferred PlannedExecution.

Only identifiers and PII-redacted parameters leave the core.
"""

import asyncio
from typing import Any, Dict, Optional

from pydantic import ValidationError

from decisioncore.exceptions import (
    CircuitBreakerError,
    MalformedPlanError,
    PlannerException,
    PlannerTimeoutError,
)
from decisioncore.infrastructure.base_client import BaseExternalClient
from decisioncore.infrastructure.observability.tracing import trace
from decisioncore.models.context import RequestContext
from decisioncore.models.interfaces import IAgentPlanner, ISanitizer
from decisioncore.models.procedures import PlannedExecution, PlannerResponse, PlanningRequest
from decisioncore.services.procedure_executor import ProcedureExecutor


class AgentPlannerGateway(BaseExternalClient):
    """Gateway to the AI planner with timeout, circuit breaker and plan checks."""

    def __init__(
        self,
        planner: IAgentPlanner,
        executor: ProcedureExecutor,
        sanitizer: ISanitizer,
        default_timeout: float = 30.0,
    ):
        super().__init__(
            client_name="planner_gateway",
            service_name="AgentPlanner",
            enable_circuit_breaker=True,
            circuit_breaker_threshold=5,
            circuit_breaker_timeout=60,
        )
        self.planner = planner
        self.executor = executor
        self.sanitizer = sanitizer
        self.default_timeout = default_timeout

    def build_request(self, ctx: RequestContext) -> PlanningRequest:
        action_context: Dict[str, Any] = {
            **ctx.identity(),
            "industry": ctx.industry,
            "risk_band": ctx.risk_band,
            "parameters": self.sanitizer.sanitize({k: v.to_raw() for k, v in ctx.parameters.items()}),
        }
        return PlanningRequest(
            action_context=action_context,
            prompt=f"Plan the '{ctx.action_type}' action for channel '{ctx.channel or 'none'}'.",
            tool_schema=[{"kind": kind} for kind in self.executor.registry.kinds()],
        )

    def _check_plan(self, response: Any) -> PlannerResponse:
        if not isinstance(response, PlannerResponse):
            try:
                response = PlannerResponse.model_validate(response)
            except ValidationError as e:
                raise MalformedPlanError(
                    "Planner returned an unreadable plan",
                    details={"errors": e.error_count()},
                ) from e
        if not response.trace_id.strip():
            raise MalformedPlanError("Planner returned a plan without a trace id")
        if not response.steps:
            raise MalformedPlanError("Planner returned a plan without steps", details={"trace_id": response.trace_id})
        unknown = sorted({s.kind for s in response.steps if not self.executor.registry.supports(s.kind)})
        if unknown:
            raise MalformedPlanError(
                "Planner proposed unsupported step kinds",
                details={"trace_id": response.trace_id, "kinds": unknown},
            )
        return response

    @trace("planner_gateway_plan")
    async def plan(self, ctx: RequestContext, timeout: Optional[float] = None) -> PlannedExecution:
        """
        Request a plan for the context.

        Args:
            ctx: Request context
            timeout: Seconds to wait for the planner (defaults to the gateway's)

        Returns:
            PlannedExecution that has not been started

        Raises:
            PlannerTimeoutError: If the planner did not answer in time
            MalformedPlanError: If the plan cannot be used
            PlannerException: If the planner failed or its circuit is open
        """
        request = self.build_request(ctx)
        try:
            raw = await self.call_external(
                "plan",
                self.planner.plan,
                request,
                timeout=timeout or self.default_timeout,
            )
        except asyncio.TimeoutError as e:
            raise PlannerTimeoutError("Planner timed out", details={"timeout": timeout or self.default_timeout}) from e
        except CircuitBreakerError as e:
            raise PlannerException("Planner circuit is open", details=e.details) from e
        except PlannerException:
            raise
        except Exception as e:
            raise PlannerException("Planner call failed", details={"error_type": type(e).__name__}) from e

        response = self._check_plan(raw)
        steps = list(response.steps)

        async def work():
            return await self.executor.execute(steps, ctx)

        self.logger.info("plan_received", trace_id=response.trace_id, steps=len(steps), confidence=response.confidence)
        return PlannedExecution(tenant_id=ctx.tenant_id, response=response, work=work)
