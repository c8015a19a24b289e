"""Procedure execution.

Step handlers are registered per step kind on an ``ExecutorRegistry``
built once at startup and injected wherever plans are executed. Physical
side effects (sending an SMS, writing a row) live in the handlers.
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Sequence

from decisioncore.exceptions import ExecutionException
from decisioncore.models.context import RequestContext
from decisioncore.models.procedures import ExecutionResult, FailureCode, PlannedStep

logger = logging.getLogger(__name__)

StepHandler = Callable[[PlannedStep, RequestContext], Awaitable[Any]]


class ExecutorRegistry:
    """Maps step kinds to async step handlers."""

    def __init__(self):
        self._handlers: Dict[str, StepHandler] = {}

    def register(self, kind: str, handler: StepHandler) -> None:
        key = kind.strip().casefold()
        if not key:
            raise ValueError("Step kind must not be empty")
        self._handlers[key] = handler

    def get(self, kind: str) -> StepHandler:
        """
        Raises:
            ExecutionException: If no handler is registered for the kind
        """
        handler = self._handlers.get(kind.strip().casefold())
        if handler is None:
            raise ExecutionException(f"No executor registered for step kind '{kind}'", details={"kind": kind})
        return handler

    def supports(self, kind: str) -> bool:
        return kind.strip().casefold() in self._handlers

    def kinds(self) -> List[str]:
        return sorted(self._handlers)


class ProcedureExecutor:
    """Runs plan steps in order, stopping at the first failure."""

    def __init__(self, registry: ExecutorRegistry):
        self.registry = registry

    async def execute(self, steps: Sequence[PlannedStep], ctx: RequestContext) -> ExecutionResult:
        """
        Execute steps sequentially.

        Args:
            steps: Bound steps
            ctx: Request context passed to every handler

        Returns:
            ExecutionResult with each step's output keyed by step name, or a
            failure naming the step that failed
        """
        outputs: Dict[str, Any] = {}
        for index, step in enumerate(steps):
            try:
                handler = self.registry.get(step.kind)
                outputs[step.name] = await handler(step, ctx)
            except Exception as e:
                logger.error(f"Step {index} ({step.kind}) failed: {type(e).__name__}")
                return ExecutionResult.failed(
                    FailureCode.EXECUTION_FAILED,
                    f"Step '{step.name}' failed",
                    outputs=outputs,
                )
        return ExecutionResult(success=True, outputs=outputs)
