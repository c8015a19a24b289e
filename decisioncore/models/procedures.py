"""Procedure, plan and execution result models.

A plan reaching the validation pipeline is either a ``ReplayPlan`` (bound
from a learned procedure version) or a ``PlannedExecution`` (freshly
proposed by the AI planner). Both expose the same candidate surface:
``kind``, ``tenant_id``, ``trace_id``, ``steps``, ``confidence``,
``source_documents`` and ``text()``.
"""

import asyncio
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from decisioncore.exceptions import ExecutionException


PLACEHOLDER_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProcedureStep(BaseModel):
    """One step of a procedure: a handler kind, a name and an argument template."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    argument_template: Dict[str, str] = Field(default_factory=dict)

    def placeholders(self) -> List[str]:
        found: List[str] = []
        for template in self.argument_template.values():
            found.extend(PLACEHOLDER_PATTERN.findall(template))
        return found


class Procedure(BaseModel):
    """A named, versioned, reusable plan.

    Versions are immutable once created. Only the ``deprecated`` marker is
    ever rewritten and it never touches the steps.
    """

    model_config = ConfigDict(frozen=True)

    procedure_id: str
    version: int = Field(ge=1)
    name: str
    tenant_id: str
    organization_id: Optional[str] = None
    fingerprint: str
    steps: List[ProcedureStep] = Field(default_factory=list)
    requires_validation: bool = True
    deprecated: bool = False
    promoted_at: datetime = Field(default_factory=utc_now)
    source_trace_id: Optional[str] = None


class PlannedStep(BaseModel):
    """A step with concrete arguments, ready to execute."""

    model_config = ConfigDict(frozen=True)

    kind: str
    name: str
    arguments: Dict[str, str] = Field(default_factory=dict)


class FailureCode(str, Enum):
    VALIDATION_DENIED = "validation_denied"
    PLANNING_UNAVAILABLE = "planning_unavailable"
    PROCEDURE_STORE_UNAVAILABLE = "procedure_store_unavailable"
    EXECUTION_FAILED = "execution_failed"


class FailureReason(BaseModel):
    """Caller-facing failure description. Never carries PII or internal detail."""

    model_config = ConfigDict(frozen=True)

    code: FailureCode
    message: str


class ExecutionResult(BaseModel):
    """Outcome of one decision, returned to the caller."""

    model_config = ConfigDict(frozen=True)

    success: bool
    failure_reason: Optional[FailureReason] = None
    trace_id: Optional[str] = None
    procedure_id: Optional[str] = None
    procedure_version: Optional[int] = None
    replay: bool = False
    fallback: bool = False
    override_required: bool = False
    reasons: List[str] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failed(cls, code: FailureCode, message: str, **kwargs: Any) -> "ExecutionResult":
        return cls(success=False, failure_reason=FailureReason(code=code, message=message), **kwargs)


class ReplayPlan(BaseModel):
    """A procedure version bound to concrete arguments for one request.

    Never persisted; only the trace of its execution is.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["replay"] = "replay"
    procedure: Procedure
    trace_id: str
    steps: List[PlannedStep]
    confidence: Optional[float] = None
    source_documents: List[str] = Field(default_factory=list)

    @property
    def tenant_id(self) -> str:
        return self.procedure.tenant_id

    @property
    def requires_validation(self) -> bool:
        return self.procedure.requires_validation

    def text(self) -> str:
        return "\n".join(value for step in self.steps for value in step.arguments.values())


class PlanningRequest(BaseModel):
    """What the planner gateway sends to the AI planner."""

    action_context: Dict[str, Any]
    prompt: str
    tool_schema: List[Dict[str, Any]] = Field(default_factory=list)


class PlannerResponse(BaseModel):
    """What the AI planner returns: a trace id, steps and a confidence score."""

    trace_id: str
    steps: List[PlannedStep]
    confidence: float = Field(ge=0.0, le=1.0)
    content: Optional[str] = None
    source_documents: List[str] = Field(default_factory=list)


class PlannedExecution:
    """A freshly planned, deferred unit of work.

    Created by the planner gateway and invoked at most once by the
    orchestrator, only after validation allowed it.
    """

    kind = "planned"
    requires_validation = True

    def __init__(
        self,
        tenant_id: str,
        response: PlannerResponse,
        work: Callable[[], Awaitable[ExecutionResult]],
    ):
        self.tenant_id = tenant_id
        self.trace_id = response.trace_id
        self.steps: List[PlannedStep] = list(response.steps)
        self.confidence: Optional[float] = response.confidence
        self.content = response.content
        self.source_documents: List[str] = list(response.source_documents)
        self._work = work
        self._started = False
        self._lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._started

    def text(self) -> str:
        if self.content:
            return self.content
        return "\n".join(value for step in self.steps for value in step.arguments.values())

    async def run(self) -> ExecutionResult:
        """Perform the planned action.

        Raises:
            ExecutionException: If the execution was already started
        """
        async with self._lock:
            if self._started:
                raise ExecutionException(
                    "Planned execution already invoked",
                    details={"trace_id": self.trace_id},
                )
            self._started = True
        return await self._work()
