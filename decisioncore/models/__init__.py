"""Domain models for the decision core."""

from .context import ParamKind, ParamValue, RequestContext
from .interfaces import (
    IAgentPlanner,
    IContentSafetyAnalyzer,
    IProcedureStore,
    ISanitizer,
    ITelemetryEmitter,
)
from .procedures import (
    ExecutionResult,
    FailureCode,
    FailureReason,
    PlannedExecution,
    PlannedStep,
    PlannerResponse,
    PlanningRequest,
    Procedure,
    ProcedureStep,
    ReplayPlan,
)
from .trace import DecisionTelemetry, PromotionOptions, Trace, TracePayload
from .validation import (
    GuardrailAction,
    GuardrailCheck,
    GuardrailResult,
    GuardrailSeverity,
    HarmAnalysis,
    OverrideAudit,
    RiskClass,
    ValidationOutcome,
    ValidationReport,
    ValidationStage,
)

__all__ = [
    "ParamKind",
    "ParamValue",
    "RequestContext",
    "IAgentPlanner",
    "IContentSafetyAnalyzer",
    "IProcedureStore",
    "ISanitizer",
    "ITelemetryEmitter",
    "ExecutionResult",
    "FailureCode",
    "FailureReason",
    "PlannedExecution",
    "PlannedStep",
    "PlannerResponse",
    "PlanningRequest",
    "Procedure",
    "ProcedureStep",
    "ReplayPlan",
    "DecisionTelemetry",
    "PromotionOptions",
    "Trace",
    "TracePayload",
    "GuardrailAction",
    "GuardrailCheck",
    "GuardrailResult",
    "GuardrailSeverity",
    "HarmAnalysis",
    "OverrideAudit",
    "RiskClass",
    "ValidationOutcome",
    "ValidationReport",
    "ValidationStage",
]
