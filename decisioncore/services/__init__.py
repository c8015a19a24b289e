"""Service layer: procedural memory, planner gateway and execution."""

from .planner_gateway import AgentPlannerGateway
from .procedural_memory import ProceduralMemoryService, ReplayLookup
from .procedure_executor import ExecutorRegistry, ProcedureExecutor, StepHandler

__all__ = [
    "AgentPlannerGateway",
    "ExecutorRegistry",
    "ProceduralMemoryService",
    "ProcedureExecutor",
    "ReplayLookup",
    "StepHandler",
]
