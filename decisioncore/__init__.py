"""decisioncore: replay-or-plan decision core with a validation pipeline.

Typical use::

    container = DecisionCoreContainer(planner=my_planner, registry=my_registry)
    result = await container.orchestrator.decide(RequestContext.from_raw(...))
"""

from decisioncore.container import DecisionCoreContainer
from decisioncore.core.orchestrator import Orchestrator
from decisioncore.models.context import RequestContext
from decisioncore.models.procedures import ExecutionResult, FailureCode

__version__ = "0.1.0"

__all__ = ["DecisionCoreContainer", "ExecutionResult", "FailureCode", "Orchestrator", "RequestContext"]
