"""Custom exceptions for the decision core."""

from typing import Any, Dict, Optional


class DecisionCoreException(Exception):
    """Base exception for all decision core errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(DecisionCoreException):
    """Raised when configuration is invalid."""
    pass


class ValidationException(DecisionCoreException):
    """Raised when input validation fails."""
    pass


class TenantIsolationError(ValidationException):
    """Raised when a request or record violates tenant scoping.

    Always fatal: the request is rejected before any lookup happens.
    """
    pass


class ProcedureStoreException(DecisionCoreException):
    """Raised when the procedure store cannot be read or written."""
    pass


class PromotionException(ProcedureStoreException):
    """Raised when a trace cannot be compiled into a procedure version."""
    pass


class PlannerException(DecisionCoreException):
    """Raised when the AI planner cannot produce a plan."""
    pass


class PlannerTimeoutError(PlannerException):
    """Raised when the planner does not answer within its time budget."""
    pass


class MalformedPlanError(PlannerException):
    """Raised when the planner answers with a plan that cannot be used."""
    pass


class ExecutionException(DecisionCoreException):
    """Raised when a validated plan fails while executing."""
    pass


class TraceCaptureException(DecisionCoreException):
    """Raised when a decision trace could not be persisted."""
    pass


class CircuitBreakerError(DecisionCoreException):
    """Raised when a collaborator's circuit breaker is open."""
    pass
