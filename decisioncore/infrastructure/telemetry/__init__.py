"""Decision telemetry and audit."""

from .decision_recorder import DecisionRecorder

__all__ = ["DecisionRecorder"]
