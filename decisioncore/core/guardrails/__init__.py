"""Risk and guardrail checks."""

from .checks import PatternHarmAnalyzer
from .engine import GuardrailEngine, PlanCandidate

__all__ = ["GuardrailEngine", "PatternHarmAnalyzer", "PlanCandidate"]
