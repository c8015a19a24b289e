"""Validation pipeline and its stages."""

from .override import OverrideStage
from .pipeline import ValidationPipeline
from .relevance import RelevanceStage
from .risk import RiskAssessment, RiskStage

__all__ = ["OverrideStage", "RelevanceStage", "RiskAssessment", "RiskStage", "ValidationPipeline"]
