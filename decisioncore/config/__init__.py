"""Configuration Package

Purpose: Centralized configuration management for the decision core

This package contains the environment-based settings consumed by the
container; nothing else reads environment variables directly.
"""

from .settings import (
    DecisionCoreSettings,
    LoggingSettings,
    LogLevel,
    OrchestratorSettings,
    ProcedureStoreSettings,
    SecuritySettings,
    StoreBackend,
    TelemetrySettings,
    TraceSettings,
    ValidationSettings,
    get_settings,
    reset_settings,
)

__all__ = [
    "DecisionCoreSettings",
    "LoggingSettings",
    "LogLevel",
    "OrchestratorSettings",
    "ProcedureStoreSettings",
    "SecuritySettings",
    "StoreBackend",
    "TelemetrySettings",
    "TraceSettings",
    "ValidationSettings",
    "get_settings",
    "reset_settings",
]
