"""
Unified Configuration System for the decision core

Single source of truth for all configuration using pydantic-settings.

ARCHITECTURAL PRINCIPLES:
- Only this module accesses environment variables directly
- All other modules receive configuration via dependency injection
- Type-safe validation with automatic conversion
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


# =============================================================================
# ENUMS
# =============================================================================

class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StoreBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


# =============================================================================
# NESTED CONFIGURATION SECTIONS
# =============================================================================

class ValidationSettings(BaseSettings):
    """Relevance, guardrail and override rules (pilot defaults)"""

    # Relevance
    privacy_tag: str = Field(default="PERSONAL")
    tags_parameter: str = Field(default="tags")
    bypass_privacy_key: str = Field(default="BypassPrivacy")

    # Channel/timing heuristics: window wraps midnight when start > end
    after_hours_start_hour: int = Field(default=21, ge=0, le=23)
    after_hours_end_hour: int = Field(default=8, ge=0, le=23)
    after_hours_channels: List[str] = Field(default_factory=lambda: ["sms"])
    occurred_at_parameter: str = Field(default="occurredAt")

    # Planner confidence and groundedness
    confidence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    groundedness_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    # Overrides
    override_reason_key: str = Field(default="OverrideReason")
    override_keys: Dict[str, str] = Field(
        default_factory=lambda: {
            "after_hours": "AllowAfterHours",
            "low_confidence": "AcceptLowConfidence",
            "prompt_injection": "AcceptInjectionRisk",
            "harmful_content": "AcceptContentRisk",
            "industry_compliance": "AcceptComplianceRisk",
        }
    )

    model_config = {"env_prefix": "VALIDATION_", "extra": "ignore"}

    @field_validator("after_hours_channels")
    @classmethod
    def normalize_channels(cls, v: List[str]) -> List[str]:
        return [c.strip().casefold() for c in v if c and c.strip()]


class OrchestratorSettings(BaseSettings):
    """Decision flow behaviour"""
    fallback_on_replay_denial: bool = Field(default=True)
    planner_timeout_seconds: float = Field(default=30.0, gt=0)
    execution_timeout_seconds: float = Field(default=30.0, gt=0)

    model_config = {"env_prefix": "ORCHESTRATOR_", "extra": "ignore"}


class ProcedureStoreSettings(BaseSettings):
    """Procedure and trace persistence"""
    backend: StoreBackend = Field(default=StoreBackend.MEMORY)
    redis_url: Optional[str] = Field(default=None)
    redis_password: Optional[SecretStr] = Field(default=None)
    key_prefix: str = Field(default="decisioncore")

    model_config = {"env_prefix": "PROCEDURE_STORE_", "extra": "ignore"}

    @model_validator(mode="after")
    def require_url_for_redis(self) -> "ProcedureStoreSettings":
        if self.backend == StoreBackend.REDIS and not self.redis_url:
            raise ValueError("PROCEDURE_STORE_REDIS_URL is required for the redis backend")
        return self


class TraceSettings(BaseSettings):
    """Trace capture retry budget"""
    capture_retries: int = Field(default=2, ge=0, le=10)
    capture_retry_delay_seconds: float = Field(default=0.05, ge=0)
    capture_timeout_seconds: float = Field(default=5.0, gt=0)

    model_config = {"env_prefix": "TRACE_", "extra": "ignore"}


class TelemetrySettings(BaseSettings):
    """Decision telemetry"""
    enrich_procedure_fields: bool = Field(default=False)
    max_records: int = Field(default=1000, ge=1)

    model_config = {"env_prefix": "TELEMETRY_", "extra": "ignore"}


class SecuritySettings(BaseSettings):
    """PII detection"""
    enable_presidio: bool = Field(default=True)
    presidio_language: str = Field(default="en")

    model_config = {"env_prefix": "SECURITY_", "extra": "ignore"}


class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: LogLevel = Field(default=LogLevel.INFO)
    json_output: bool = Field(default=True)

    model_config = {"env_prefix": "LOG_", "extra": "ignore"}


class DecisionCoreSettings(BaseSettings):
    """
    Unified configuration for the decision core.

    All configuration access should go through this class via dependency injection.
    """

    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    procedure_store: ProcedureStoreSettings = Field(default_factory=ProcedureStoreSettings)
    trace: TraceSettings = Field(default_factory=TraceSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


# =============================================================================
# SINGLETON MANAGEMENT
# =============================================================================

_settings_instance: Optional[DecisionCoreSettings] = None


def get_settings() -> DecisionCoreSettings:
    """
    Get global settings instance (singleton pattern).

    Only the composition root (the container) should call this; everything
    else receives settings via dependency injection.

    Raises:
        ConfigurationError: If settings validation fails
    """
    global _settings_instance
    if _settings_instance is None:
        try:
            from dotenv import load_dotenv

            load_dotenv(override=False)
            _settings_instance = DecisionCoreSettings()
        except Exception as e:
            from decisioncore.exceptions import ConfigurationError
            raise ConfigurationError(
                f"Settings initialization failed: {e}",
                details={"error_type": type(e).__name__},
            ) from e
    return _settings_instance


def reset_settings() -> None:
    """
    Reset settings instance (primarily for testing).

    Forces recreation of settings on next get_settings() call.
    """
    global _settings_instance
    _settings_instance = None
