"""Shared pytest fixtures and configuration for decision core tests."""

from typing import Any, Dict, List, Optional

import pytest

from decisioncore.config.settings import (
    DecisionCoreSettings,
    SecuritySettings,
    TraceSettings,
    ValidationSettings,
)
from decisioncore.container import DecisionCoreContainer
from decisioncore.infrastructure.persistence.inmemory_procedure_store import InMemoryProcedureStore
from decisioncore.infrastructure.security.redaction import DataSanitizer
from decisioncore.infrastructure.telemetry.decision_recorder import DecisionRecorder
from decisioncore.models.context import RequestContext
from decisioncore.models.procedures import (
    ExecutionResult,
    PlannedExecution,
    PlannedStep,
    PlannerResponse,
    Procedure,
    ProcedureStep,
    ReplayPlan,
)
from decisioncore.services.procedure_executor import ExecutorRegistry
from tests.test_doubles import FakePlanner, RecordingHandlers


@pytest.fixture
def validation_settings():
    return ValidationSettings()


@pytest.fixture
def sanitizer():
    """Regex-only sanitizer, no NLP model required."""
    return DataSanitizer(use_presidio=False)


@pytest.fixture
def store():
    return InMemoryProcedureStore()


@pytest.fixture
def handlers():
    return RecordingHandlers()


@pytest.fixture
def registry(handlers):
    registry = ExecutorRegistry()
    registry.register("sms.send", handlers.sms)
    registry.register("task.create", handlers.task)
    return registry


@pytest.fixture
def planner():
    return FakePlanner()


@pytest.fixture
def recorder():
    return DecisionRecorder(max_records=100)


@pytest.fixture
def settings():
    return DecisionCoreSettings(
        trace=TraceSettings(capture_retries=2, capture_retry_delay_seconds=0.0),
        security=SecuritySettings(enable_presidio=False),
    )


@pytest.fixture
def make_context():
    """Factory for request contexts with pilot-style defaults."""

    def _make(**overrides: Any) -> RequestContext:
        values: Dict[str, Any] = {
            "tenant_id": "T1",
            "organization_id": "org-1",
            "user_id": "agent-7",
            "contact_id": "contact-42",
            "action_type": "send-followup-sms",
            "channel": "sms",
            "parameters": {"occurredAt": "2025-03-04T10:00:00Z"},
            "user_overrides": {},
        }
        values.update(overrides)
        return RequestContext.from_raw(**values)

    return _make


@pytest.fixture
def make_container(settings, registry, store, sanitizer, recorder, planner):
    """Factory for fully wired containers over in-memory collaborators."""

    def _make(**overrides: Any) -> DecisionCoreContainer:
        values: Dict[str, Any] = {
            "planner": planner,
            "registry": registry,
            "settings": settings,
            "store": store,
            "sanitizer": sanitizer,
            "telemetry": recorder,
        }
        values.update(overrides)
        return DecisionCoreContainer(**values)

    return _make


@pytest.fixture
def make_replay():
    """Factory for bound replay plans."""

    def _make(
        tenant_id: str = "T1",
        arguments: Optional[Dict[str, str]] = None,
        requires_validation: bool = True,
        confidence: Optional[float] = None,
    ) -> ReplayPlan:
        procedure = Procedure(
            procedure_id="proc-1",
            version=1,
            name="send-followup-sms",
            tenant_id=tenant_id,
            organization_id="org-1",
            fingerprint="fp1:test",
            steps=[ProcedureStep(kind="sms.send", name="send_followup", argument_template={"to": "{contact_id}"})],
            requires_validation=requires_validation,
        )
        return ReplayPlan(
            procedure=procedure,
            trace_id="trace-replay",
            steps=[
                PlannedStep(
                    kind="sms.send",
                    name="send_followup",
                    arguments=arguments if arguments is not None else {"to": "contact-42", "template": "followup"},
                )
            ],
            confidence=confidence,
        )

    return _make


@pytest.fixture
def make_planned():
    """Factory for planned executions whose work returns success."""

    def _make(
        tenant_id: str = "T1",
        confidence: float = 0.9,
        content: Optional[str] = None,
        arguments: Optional[Dict[str, str]] = None,
        source_documents: Optional[List[str]] = None,
    ) -> PlannedExecution:
        response = PlannerResponse(
            trace_id="trace-planned",
            steps=[
                PlannedStep(
                    kind="sms.send",
                    name="send_followup",
                    arguments=arguments if arguments is not None else {"to": "contact-42", "template": "followup"},
                )
            ],
            confidence=confidence,
            content=content,
            source_documents=source_documents or [],
        )

        async def work() -> ExecutionResult:
            return ExecutionResult(success=True)

        return PlannedExecution(tenant_id=tenant_id, response=response, work=work)

    return _make
