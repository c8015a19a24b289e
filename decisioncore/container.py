"""Dependency Injection Container

Purpose: Composition root of the decision core

Builds every component once from DecisionCoreSettings and hands them to
each other explicitly. The AI planner and the step handlers are external
collaborators and must be supplied by the surrounding service.
"""

import logging
from typing import Optional

from decisioncore.config.settings import DecisionCoreSettings, StoreBackend, get_settings
from decisioncore.core.fingerprint import FingerprintBuilder
from decisioncore.core.guardrails.engine import GuardrailEngine
from decisioncore.core.orchestrator import Orchestrator
from decisioncore.core.validation.pipeline import ValidationPipeline
from decisioncore.infrastructure.logging.config import configure_logging
from decisioncore.infrastructure.persistence import InMemoryProcedureStore, RedisProcedureStore
from decisioncore.infrastructure.redis_client import create_redis_client
from decisioncore.infrastructure.security.redaction import DataSanitizer
from decisioncore.infrastructure.telemetry.decision_recorder import DecisionRecorder
from decisioncore.models.interfaces import (
    IAgentPlanner,
    IContentSafetyAnalyzer,
    IProcedureStore,
    ISanitizer,
    ITelemetryEmitter,
)
from decisioncore.services.planner_gateway import AgentPlannerGateway
from decisioncore.services.procedural_memory import ProceduralMemoryService
from decisioncore.services.procedure_executor import ExecutorRegistry, ProcedureExecutor


class DecisionCoreContainer:
    """Dependency container for the decision core.

    Collaborators passed to the constructor take precedence over the ones
    built from settings, which is how tests substitute fakes.
    """

    def __init__(
        self,
        planner: IAgentPlanner,
        registry: Optional[ExecutorRegistry] = None,
        settings: Optional[DecisionCoreSettings] = None,
        store: Optional[IProcedureStore] = None,
        sanitizer: Optional[ISanitizer] = None,
        analyzer: Optional[IContentSafetyAnalyzer] = None,
        telemetry: Optional[ITelemetryEmitter] = None,
        configure_logs: bool = False,
    ):
        self.settings = settings or get_settings()
        self.planner = planner
        self.registry = registry or ExecutorRegistry()
        self._store = store
        self._sanitizer = sanitizer
        self._analyzer = analyzer
        self._telemetry = telemetry
        self._configure_logs = configure_logs
        self._orchestrator: Optional[Orchestrator] = None

    def initialize(self) -> None:
        """Build the component graph. Safe to call more than once."""
        if self._orchestrator is not None:
            return
        logger = logging.getLogger(__name__)

        if self._configure_logs:
            configure_logging(self.settings.logging.level.value, self.settings.logging.json_output)

        self.store = self._store or self._create_store()
        self.sanitizer = self._sanitizer or DataSanitizer(
            use_presidio=self.settings.security.enable_presidio,
            language=self.settings.security.presidio_language,
        )
        self.telemetry = self._telemetry or DecisionRecorder(max_records=self.settings.telemetry.max_records)

        self.fingerprints = FingerprintBuilder()
        self.executor = ProcedureExecutor(self.registry)
        self.memory = ProceduralMemoryService(self.store, self.sanitizer, self.settings.trace)
        self.planner_gateway = AgentPlannerGateway(
            self.planner,
            self.executor,
            self.sanitizer,
            default_timeout=self.settings.orchestrator.planner_timeout_seconds,
        )
        self.guardrails = GuardrailEngine(self.settings.validation, self.sanitizer, self._analyzer)
        self.pipeline = ValidationPipeline(self.settings.validation, self.guardrails)

        self._orchestrator = Orchestrator(
            fingerprints=self.fingerprints,
            memory=self.memory,
            planner=self.planner_gateway,
            pipeline=self.pipeline,
            executor=self.executor,
            telemetry=self.telemetry,
            settings=self.settings.orchestrator,
            telemetry_settings=self.settings.telemetry,
        )
        logger.info(f"Decision core initialized (store backend: {self.settings.procedure_store.backend.value})")

    def _create_store(self) -> IProcedureStore:
        store_settings = self.settings.procedure_store
        if store_settings.backend == StoreBackend.REDIS:
            password = store_settings.redis_password.get_secret_value() if store_settings.redis_password else None
            client = create_redis_client(store_settings.redis_url, password=password)
            return RedisProcedureStore(client, key_prefix=store_settings.key_prefix)
        return InMemoryProcedureStore()

    @property
    def orchestrator(self) -> Orchestrator:
        self.initialize()
        return self._orchestrator
