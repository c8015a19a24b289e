"""Tests for ProceduralMemoryService: replay lookup, binding, capture and promotion."""

from datetime import datetime, timedelta, timezone

import pytest

from decisioncore.config.settings import TraceSettings
from decisioncore.core.fingerprint import FingerprintBuilder
from decisioncore.exceptions import PromotionException, TraceCaptureException
from decisioncore.infrastructure.persistence.inmemory_procedure_store import InMemoryProcedureStore
from decisioncore.models.procedures import ExecutionResult, PlannedStep, Procedure, ProcedureStep
from decisioncore.models.trace import PromotionOptions, Trace, TracePayload
from decisioncore.models.validation import ValidationOutcome
from decisioncore.services.procedural_memory import ProceduralMemoryService, ReplayLookup


FP = "fp1:abc"


@pytest.fixture
def memory(store, sanitizer):
    return ProceduralMemoryService(store, sanitizer, TraceSettings(capture_retry_delay_seconds=0.0))


def _procedure(procedure_id="proc-a", version=1, organization_id="org-1", template=None, **kwargs):
    return Procedure(
        procedure_id=procedure_id,
        version=version,
        name="send-followup-sms",
        tenant_id=kwargs.pop("tenant_id", "T1"),
        organization_id=organization_id,
        fingerprint=kwargs.pop("fingerprint", FP),
        steps=[
            ProcedureStep(
                kind="sms.send",
                name="send_followup",
                argument_template=template or {"to": "{contact_id}", "template": "followup"},
            )
        ],
        **kwargs,
    )


def _payload(plan=None, procedure_id=None, allowed=True, success=True, tenant_id="T1"):
    return TracePayload(
        tenant_id=tenant_id,
        organization_id="org-1",
        fingerprint=FP,
        action_type="send-followup-sms",
        plan=plan if plan is not None else [
            ProcedureStep(kind="sms.send", name="send_followup", argument_template={"to": "{contact_id}"})
        ],
        decision_path="replay" if procedure_id else "planned",
        procedure_id=procedure_id,
        procedure_version=1 if procedure_id else None,
        outcome=ValidationOutcome.allow() if allowed else ValidationOutcome.blocked(["denied"]),
        result=ExecutionResult(success=success),
    )


async def _lookup(memory, ctx):
    return await memory.try_get_replay(ReplayLookup(context=ctx, fingerprint=FP))


class TestReplayLookup:
    """Version selection, ranking and binding"""

    @pytest.mark.asyncio
    async def test_miss_when_nothing_is_stored(self, memory, make_context):
        assert await _lookup(memory, make_context()) is None

    @pytest.mark.asyncio
    async def test_latest_version_is_selected(self, memory, store, make_context):
        await store.save_procedure(_procedure(version=1))
        await store.save_procedure(_procedure(version=2, template={"to": "{contact_id}", "template": "v2"}))

        plan = await _lookup(memory, make_context())

        assert plan.procedure.version == 2
        assert plan.steps[0].arguments == {"to": "contact-42", "template": "v2"}
        assert plan.trace_id

    @pytest.mark.asyncio
    async def test_deprecated_latest_falls_back_to_previous_version(self, memory, store, make_context):
        await store.save_procedure(_procedure(version=1))
        await store.save_procedure(_procedure(version=2))
        assert await memory.deprecate("T1", "proc-a", 2)

        plan = await _lookup(memory, make_context())
        assert plan.procedure.version == 1

    @pytest.mark.asyncio
    async def test_deprecating_unknown_version_returns_false(self, memory):
        assert not await memory.deprecate("T1", "proc-missing", 1)

    @pytest.mark.asyncio
    async def test_other_organization_is_ignored(self, memory, store, make_context):
        await store.save_procedure(_procedure(organization_id="org-2"))
        assert await _lookup(memory, make_context()) is None

    @pytest.mark.asyncio
    async def test_tenant_wide_procedure_matches_any_organization(self, memory, store, make_context):
        await store.save_procedure(_procedure(organization_id=None))
        assert await _lookup(memory, make_context(organization_id="org-9")) is not None

    @pytest.mark.asyncio
    async def test_highest_success_rate_wins(self, memory, store, make_context):
        await store.save_procedure(_procedure("proc-a"))
        await store.save_procedure(_procedure("proc-b"))
        await store.save_trace(Trace(trace_id="t1", payload=_payload(procedure_id="proc-a", success=False)))
        await store.save_trace(Trace(trace_id="t2", payload=_payload(procedure_id="proc-b", success=True)))

        plan = await _lookup(memory, make_context())

        assert plan.procedure.procedure_id == "proc-b"
        assert plan.confidence == 1.0

    @pytest.mark.asyncio
    async def test_recorded_rate_beats_unknown_rate(self, memory, store, make_context):
        await store.save_procedure(_procedure("proc-a"))
        await store.save_procedure(_procedure("proc-b"))
        await store.save_trace(Trace(trace_id="t1", payload=_payload(procedure_id="proc-a", success=False)))
        await store.save_trace(Trace(trace_id="t2", payload=_payload(procedure_id="proc-a", success=True)))

        plan = await _lookup(memory, make_context())

        assert plan.procedure.procedure_id == "proc-a"
        assert plan.confidence == 0.5

    @pytest.mark.asyncio
    async def test_org_scoped_then_most_recent_break_ties(self, memory, store, make_context):
        now = datetime.now(timezone.utc)
        await store.save_procedure(_procedure("proc-tenant", organization_id=None, promoted_at=now))
        await store.save_procedure(_procedure("proc-org-old", promoted_at=now - timedelta(days=2)))
        await store.save_procedure(_procedure("proc-org-new", promoted_at=now - timedelta(days=1)))

        plan = await _lookup(memory, make_context())
        assert plan.procedure.procedure_id == "proc-org-new"

    @pytest.mark.asyncio
    async def test_unbindable_placeholder_is_a_miss(self, memory, store, make_context):
        await store.save_procedure(_procedure(template={"to": "{contact_id}", "when": "{appointmentDate}"}))
        assert await _lookup(memory, make_context()) is None

    @pytest.mark.asyncio
    async def test_unbindable_candidate_yields_to_next(self, memory, store, make_context):
        await store.save_procedure(_procedure("proc-a", template={"when": "{appointmentDate}"}))
        await store.save_procedure(_procedure("proc-b"))
        await store.save_trace(Trace(trace_id="t1", payload=_payload(procedure_id="proc-a")))

        plan = await _lookup(memory, make_context())
        assert plan.procedure.procedure_id == "proc-b"

    def test_bind_steps_prefers_parameters_over_identity(self, make_context):
        steps = [ProcedureStep(kind="sms.send", name="s", argument_template={"to": "{contact_id}", "n": "{count}"})]
        ctx = make_context(parameters={"contact_id": "override-1", "count": 3.0})

        bound = ProceduralMemoryService.bind_steps(steps, ctx)
        assert bound[0].arguments == {"to": "override-1", "n": "3"}


class TestTraceCapture:

    @pytest.mark.asyncio
    async def test_capture_persists_trace(self, memory, store):
        captured = await memory.capture_trace("trace-1", _payload())
        assert captured.trace_id == "trace-1"
        assert await store.get_trace("T1", "trace-1") == captured

    @pytest.mark.asyncio
    async def test_reused_trace_id_is_reported_and_first_trace_kept(self, memory, store):
        await memory.capture_trace("trace-1", _payload())
        with pytest.raises(TraceCaptureException) as exc_info:
            await memory.capture_trace("trace-1", _payload(success=False))

        assert exc_info.value.details["error_type"] == "DuplicateTraceId"
        assert (await store.get_trace("T1", "trace-1")).succeeded

    @pytest.mark.asyncio
    async def test_capture_failures_use_their_own_breaker(self, sanitizer):
        class TraceSinkDown(InMemoryProcedureStore):
            async def save_trace(self, trace):
                raise ConnectionError("sink unreachable")

        memory = ProceduralMemoryService(
            TraceSinkDown(), sanitizer, TraceSettings(capture_retries=2, capture_retry_delay_seconds=0.0)
        )
        for n in range(3):
            with pytest.raises(TraceCaptureException):
                await memory.capture_trace(f"trace-{n}", _payload())

        # one failure per capture, not per attempt
        assert memory.trace_client.circuit_breaker.failure_count == 3
        assert memory.trace_client.circuit_breaker.state == "closed"
        assert memory.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_capture_failure_is_wrapped_after_retries(self, sanitizer):
        class BrokenStore(InMemoryProcedureStore):
            attempts = 0

            async def save_trace(self, trace):
                BrokenStore.attempts += 1
                raise ConnectionError("sink unreachable")

        memory = ProceduralMemoryService(
            BrokenStore(), sanitizer, TraceSettings(capture_retries=1, capture_retry_delay_seconds=0.0)
        )
        with pytest.raises(TraceCaptureException) as exc_info:
            await memory.capture_trace("trace-1", _payload())

        assert exc_info.value.details["error_type"] == "ConnectionError"
        assert BrokenStore.attempts == 2

    def test_template_steps_lifts_bound_values(self, memory, make_context):
        ctx = make_context(parameters={"template": "followup"})
        steps = [
            PlannedStep(
                kind="sms.send",
                name="send",
                arguments={"to": "contact-42", "template": "followup", "note": "mail jane@example.com"},
            )
        ]

        templated = memory.template_steps(steps, ctx)[0].argument_template

        assert templated["to"] == "{contact_id}"
        assert templated["template"] == "{template}"
        assert templated["note"] == "mail [EMAIL_ADDRESS_REDACTED]"

    def test_snapshot_context_redacts_parameters(self, memory, make_context):
        snapshot = memory.snapshot_context(make_context(parameters={"note": "SSN 123-45-6789"}))
        assert snapshot["parameters"]["note"] == "SSN [US_SSN_REDACTED]"
        assert snapshot["tenant_id"] == "T1"


class TestPromotion:
    """Compiling traces into procedure versions"""

    @pytest.mark.asyncio
    async def test_promote_creates_first_version(self, memory, store):
        await memory.capture_trace("trace-1", _payload())

        procedure = await memory.promote("trace-1", PromotionOptions(tenant_id="T1", organization_id="org-1"))

        assert procedure.version == 1
        assert procedure.procedure_id.startswith("proc-")
        assert procedure.name == "send-followup-sms"
        assert procedure.fingerprint == FP
        assert procedure.source_trace_id == "trace-1"
        assert procedure.steps[0].argument_template == {"to": "{contact_id}"}

    @pytest.mark.asyncio
    async def test_promotion_is_idempotent(self, memory, store):
        await memory.capture_trace("trace-1", _payload())
        options = PromotionOptions(tenant_id="T1", organization_id="org-1")

        first = await memory.promote("trace-1", options)
        second = await memory.promote("trace-1", options)

        assert first == second
        assert len(await store.get_versions("T1", first.procedure_id)) == 1

    @pytest.mark.asyncio
    async def test_replay_trace_appends_version(self, memory, store):
        await store.save_procedure(_procedure("proc-a"))
        await memory.capture_trace("trace-2", _payload(procedure_id="proc-a"))

        procedure = await memory.promote("trace-2", PromotionOptions(tenant_id="T1", organization_id="org-1"))

        assert procedure.procedure_id == "proc-a"
        assert procedure.version == 2
        versions = await store.get_versions("T1", "proc-a")
        assert [v.version for v in versions] == [1, 2]
        # earlier versions are untouched
        assert versions[0].steps[0].argument_template == {"to": "{contact_id}", "template": "followup"}

    @pytest.mark.asyncio
    async def test_fingerprint_match_reuses_procedure_id(self, memory, store):
        await store.save_procedure(_procedure("proc-a"))
        await memory.capture_trace("trace-3", _payload())

        procedure = await memory.promote("trace-3", PromotionOptions(tenant_id="T1", organization_id="org-1"))
        assert (procedure.procedure_id, procedure.version) == ("proc-a", 2)

    @pytest.mark.asyncio
    async def test_unknown_trace_cannot_be_promoted(self, memory):
        with pytest.raises(PromotionException):
            await memory.promote("missing", PromotionOptions(tenant_id="T1"))

    @pytest.mark.asyncio
    async def test_foreign_tenant_cannot_promote(self, memory):
        await memory.capture_trace("trace-1", _payload())
        with pytest.raises(PromotionException):
            await memory.promote("trace-1", PromotionOptions(tenant_id="T2"))

    @pytest.mark.asyncio
    async def test_trace_without_steps_cannot_be_promoted(self, memory):
        await memory.capture_trace("trace-empty", _payload(plan=[]))
        with pytest.raises(PromotionException):
            await memory.promote("trace-empty", PromotionOptions(tenant_id="T1"))

    @pytest.mark.asyncio
    async def test_blocked_trace_cannot_be_promoted(self, memory, store):
        await memory.capture_trace("trace-blocked", _payload(allowed=False, success=False))
        with pytest.raises(PromotionException):
            await memory.promote("trace-blocked", PromotionOptions(tenant_id="T1"))
        assert await store.find_procedures("T1", FP) == []

    @pytest.mark.asyncio
    async def test_failed_trace_cannot_be_promoted(self, memory, store):
        await memory.capture_trace("trace-failed", _payload(success=False))
        with pytest.raises(PromotionException):
            await memory.promote("trace-failed", PromotionOptions(tenant_id="T1"))
        assert await store.find_procedures("T1", FP) == []

    @pytest.mark.asyncio
    async def test_promoted_procedure_replays_for_same_fingerprint(self, memory, make_context):
        ctx = make_context()
        fingerprint = FingerprintBuilder().fingerprint(ctx)
        payload = _payload().model_copy(update={"fingerprint": fingerprint})
        await memory.capture_trace("trace-1", payload)
        await memory.promote("trace-1", PromotionOptions(tenant_id="T1", organization_id="org-1"))

        plan = await memory.try_get_replay(ReplayLookup(context=ctx, fingerprint=fingerprint))
        assert plan is not None
        assert plan.steps[0].arguments == {"to": "contact-42"}
