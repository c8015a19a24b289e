"""Contract tests shared by the in-memory and Redis procedure stores."""

import pytest

from decisioncore.exceptions import ProcedureStoreException
from decisioncore.infrastructure.persistence import InMemoryProcedureStore, RedisProcedureStore
from decisioncore.models.procedures import ExecutionResult, Procedure, ProcedureStep
from decisioncore.models.trace import Trace, TracePayload
from decisioncore.models.validation import ValidationOutcome
from tests.test_doubles import FakeRedis


def _procedure(procedure_id="proc-a", version=1, tenant_id="T1", fingerprint="fp1:x", source_trace_id=None):
    return Procedure(
        procedure_id=procedure_id,
        version=version,
        name="send-followup-sms",
        tenant_id=tenant_id,
        organization_id="org-1",
        fingerprint=fingerprint,
        steps=[ProcedureStep(kind="sms.send", name="send", argument_template={"to": "{contact_id}"})],
        source_trace_id=source_trace_id,
    )


def _trace(trace_id="trace-1", tenant_id="T1", procedure_id=None, allowed=True, success=True):
    return Trace(
        trace_id=trace_id,
        payload=TracePayload(
            tenant_id=tenant_id,
            organization_id="org-1",
            fingerprint="fp1:x",
            action_type="send-followup-sms",
            procedure_id=procedure_id,
            outcome=ValidationOutcome.allow() if allowed else ValidationOutcome.blocked(["denied"]),
            result=ExecutionResult(success=success),
        ),
    )


@pytest.fixture(params=["memory", "redis"])
def any_store(request):
    if request.param == "memory":
        return InMemoryProcedureStore()
    return RedisProcedureStore(FakeRedis(), key_prefix="test")


class TestProcedureStoreContract:
    """Behaviour every IProcedureStore must share"""

    @pytest.mark.asyncio
    async def test_procedure_round_trip(self, any_store):
        procedure = _procedure()
        assert await any_store.save_procedure(procedure)

        assert await any_store.find_procedures("T1", "fp1:x") == [procedure]
        assert await any_store.get_versions("T1", "proc-a") == [procedure]

    @pytest.mark.asyncio
    async def test_versions_are_immutable(self, any_store):
        assert await any_store.save_procedure(_procedure(version=1))
        assert not await any_store.save_procedure(_procedure(version=1, fingerprint="fp1:other"))
        assert (await any_store.get_versions("T1", "proc-a"))[0].fingerprint == "fp1:x"

    @pytest.mark.asyncio
    async def test_versions_are_ordered(self, any_store):
        for version in (3, 1, 2):
            await any_store.save_procedure(_procedure(version=version))
        assert [p.version for p in await any_store.get_versions("T1", "proc-a")] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_tenants_are_isolated(self, any_store):
        await any_store.save_procedure(_procedure(tenant_id="T1"))
        await any_store.save_trace(_trace(tenant_id="T1"))

        assert await any_store.find_procedures("T2", "fp1:x") == []
        assert await any_store.get_versions("T2", "proc-a") == []
        assert await any_store.get_trace("T2", "trace-1") is None

    @pytest.mark.asyncio
    async def test_deprecation_only_touches_the_marker(self, any_store):
        await any_store.save_procedure(_procedure())
        assert await any_store.set_deprecated("T1", "proc-a", 1, True)

        stored = (await any_store.get_versions("T1", "proc-a"))[0]
        assert stored.deprecated
        assert stored.steps == _procedure().steps
        assert not await any_store.set_deprecated("T1", "proc-a", 7, True)
        assert not await any_store.set_deprecated("T2", "proc-a", 1, True)

    @pytest.mark.asyncio
    async def test_traces_are_write_once(self, any_store):
        assert await any_store.save_trace(_trace(success=True))
        assert not await any_store.save_trace(_trace(success=False))
        assert (await any_store.get_trace("T1", "trace-1")).succeeded

    @pytest.mark.asyncio
    async def test_promotion_claims_source_trace_once(self, any_store):
        assert await any_store.save_procedure(_procedure(version=1, source_trace_id="trace-1"))
        assert not await any_store.save_procedure(_procedure(version=2, source_trace_id="trace-1"))

        promoted = await any_store.find_promotion("T1", "trace-1")
        assert promoted.version == 1
        assert await any_store.find_promotion("T2", "trace-1") is None
        assert len(await any_store.get_versions("T1", "proc-a")) == 1

    @pytest.mark.asyncio
    async def test_success_rate_counts_allowed_replays_only(self, any_store):
        assert await any_store.get_success_rate("T1", "proc-a") is None

        await any_store.save_trace(_trace("t1", procedure_id="proc-a", success=True))
        await any_store.save_trace(_trace("t2", procedure_id="proc-a", success=False))
        await any_store.save_trace(_trace("t3", procedure_id="proc-a", allowed=False, success=False))
        await any_store.save_trace(_trace("t4", success=False))

        assert await any_store.get_success_rate("T1", "proc-a") == 0.5
        assert await any_store.get_success_rate("T2", "proc-a") is None


    @pytest.mark.asyncio
    async def test_ids_containing_colons_stay_tenant_scoped(self, any_store):
        ours = _procedure(procedure_id="followup", tenant_id="acme:eu", source_trace_id="eu:trace-1")
        theirs = _procedure(procedure_id="eu:followup", tenant_id="acme", source_trace_id="trace-1")

        assert await any_store.save_procedure(ours)
        assert await any_store.save_procedure(theirs)
        await any_store.save_trace(_trace("t1", tenant_id="acme:eu", procedure_id="followup", success=False))

        assert await any_store.get_versions("acme", "eu:followup") == [theirs]
        assert await any_store.find_promotion("acme", "trace-1") == theirs
        assert await any_store.find_promotion("acme:eu", "eu:trace-1") == ours
        assert await any_store.get_success_rate("acme", "eu:followup") is None
        assert await any_store.get_success_rate("acme:eu", "followup") == 0.0


class TestRedisProcedureStore:
    """Redis-specific key layout and error handling"""

    @pytest.mark.asyncio
    async def test_keys_are_prefixed_and_tenant_scoped(self):
        client = FakeRedis()
        store = RedisProcedureStore(client, key_prefix="dc")
        await store.save_procedure(_procedure(source_trace_id="trace-9"))
        await store.save_trace(_trace())

        assert "dc:proc:T1:proc-a" in client.hashes
        assert client.sets["dc:fp:T1:fp1%3Ax"] == {"proc-a"}
        assert client.strings["dc:promo:T1:trace-9"] == "proc-a:1"
        assert "dc:trace:T1:trace-1" in client.strings

    @pytest.mark.asyncio
    async def test_lost_version_race_releases_promotion_claim(self):
        client = FakeRedis()
        store = RedisProcedureStore(client)
        await store.save_procedure(_procedure(version=1))

        assert not await store.save_procedure(_procedure(version=1, source_trace_id="trace-5"))
        assert await store.find_promotion("T1", "trace-5") is None

    @pytest.mark.asyncio
    async def test_failed_version_write_releases_promotion_claim(self):
        client = FakeRedis()
        store = RedisProcedureStore(client)
        client.fail_commands = {"hsetnx"}

        with pytest.raises(ProcedureStoreException):
            await store.save_procedure(_procedure(source_trace_id="trace-7"))
        assert "decisioncore:promo:T1:trace-7" not in client.strings

        client.fail_commands = set()
        assert await store.save_procedure(_procedure(source_trace_id="trace-7"))
        assert (await store.find_promotion("T1", "trace-7")).version == 1

    @pytest.mark.asyncio
    async def test_failed_index_write_leaves_no_version(self):
        client = FakeRedis()
        store = RedisProcedureStore(client)
        client.fail_commands = {"sadd"}

        with pytest.raises(ProcedureStoreException):
            await store.save_procedure(_procedure(source_trace_id="trace-8"))
        assert await store.get_versions("T1", "proc-a") == []
        assert await store.find_promotion("T1", "trace-8") is None

    @pytest.mark.asyncio
    async def test_unreadable_records_are_skipped(self):
        client = FakeRedis()
        store = RedisProcedureStore(client)
        await store.save_procedure(_procedure(version=1))
        client.hashes["decisioncore:proc:T1:proc-a"]["2"] = "{not json"

        assert [p.version for p in await store.find_procedures("T1", "fp1:x")] == [1]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation, args",
        [
            ("find_procedures", ("T1", "fp1:x")),
            ("get_versions", ("T1", "proc-a")),
            ("get_trace", ("T1", "trace-1")),
            ("get_success_rate", ("T1", "proc-a")),
            ("find_promotion", ("T1", "trace-1")),
        ],
    )
    async def test_redis_errors_become_store_exceptions(self, operation, args):
        client = FakeRedis()
        client.fail = True
        store = RedisProcedureStore(client)

        with pytest.raises(ProcedureStoreException) as exc_info:
            await getattr(store, operation)(*args)
        assert exc_info.value.details["operation"] == operation

    @pytest.mark.asyncio
    async def test_write_errors_become_store_exceptions(self):
        client = FakeRedis()
        client.fail = True
        store = RedisProcedureStore(client)

        with pytest.raises(ProcedureStoreException):
            await store.save_procedure(_procedure())
        with pytest.raises(ProcedureStoreException):
            await store.save_trace(_trace())
