"""
Redis implementation of IProcedureStore.

Key layout (``{prefix}`` defaults to "decisioncore"):
    {prefix}:proc:{tenant}:{procedure_id}   hash  version -> procedure JSON
    {prefix}:fp:{tenant}:{fingerprint}      set   procedure ids
    {prefix}:trace:{tenant}:{trace_id}      str   trace JSON (write-once)
    {prefix}:promo:{tenant}:{trace_id}      str   "procedure_id:version" (write-once)
    {prefix}:stats:{tenant}:{procedure_id}  hash  successes, executions

Tenant and name components are percent-encoded (":" becomes "%3A").
"""

import logging
from typing import List, Optional
from urllib.parse import quote

import redis.asyncio as redis
from pydantic import ValidationError

from decisioncore.exceptions import ProcedureStoreException
from decisioncore.models.interfaces import IProcedureStore
from decisioncore.models.procedures import Procedure
from decisioncore.models.trace import Trace

logger = logging.getLogger(__name__)


class RedisProcedureStore(IProcedureStore):
    """Redis implementation of the IProcedureStore interface"""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "decisioncore"):
        """
        Args:
            redis_client: Client created with decode_responses=True
            key_prefix: Namespace for every key written by this store
        """
        self.redis_client = redis_client
        self.prefix = key_prefix

    def _key(self, kind: str, tenant_id: str, name: str) -> str:
        # components are percent-encoded so a ":" inside an id cannot shift the key layout
        return f"{self.prefix}:{kind}:{quote(tenant_id, safe='')}:{quote(name, safe='')}"

    def _failure(self, operation: str, error: Exception) -> ProcedureStoreException:
        logger.error(f"Redis {operation} failed: {error}")
        return ProcedureStoreException(
            f"Procedure store operation failed: {operation}",
            details={"operation": operation, "error_type": type(error).__name__},
        )

    def _decode_procedure(self, raw: str) -> Optional[Procedure]:
        try:
            return Procedure.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Skipping unreadable procedure record: {e.error_count()} errors")
            return None

    async def find_procedures(self, tenant_id: str, fingerprint: str) -> List[Procedure]:
        try:
            procedure_ids = await self.redis_client.smembers(self._key("fp", tenant_id, fingerprint))
            found: List[Procedure] = []
            for procedure_id in sorted(procedure_ids):
                raw_versions = await self.redis_client.hgetall(self._key("proc", tenant_id, procedure_id))
                for raw in raw_versions.values():
                    procedure = self._decode_procedure(raw)
                    # tenant check on the decoded record as well as the key
                    if procedure is not None and procedure.tenant_id == tenant_id:
                        found.append(procedure)
            return found
        except redis.RedisError as e:
            raise self._failure("find_procedures", e) from e

    async def get_versions(self, tenant_id: str, procedure_id: str) -> List[Procedure]:
        try:
            raw_versions = await self.redis_client.hgetall(self._key("proc", tenant_id, procedure_id))
        except redis.RedisError as e:
            raise self._failure("get_versions", e) from e
        procedures = [p for p in map(self._decode_procedure, raw_versions.values()) if p is not None]
        return sorted((p for p in procedures if p.tenant_id == tenant_id), key=lambda p: p.version)

    async def save_procedure(self, procedure: Procedure) -> bool:
        proc_key = self._key("proc", procedure.tenant_id, procedure.procedure_id)
        promo_key = None
        if procedure.source_trace_id:
            promo_key = self._key("promo", procedure.tenant_id, procedure.source_trace_id)
        claimed = False
        try:
            if promo_key:
                claimed = bool(await self.redis_client.set(
                    promo_key, f"{procedure.procedure_id}:{procedure.version}", nx=True
                ))
                if not claimed:
                    return False
            # index first so the version write is the last step; a version is never left unindexed
            await self.redis_client.sadd(
                self._key("fp", procedure.tenant_id, procedure.fingerprint), procedure.procedure_id
            )
            created = await self.redis_client.hsetnx(
                proc_key, str(procedure.version), procedure.model_dump_json()
            )
            if not created:
                await self._release_claim(promo_key)
                return False
            return True
        except redis.RedisError as e:
            if claimed:
                await self._release_claim(promo_key)
            raise self._failure("save_procedure", e) from e

    async def _release_claim(self, promo_key: Optional[str]) -> None:
        """Drop a promotion claim whose version was never written."""
        if not promo_key:
            return
        try:
            await self.redis_client.delete(promo_key)
        except redis.RedisError as e:
            logger.warning(f"Could not release promotion claim {promo_key}: {e}")

    async def set_deprecated(self, tenant_id: str, procedure_id: str, version: int, deprecated: bool = True) -> bool:
        proc_key = self._key("proc", tenant_id, procedure_id)
        try:
            raw = await self.redis_client.hget(proc_key, str(version))
            if raw is None:
                return False
            procedure = self._decode_procedure(raw)
            if procedure is None or procedure.tenant_id != tenant_id:
                return False
            updated = procedure.model_copy(update={"deprecated": deprecated})
            await self.redis_client.hset(proc_key, str(version), updated.model_dump_json())
            return True
        except redis.RedisError as e:
            raise self._failure("set_deprecated", e) from e

    async def find_promotion(self, tenant_id: str, trace_id: str) -> Optional[Procedure]:
        try:
            promoted = await self.redis_client.get(self._key("promo", tenant_id, trace_id))
            if not promoted:
                return None
            procedure_id, _, version = promoted.rpartition(":")
            raw = await self.redis_client.hget(self._key("proc", tenant_id, procedure_id), version)
        except redis.RedisError as e:
            raise self._failure("find_promotion", e) from e
        return self._decode_procedure(raw) if raw else None

    async def save_trace(self, trace: Trace) -> bool:
        try:
            created = await self.redis_client.set(
                self._key("trace", trace.tenant_id, trace.trace_id), trace.model_dump_json(), nx=True
            )
            if not created:
                return False
            payload = trace.payload
            if payload.procedure_id and payload.outcome is not None and payload.outcome.allowed:
                stats_key = self._key("stats", trace.tenant_id, payload.procedure_id)
                await self.redis_client.hincrby(stats_key, "executions", 1)
                if trace.succeeded:
                    await self.redis_client.hincrby(stats_key, "successes", 1)
            return True
        except redis.RedisError as e:
            raise self._failure("save_trace", e) from e

    async def get_trace(self, tenant_id: str, trace_id: str) -> Optional[Trace]:
        try:
            raw = await self.redis_client.get(self._key("trace", tenant_id, trace_id))
        except redis.RedisError as e:
            raise self._failure("get_trace", e) from e
        if not raw:
            return None
        trace = Trace.model_validate_json(raw)
        return trace if trace.tenant_id == tenant_id else None

    async def get_success_rate(self, tenant_id: str, procedure_id: str) -> Optional[float]:
        try:
            stats = await self.redis_client.hgetall(self._key("stats", tenant_id, procedure_id))
        except redis.RedisError as e:
            raise self._failure("get_success_rate", e) from e
        executions = int(stats.get("executions", 0))
        if executions == 0:
            return None
        return int(stats.get("successes", 0)) / executions
