"""
In-memory implementation of IProcedureStore.

RAM-based procedure and trace store for development and testing. Data is
lost on restart. Every key is prefixed with the tenant id so a lookup can
never see another tenant's records.
"""

import asyncio
from typing import Dict, List, Optional, Set, Tuple

from decisioncore.models.interfaces import IProcedureStore
from decisioncore.models.procedures import Procedure
from decisioncore.models.trace import Trace


class InMemoryProcedureStore(IProcedureStore):
    """In-memory implementation of IProcedureStore using Python dictionaries"""

    def __init__(self):
        self._procedures: Dict[Tuple[str, str], Dict[int, Procedure]] = {}  # (tenant, procedure_id) -> version -> procedure
        self._fingerprints: Dict[Tuple[str, str], Set[str]] = {}  # (tenant, fingerprint) -> procedure ids
        self._traces: Dict[Tuple[str, str], Trace] = {}  # (tenant, trace_id) -> trace
        self._promotions: Dict[Tuple[str, str], Tuple[str, int]] = {}  # (tenant, trace_id) -> (procedure_id, version)
        self._stats: Dict[Tuple[str, str], List[int]] = {}  # (tenant, procedure_id) -> [successes, executions]
        self._lock = asyncio.Lock()

    async def find_procedures(self, tenant_id: str, fingerprint: str) -> List[Procedure]:
        async with self._lock:
            found: List[Procedure] = []
            for procedure_id in self._fingerprints.get((tenant_id, fingerprint), set()):
                found.extend(self._procedures.get((tenant_id, procedure_id), {}).values())
            return found

    async def get_versions(self, tenant_id: str, procedure_id: str) -> List[Procedure]:
        async with self._lock:
            versions = self._procedures.get((tenant_id, procedure_id), {})
            return [versions[v] for v in sorted(versions)]

    async def save_procedure(self, procedure: Procedure) -> bool:
        """
        Store a new procedure version.

        Returns:
            False if the version already exists or its source trace was already promoted
        """
        async with self._lock:
            key = (procedure.tenant_id, procedure.procedure_id)
            versions = self._procedures.setdefault(key, {})
            if procedure.version in versions:
                return False
            if procedure.source_trace_id:
                promotion_key = (procedure.tenant_id, procedure.source_trace_id)
                if promotion_key in self._promotions:
                    return False
                self._promotions[promotion_key] = (procedure.procedure_id, procedure.version)
            versions[procedure.version] = procedure
            self._fingerprints.setdefault((procedure.tenant_id, procedure.fingerprint), set()).add(
                procedure.procedure_id
            )
            return True

    async def set_deprecated(self, tenant_id: str, procedure_id: str, version: int, deprecated: bool = True) -> bool:
        async with self._lock:
            versions = self._procedures.get((tenant_id, procedure_id), {})
            if version not in versions:
                return False
            versions[version] = versions[version].model_copy(update={"deprecated": deprecated})
            return True

    async def find_promotion(self, tenant_id: str, trace_id: str) -> Optional[Procedure]:
        async with self._lock:
            promoted = self._promotions.get((tenant_id, trace_id))
            if promoted is None:
                return None
            procedure_id, version = promoted
            return self._procedures.get((tenant_id, procedure_id), {}).get(version)

    async def save_trace(self, trace: Trace) -> bool:
        """
        Append a trace.

        Traces of executed replays also update the procedure's success statistics.

        Returns:
            False if a trace with this id already exists for the tenant
        """
        async with self._lock:
            key = (trace.tenant_id, trace.trace_id)
            if key in self._traces:
                return False
            self._traces[key] = trace
            payload = trace.payload
            if payload.procedure_id and payload.outcome is not None and payload.outcome.allowed:
                stats = self._stats.setdefault((trace.tenant_id, payload.procedure_id), [0, 0])
                stats[1] += 1
                if trace.succeeded:
                    stats[0] += 1
            return True

    async def get_trace(self, tenant_id: str, trace_id: str) -> Optional[Trace]:
        async with self._lock:
            return self._traces.get((tenant_id, trace_id))

    async def get_success_rate(self, tenant_id: str, procedure_id: str) -> Optional[float]:
        async with self._lock:
            stats = self._stats.get((tenant_id, procedure_id))
            if not stats or stats[1] == 0:
                return None
            return stats[0] / stats[1]
