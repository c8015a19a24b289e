"""Procedure and trace persistence."""

from .inmemory_procedure_store import InMemoryProcedureStore
from .redis_procedure_store import RedisProcedureStore

__all__ = ["InMemoryProcedureStore", "RedisProcedureStore"]
