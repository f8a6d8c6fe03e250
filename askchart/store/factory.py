"""Aggregate store backends and the factory that picks one from settings."""
from __future__ import annotations

from askchart.core.config import Settings, get_settings
from askchart.core.logging import get_logger
from askchart.store.base import AggregateStore

logger = get_logger(__name__)


def get_store(settings: Settings | None = None) -> AggregateStore:
    """Build the store named by ``settings.store_backend``."""
    settings = settings or get_settings()
    backend = settings.store_backend.lower()

    if backend == "memory":
        from askchart.store.demo_data import generate_demo_tables
        from askchart.store.memory_store import InMemoryAggregateStore
        store: AggregateStore = InMemoryAggregateStore(generate_demo_tables())
    elif backend == "rpc":
        from askchart.store.rpc_store import SupabaseRpcStore
        store = SupabaseRpcStore(settings)
    elif backend == "sql":
        from askchart.store.sql_store import SqlAggregateStore
        store = SqlAggregateStore()
    else:
        raise NotImplementedError(
            f"Store backend '{backend}' is not supported.  Choose from: memory, rpc, sql"
        )

    logger.info("Aggregate store backend=%s", backend)
    return store
