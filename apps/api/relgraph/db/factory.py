from __future__ import annotations

import logging

from relgraph.core.config import Settings, get_settings
from relgraph.db.base import GraphStore

logger = logging.getLogger(__name__)


def build_graph_store(settings: Settings | None = None) -> GraphStore:
    settings = settings or get_settings()
    backend = settings.graph_store_backend.strip().lower()
    if backend == "memory":
        from relgraph.db.memory.store import get_memory_store

        logger.info("graph_store_selected", extra={"backend": "memory"})
        return get_memory_store()
    if backend == "neo4j":
        from relgraph.db.neo4j.driver import Neo4jGraphStore

        logger.info("graph_store_selected", extra={"backend": "neo4j", "database": settings.neo4j_database})
        return Neo4jGraphStore.from_settings(settings)
    raise ValueError(f"unsupported graph_store_backend: {settings.graph_store_backend}")
