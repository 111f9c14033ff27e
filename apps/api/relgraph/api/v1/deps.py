from __future__ import annotations

from collections.abc import Generator

from fastapi import Request

from relgraph.core.config import Settings, get_settings
from relgraph.db.base import GraphStore
from relgraph.db.factory import build_graph_store
from relgraph.db.pg.session import SessionLocal


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_settings_dep() -> Settings:
    return get_settings()


def get_graph_store(request: Request) -> GraphStore:
    store = getattr(request.app.state, "graph_store", None)
    if store is None:
        store = build_graph_store()
        request.app.state.graph_store = store
    return store
