from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relgraph.api.v1.routes import graph, health, ingest, normalize, paths
from relgraph.core.config import get_settings
from relgraph.core.errors import StoreTimeout, StoreUnavailable, ValidationError
from relgraph.core.logging import configure_logging
from relgraph.db.factory import build_graph_store
from relgraph.db.pg.base import Base
from relgraph.db.pg import models as _models  # noqa: F401
from relgraph.db.pg.session import engine

configure_logging()
logger = logging.getLogger(__name__)
settings = get_settings()
app = FastAPI(title=settings.app_name)
allowed_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
async def on_startup() -> None:
    Base.metadata.create_all(bind=engine)
    if getattr(app.state, "graph_store", None) is None:
        try:
            app.state.graph_store = build_graph_store(settings)
        except StoreUnavailable:
            # Requests retry the connection and answer 503 until the store is reachable.
            logger.exception("graph_store_startup_failed", extra={"backend": settings.graph_store_backend})
            app.state.graph_store = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    store = getattr(app.state, "graph_store", None)
    if store is not None:
        await store.close()
        app.state.graph_store = None


@app.exception_handler(StoreTimeout)
async def store_timeout_handler(request: Request, exc: StoreTimeout) -> JSONResponse:
    logger.warning("request_store_timeout", extra={"path": request.url.path})
    return JSONResponse(status_code=504, content={"detail": str(exc) or "Graph store timed out"})


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.warning("request_store_unavailable", extra={"path": request.url.path})
    return JSONResponse(status_code=503, content={"detail": str(exc) or "Graph store unavailable"})


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"detail": exc.reason, "record_ref": exc.record_ref, "context": exc.detail},
    )


app.include_router(health.router, prefix=settings.api_prefix)
app.include_router(normalize.router, prefix=settings.api_prefix)
app.include_router(graph.router, prefix=settings.api_prefix)
app.include_router(ingest.router, prefix=settings.api_prefix)
app.include_router(paths.router, prefix=settings.api_prefix)
