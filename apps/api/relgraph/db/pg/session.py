from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from relgraph.core.config import get_settings

settings = get_settings()


def _sqlalchemy_dsn(dsn: str) -> str:
    if dsn.startswith("postgresql://"):
        return dsn.replace("postgresql://", "postgresql+psycopg://", 1)
    return dsn


dsn = _sqlalchemy_dsn(settings.neon_pg_dsn)
engine_kwargs: dict[str, object] = {
    "future": True,
    "pool_pre_ping": True,
}
if dsn.startswith("postgresql+psycopg://"):
    engine_kwargs.update(
        {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
        }
    )
elif dsn.startswith("sqlite"):
    # Request handlers and background jobs share the audit file across threads.
    engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(dsn, **engine_kwargs)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
