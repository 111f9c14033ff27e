from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SOURCE_TRUST_WEIGHTS = {
    "manual": 1.0,
    "linkedin": 0.95,
    "airtable": 0.85,
    "csv": 0.8,
    "firecrawl": 0.7,
    "puppeteer": 0.7,
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Relationship Graph API"
    environment: str = "dev"
    api_prefix: str = "/v1"
    log_level: str = "INFO"
    log_json: bool = False

    graph_store_backend: str = "neo4j"
    neo4j_uri: str = ""
    neo4j_user: str = ""
    neo4j_password: str = ""
    neo4j_database: str = "neo4j"
    neo4j_max_connection_pool_size: int = Field(default=50, ge=1, le=500)
    neo4j_connection_acquisition_timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    neo4j_query_timeout_seconds: float = Field(default=15.0, gt=0, le=600)

    path_max_hops_default: int = Field(default=4, ge=1, le=6)
    path_max_hops_limit: int = Field(default=6, ge=1, le=8)
    path_result_limit: int | None = Field(default=None, ge=1, le=500)
    path_query_row_limit: int = Field(default=2000, ge=1, le=100000)

    source_trust_weights: dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_SOURCE_TRUST_WEIGHTS))
    default_source_trust: float = Field(default=0.6, ge=0.0, le=1.0)
    default_source_confidence: float = Field(default=0.8, ge=0.0, le=1.0)

    neon_pg_dsn: str = "sqlite:///./relgraph.db"
    db_pool_size: int = Field(default=10, ge=1, le=200)
    db_max_overflow: int = Field(default=20, ge=0, le=400)

    redis_url: str = "redis://redis:6379/0"
    queue_mode: str = "redis"
    queue_retry_max: int = Field(default=2, ge=0, le=10)
    queue_retry_interval_seconds: int = Field(default=60, ge=5, le=3600)

    webhook_secret: str = ""
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    def trust_weight(self, source_type: str | None) -> float:
        key = (source_type or "").strip().lower()
        return float(self.source_trust_weights.get(key, self.default_source_trust))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
