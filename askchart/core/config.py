"""
Centralised application settings loaded from environment / .env file.
"""
from __future__ import annotations

from pathlib import Path
from functools import lru_cache

from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseSettings):
    # ── Aggregate store ──────────────────────────────────
    store_backend: str = "memory"  # memory | rpc | sql
    supabase_url: str = ""
    supabase_key: str = ""
    aggregate_rpc: str = "mcp_aggregate"

    # ── Postgres (sql backend) ───────────────────────────
    postgres_user: str = "askchart"
    postgres_password: str = "askchart_pw"
    postgres_db: str = "analytics"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    # ── Reasoning fallback ───────────────────────────────
    reasoning_provider: str = "mock"  # mock | http
    reasoning_function: str = "investigate"

    # ── Query planning ───────────────────────────────────
    query_max_concurrency: int = 4
    category_limit: int = 100
    breakdown_limit: int = 200
    http_timeout_seconds: float = 30.0

    # ── App ──────────────────────────────────────────────
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    @property
    def rpc_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/rpc/{self.aggregate_rpc}"

    @property
    def reasoning_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/functions/v1/{self.reasoning_function}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    return Settings()
