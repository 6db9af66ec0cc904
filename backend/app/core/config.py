from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FASTSHADERS_", extra="ignore")

    app_name: str = "FastShaders API"
    app_version: str = "0.1.0"
    debug: bool = False

    api_prefix: str = "/api"

    database_url: str = Field(
        default_factory=lambda: (
            f"sqlite:///{Path(__file__).resolve().parents[3] / 'backend' / 'data' / 'fastshaders.db'}"
        )
    )

    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    text_sync_debounce_ms: int = Field(default=400, ge=0)
    persist_debounce_ms: int = Field(default=500, ge=0)
    preview_frame_interval_ms: int = Field(default=33, ge=1)
    history_limit: int = Field(default=50, ge=1)
    event_queue_size: int = Field(default=100, ge=1)
    canonicalize_text_after_sync: bool = False

    cost_table_path: Path | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
