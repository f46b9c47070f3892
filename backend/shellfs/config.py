"""shellfs configuration — Pydantic BaseSettings loaded from .env."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """File system service settings."""

    app_name: str = "shellfs"
    debug: bool = True
    environment: str = "development"
    log_level: str = "INFO"

    # Network
    host: str = "127.0.0.1"
    port: int = 8000
    api_prefix: str = "/api"
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:8000",
    ]

    # Storage paths (relative resolved from project root at runtime)
    data_dir: str = "./data"
    database_path: str = "./data/content.db"
    snapshot_path: str = "./data/metadata.json"
    seed_manifest_path: str = ""  # JSON list of {path, ref, type}

    # Virtual catalogs (JSON files, empty = in-memory empty catalog)
    music_catalog_path: str = ""
    videos_catalog_path: str = ""
    bookmarks_catalog_path: str = ""

    # Metadata index persistence
    persist_debounce_seconds: float = 0.5
    snapshot_flush_interval_seconds: int = 60

    # Content store
    storage_retry_backoff_seconds: float = 0.2
    max_db_connections: int = 5

    # Lazy materialization
    lazy_fetch_timeout_seconds: float = 15.0
    lazy_fetch_base_url: str = ""

    # Orphan content reconciliation
    reconcile_interval_minutes: int = 30

    uvicorn_workers: int = 1

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        env_prefix="SHELLFS_",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: list[str] | str) -> list[str]:
        if isinstance(value, str) and not value.startswith("["):
            return [o.strip() for o in value.split(",") if o.strip()]
        if isinstance(value, list):
            return value
        return ["http://localhost:5173"]

    @model_validator(mode="after")
    def _resolve_paths(self) -> "Settings":
        """Ensure data paths are absolute."""
        base = Path(__file__).resolve().parent.parent  # backend/
        for field in (
            "data_dir",
            "database_path",
            "snapshot_path",
            "seed_manifest_path",
            "music_catalog_path",
            "videos_catalog_path",
            "bookmarks_catalog_path",
        ):
            val = getattr(self, field)
            if val and not Path(val).is_absolute():
                setattr(self, field, str(base / val))
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
