from __future__ import annotations

from pathlib import Path
from functools import lru_cache
from typing import Annotated

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict, NoDecode
from pydantic import field_validator


ROOT_DIR = Path(__file__).resolve().parent.parent.parent

# In Docker, the package is installed to site-packages but config lives at /app/config.
# Fall back to the source-tree-relative path for local development.
_docker_config = Path("/app/config")
CONFIG_DIR = _docker_config if _docker_config.exists() else ROOT_DIR / "config"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Source bridge
    source_api_base_url: str = "http://localhost:8080"
    source_api_key: str = ""
    sources: Annotated[list[str], NoDecode] = []

    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_model: str = "google/gemini-flash-1.5"

    # Polling
    poll_interval_secs: float = 60.0
    posts_limit: int = 200
    replies_limit: int = 50
    source_timeout_secs: float = 300.0
    fetch_timeout_secs: float = 15.0
    replies_timeout_secs: float = 5.0
    capability_timeout_secs: float = 10.0

    # Classification
    queue_size: int = 256
    max_concurrent: int = 5
    max_retries: int = 4
    retry_base_delay_secs: float = 5.0
    classify_timeout_secs: float = 60.0

    # Distribution
    hub_capacity: int = 256
    recent_buffer_size: int = 200

    # Storage
    storage_backend: str = "sql"
    data_dir: Path = Path("data")
    database_url: str = "sqlite+aiosqlite:///data/leadwatch.db"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("sources", mode="before")
    @classmethod
    def _split_sources(cls, value):
        if isinstance(value, str):
            return [s.strip().lstrip("@") for s in value.split(",") if s.strip()]
        return value

    def load_yaml_config(self) -> dict:
        settings_path = CONFIG_DIR / "settings.yaml"
        if settings_path.exists():
            with open(settings_path) as f:
                return yaml.safe_load(f) or {}
        return {}

    def source_names(self) -> list[str]:
        """Sources from the environment, falling back to settings.yaml."""
        if self.sources:
            return list(self.sources)
        configured = self.load_yaml_config().get("sources", [])
        return [str(s).lstrip("@") for s in configured]


@lru_cache
def get_settings() -> Settings:
    return Settings()
