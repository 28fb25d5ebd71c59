"""Application configuration handling."""

from __future__ import annotations

import os
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

from localdex.models.scheduling import (
    TASK_DOCUMENT_SYNC,
    TASK_OAUTH_REFRESH,
    SchedulerConfig,
    TaskConfig,
)
from localdex.models.search import SearchMode

ENV_PREFIX = "LDX_"
DEFAULT_CONFIG_PATH = Path("~/.config/localdex/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "backend"): "storage_backend",
    ("storage", "db_path"): "db_path",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("llm", "provider"): "llm_provider",
    ("llm", "model"): "llm_model",
    ("llm", "fallback"): "llm_fallback",
    ("ollama", "url"): "ollama_url",
    ("search", "mode"): "search_mode",
    ("search", "keyword_weight"): "keyword_weight",
    ("search", "semantic_weight"): "semantic_weight",
    ("search", "semantic_top_k"): "semantic_top_k",
    ("search", "default_limit"): "default_limit",
    ("search", "max_query_variants"): "max_query_variants",
    ("scheduler", "enabled"): "scheduler_enabled",
    ("scheduler", "tick_seconds"): "scheduler_tick_seconds",
    ("scheduler", "workers"): "scheduler_workers",
    ("scheduler", "sync_concurrency"): "sync_concurrency",
    ("scheduler", "oauth_refresh", "enabled"): "oauth_refresh_enabled",
    ("scheduler", "oauth_refresh", "interval_minutes"): "oauth_refresh_interval_minutes",
    ("scheduler", "document_sync", "enabled"): "document_sync_enabled",
    ("scheduler", "document_sync", "interval_minutes"): "document_sync_interval_minutes",
    ("watch", "enabled"): "watch_enabled",
    ("watch", "debounce_seconds"): "watch_debounce_seconds",
    ("filesystem", "include_glob"): "fs_include",
    ("filesystem", "exclude_glob"): "fs_exclude",
    ("filesystem", "checkpoint_every"): "fs_checkpoint_every",
}


class ProcessorSettings(BaseModel):
    """One post-processor in the ingest chain."""

    name: str
    options: dict[str, Any] = Field(default_factory=dict)


class OAuthClientSettings(BaseModel):
    """OAuth application used to refresh tokens for a connector type."""

    token_url: str
    client_id: str
    client_secret: str = ""


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    storage_backend: Literal["sqlite", "memory"] = "sqlite"
    db_path: Path = Field(default=Path.home() / ".localdex" / "localdex.db")

    embedding_provider: Literal["hashed", "ollama", "none"] = "hashed"
    embedding_model: str = "hashed-384"
    embedding_dim: int = Field(default=384, ge=8)
    llm_provider: Literal["ollama", "none"] = "none"
    llm_model: str = "llama3.2"
    llm_fallback: bool = True
    ollama_url: str = "http://127.0.0.1:11434"

    search_mode: SearchMode = SearchMode.HYBRID
    keyword_weight: float = Field(default=1.0, ge=1.0)
    semantic_weight: float = Field(default=1.0, ge=1.0)
    semantic_top_k: int = Field(default=100, ge=1)
    default_limit: int = Field(default=20, ge=1, le=500)
    max_query_variants: int = Field(default=3, ge=1)

    processors: list[ProcessorSettings] = Field(
        default_factory=lambda: [ProcessorSettings(name="chunker")]
    )

    scheduler_enabled: bool = True
    scheduler_tick_seconds: float = Field(default=60.0, gt=0)
    scheduler_workers: int = Field(default=4, ge=1)
    sync_concurrency: int = Field(default=2, ge=1)
    oauth_refresh_enabled: bool = True
    oauth_refresh_interval_minutes: float = Field(default=45.0, gt=0)
    document_sync_enabled: bool = True
    document_sync_interval_minutes: float = Field(default=60.0, gt=0)
    oauth_clients: dict[str, OAuthClientSettings] = Field(default_factory=dict)

    watch_enabled: bool = False
    watch_debounce_seconds: float = Field(default=2.0, ge=0)
    fs_include: str = "**/*.{md,markdown,txt,text,log,eml,pdf,docx}"
    fs_exclude: str = "**/{.git,.obsidian,node_modules}/**"
    fs_checkpoint_every: int = Field(default=50, ge=1)

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", mode="before")
    @classmethod
    def _expand_db_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("db_path must be a path or string")

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None

    def scheduler_config(self) -> SchedulerConfig:
        return SchedulerConfig(
            enabled=self.scheduler_enabled,
            task_configs={
                TASK_OAUTH_REFRESH: TaskConfig(
                    enabled=self.oauth_refresh_enabled,
                    interval=timedelta(minutes=self.oauth_refresh_interval_minutes),
                ),
                TASK_DOCUMENT_SYNC: TaskConfig(
                    enabled=self.document_sync_enabled,
                    interval=timedelta(minutes=self.document_sync_interval_minutes),
                ),
            },
        )


# Sections whose values are whole mappings rather than nested settings.
_OPAQUE_SECTIONS = {"oauth_clients", "processors"}


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping) and key not in _OPAQUE_SECTIONS:
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with LDX_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields and field_name not in _OPAQUE_SECTIONS:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "ProcessorSettings", "OAuthClientSettings", "get_settings"]
