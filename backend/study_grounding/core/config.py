"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "SGR_"
DEFAULT_CONFIG_PATH = Path("~/.config/study-grounding/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "api_key"): "embedding_api_key",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("embeddings", "max_retries"): "embedding_max_retries",
    ("embeddings", "retry_delay"): "embedding_retry_delay",
    ("embeddings", "timeout"): "embedding_timeout",
    ("chunking", "chunk_size"): "chunk_size",
    ("chunking", "overlap_size"): "overlap_size",
    ("chunking", "min_chunk_size"): "min_chunk_size",
    ("chunking", "preserve_paragraphs"): "preserve_paragraphs",
    ("retrieval", "limit"): "search_limit",
    ("retrieval", "min_similarity"): "min_similarity",
    ("retrieval", "timeout"): "retrieval_timeout",
    ("citations", "excerpt_chars"): "citation_excerpt_chars",
    ("citations", "match_threshold"): "citation_match_threshold",
    ("upload", "max_concurrent_files_per_user"): "max_concurrent_files_per_user",
    ("upload", "max_files_per_batch"): "max_files_per_batch",
    ("upload", "max_batch_size_mb"): "max_batch_size_mb",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".study-grounding" / "sg.db")

    embedding_backend: Literal["voyage", "hashed"] = "voyage"
    embedding_model: str = "voyage-large-2"
    embedding_base_url: str = "https://api.voyageai.com/v1"
    embedding_api_key: str | None = None
    embedding_dim: int = Field(default=1536, ge=1)
    embedding_batch_size: int = Field(default=128, ge=1)
    embedding_max_retries: int = Field(default=3, ge=0)
    embedding_retry_delay: float = Field(default=1.0, ge=0)
    embedding_timeout: float = Field(default=60.0, gt=0)

    chunk_size: int = Field(default=1000, ge=1)
    overlap_size: int = Field(default=200, ge=0)
    min_chunk_size: int = Field(default=100, ge=1)
    preserve_paragraphs: bool = True

    search_limit: int = Field(default=5, ge=1)
    min_similarity: float = Field(default=0.1, ge=-1.0, le=1.0)
    retrieval_timeout: float = Field(default=10.0, gt=0)

    citation_excerpt_chars: int = Field(default=300, ge=1)
    citation_match_threshold: float = Field(default=80.0, ge=0, le=100)

    max_concurrent_files_per_user: int = Field(default=3, ge=1)
    max_files_per_batch: int = Field(default=5, ge=1)
    max_batch_size_mb: float = Field(default=50.0, gt=0)

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


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML sections into Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
            continue
        mapped_key = _YAML_KEY_MAP.get(next_prefix)
        if mapped_key:
            flat[mapped_key] = value
        elif key in Settings.model_fields:
            flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings", "ENV_PREFIX"]
