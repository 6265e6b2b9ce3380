"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "DOCVEC_"
DEFAULT_CONFIG_PATH = Path("~/.config/docvector/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("project", "root"): "project_root",
    ("storage", "db_path"): "db_path",
    ("embeddings", "backend"): "embedding_backend",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "batch"): "embedding_batch",
    ("embeddings", "device"): "embedding_device",
    ("indexer", "include"): "index_include",
    ("indexer", "exclude"): "index_exclude",
    ("indexer", "types"): "index_types",
    ("indexer", "batch"): "index_batch",
    ("indexer", "git"): "git_enabled",
    ("indexer", "max_commits"): "git_max_commits",
    ("watch", "enabled"): "watch_enabled",
    ("watch", "debounce_ms"): "watch_debounce_ms",
    ("search", "k"): "search_k",
    ("search", "alpha"): "search_alpha",
    ("search", "hybrid"): "search_hybrid",
    ("search", "rerank"): "search_rerank",
    ("search", "rerank_multiplier"): "rerank_multiplier",
    ("incoherence", "coherence"): "coherence_threshold",
    ("incoherence", "drift"): "drift_threshold",
    ("incoherence", "match"): "match_threshold",
    ("logging", "level"): "log_level",
    ("logging", "json"): "log_json",
}

_LIST_FIELDS = ("index_include", "index_exclude", "index_types")


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    project_root: Path = Field(default_factory=Path.cwd)
    db_path: Path = Field(default=Path(".docvector") / "vectors.db")
    embedding_backend: Literal["hashed", "sentence-transformers"] = "hashed"
    embedding_model: str = "docvector/hashed-384"
    embedding_dim: int = Field(default=384, ge=8)
    embedding_batch: int = Field(default=32, ge=1)
    embedding_device: str | None = None
    index_include: list[str] = Field(
        default_factory=lambda: ["**/*.py", "**/*.md", "**/*.{ts,tsx,js,jsx}"]
    )
    index_exclude: list[str] = Field(
        default_factory=lambda: [
            "**/node_modules/**",
            "**/dist/**",
            "**/.git/**",
            "**/build/**",
            "**/.venv/**",
            "**/__pycache__/**",
        ]
    )
    index_types: list[Literal["code", "docs", "comments", "commits", "prs"]] = Field(
        default_factory=lambda: ["code", "docs", "comments"]
    )
    index_batch: int = Field(default=50, ge=1)
    git_enabled: bool = False
    git_max_commits: int = Field(default=100, ge=0)
    watch_enabled: bool = False
    watch_debounce_ms: int = Field(default=1000, ge=0)
    search_k: int = Field(default=10, ge=1)
    search_alpha: float = Field(default=0.7, ge=0.0, le=1.0)
    search_hybrid: bool = True
    search_rerank: bool = True
    rerank_multiplier: int = Field(default=3, ge=1)
    coherence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    drift_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    match_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    log_level: str = "INFO"
    log_json: bool = True

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "project_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("paths must be a path or string")

    @field_validator(*_LIST_FIELDS, mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return _split_top_level(value)
        return value

    @property
    def resolved_db_path(self) -> Path:
        if self.db_path.is_absolute():
            return self.db_path
        return self.project_root / self.db_path

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
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _split_top_level(value: str) -> list[str]:
    """Split a comma-separated env value without breaking ``{a,b}`` globs."""
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in value:
        if char == "{":
            depth += 1
        elif char == "}":
            depth = max(0, depth - 1)
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())
    return [part for part in parts if part]


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with DOCVEC_ prefix into Settings fields."""
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


__all__ = ["Settings", "get_settings"]
