"""Configuration management for VaultSearch.

Loads from environment variables, .env files, and config/default.toml.
Secrets come from env vars; structural config from TOML.

Default base directory: ~/.vaultsearch/
  vault/                   — note vault (or symlink to existing)
  data/embeddings.json     — persisted index snapshot
"""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Literal, TypeAlias

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VAULTSEARCH_HOME = Path.home() / ".vaultsearch"

UpdateMode: TypeAlias = Literal["none", "onLoad", "onUpdate"]


class VaultConfig(BaseSettings):
    """Note vault configuration."""

    path: Path = Field(description="Absolute path to the vault root")
    note_extension: str = ".md"
    excluded_folders: list[str] = Field(default_factory=lambda: [".obsidian", ".git", ".trash"])
    strip_frontmatter: bool = False

    @field_validator("path")
    @classmethod
    def validate_vault_path(cls, v: Path) -> Path:
        v = v.expanduser()
        if not v.exists():
            raise ValueError(f"Vault path does not exist: {v}")
        return v.resolve()


class EmbeddingConfig(BaseSettings):
    """Embedding provider and chunking configuration."""

    # Checked against ProviderKind when the store builds its provider.
    provider: str = "local"
    openai_model: str = "text-embedding-3-small"
    openai_base_url: str = "https://api.openai.com/v1"
    local_model: str = "text-embedding-all-minilm-l6-v2-embedding"
    local_base_url: str = "http://localhost:1234/v1"
    dimensions: int = Field(default=384, gt=0)
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    min_content_length: int = 50
    timeout_seconds: float = 30.0

    @model_validator(mode="after")
    def check_overlap(self) -> EmbeddingConfig:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than "
                f"chunk_size ({self.chunk_size})"
            )
        return self


class SearchConfig(BaseSettings):
    """Ranking configuration: threshold, limit and score boosts."""

    similarity_threshold: float = 0.5
    max_results: int = Field(default=20, gt=0)
    title_match_boost: float = 0.5
    max_recency_boost: float = 0.1
    recency_boost_window_days: float = 30.0


class IndexConfig(BaseSettings):
    """Index snapshot persistence."""

    persist_path: Path = Field(
        default_factory=lambda: VAULTSEARCH_HOME / "data" / "embeddings.json"
    )

    @field_validator("persist_path")
    @classmethod
    def expand_persist_path(cls, v: Path) -> Path:
        return v.expanduser()


class UpdateConfig(BaseSettings):
    """Incremental update scheduling."""

    mode: UpdateMode = "onUpdate"
    frequency_seconds: float = 30.0
    min_debounce_seconds: float = 5.0
    min_check_interval_seconds: float = 30.0
    rescan_batch_size: int = Field(default=10, gt=0)
    rescan_batch_delay_ms: int = 50


class Settings(BaseSettings):
    """Root configuration — aggregates all sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="VAULTSEARCH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    vault: VaultConfig = Field(
        default_factory=lambda: VaultConfig(path=VAULTSEARCH_HOME / "vault")
    )
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    updates: UpdateConfig = Field(default_factory=UpdateConfig)

    # Secrets are read from the environment only
    openai_api_key: str = ""

    @property
    def embedding_api_key(self) -> str:
        """Resolve the API key for the configured embedding provider."""
        if self.embedding.provider == "openai":
            return self.openai_api_key
        return ""

    @classmethod
    def from_toml(cls, path: Path | None = None) -> Settings:
        """Load settings from TOML file, with env var overrides."""
        config_path = path or Path("config/default.toml")
        if config_path.exists():
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
            return cls(**data)
        return cls()


def load_settings(config_path: Path | None = None) -> Settings:
    """Load and validate settings. Entry point for all config access."""
    return Settings.from_toml(config_path)
