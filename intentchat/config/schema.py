# ==============================
# Config Schemas (Pydantic)
# ==============================
"""
Pydantic settings models for intentchat.

Notes:
- No env reads here. No file IO here. Pure types + defaults.
- loader.py builds a single Settings object with precedence merging.
- Thresholds and window sizes are deployment tunables: embedding models
  produce different score distributions, so none of them are fixed behavior.

Precedence (implemented in loader.py):
env > .env > configs/*.yaml > defaults
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ==============================
# App Settings
# ==============================


class PathsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    repo_root: str = Field(default=".", description="Project root (relative or absolute)")
    configs_dir: str = Field(default="configs", description="Configs directory")
    storage_dir: str = Field(default="storage", description="Runtime storage directory")


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    env: str = Field(default="local", description="Environment name (local/stage/prod)")
    debug: bool = Field(default=False)
    default_session: str = Field(default="default", description="Session id used when none is given")
    system_prompt: str = Field(
        default="You are a helpful assistant running on the user's machine.",
        description="System prompt for new sessions",
    )
    sync_roots: List[str] = Field(
        default_factory=list,
        description="Directories indexed in the background when a chat starts",
    )
    paths: PathsConfig = Field(default_factory=PathsConfig)


# ==============================
# Embedding Settings
# ==============================


class EmbeddingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = Field(default="fastembed", description="Embedding backend name")
    model_name: str = Field(default="BAAI/bge-large-en-v1.5")
    model_revision: Optional[str] = Field(default=None, description="Optional revision label folded into model_version")
    dimension: int = Field(default=1024, gt=0)
    cache_dir: Optional[str] = Field(default=None, description="Where model files are written/read on start")
    threads: Optional[int] = Field(default=None)
    query_prefix: str = Field(default="query: ", description="Prefix applied to user-turn embeddings")
    max_batch_size: int = Field(default=32, gt=0)
    max_wait_ms: int = Field(default=20, ge=0, description="Micro-batch accumulation window")
    timeout_seconds: float = Field(default=30.0, gt=0)
    retry_attempts: int = Field(default=3, ge=1, description="Attempts per batch on the indexing path")
    retry_backoff_seconds: float = Field(default=0.5, ge=0)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1.0)


# ==============================
# Vector Index Settings
# ==============================


class IndexConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = Field(default="sqlite", description="sqlite | qdrant")
    metric: str = Field(default="cosine", description="cosine | dot | euclidean")
    db_path: Optional[str] = Field(default=None, description="SQLite index file; defaults under storage/index/")
    state_path: Optional[str] = Field(default=None, description="Sync side table; defaults under storage/index/")
    qdrant_url: str = Field(default="http://localhost:6334")
    qdrant_prefer_grpc: bool = Field(default=True)
    timeout_seconds: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _check_choices(self) -> "IndexConfig":
        if self.backend not in {"sqlite", "qdrant"}:
            raise ValueError(f"index.backend must be sqlite or qdrant, got {self.backend!r}")
        if self.metric not in {"cosine", "dot", "euclidean"}:
            raise ValueError(f"index.metric must be cosine, dot or euclidean, got {self.metric!r}")
        return self


# ==============================
# Chunking Settings
# ==============================


class ChunkingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    window_lines: int = Field(default=60, gt=0)
    overlap_lines: int = Field(default=10, ge=0)
    max_chars: int = Field(default=4000, gt=0)
    max_file_bytes: int = Field(default=500_000, gt=0)
    include_extensions: List[str] = Field(
        default_factory=lambda: [
            ".txt", ".md", ".markdown", ".rst", ".py", ".rs", ".go", ".js", ".ts",
            ".java", ".c", ".h", ".cpp", ".toml", ".yaml", ".yml", ".json", ".csv",
        ]
    )
    ignore_dirs: List[str] = Field(
        default_factory=lambda: [".git", "__pycache__", "node_modules", ".venv", "venv", "target", "storage"]
    )

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.overlap_lines >= self.window_lines:
            raise ValueError("chunking.overlap_lines must be smaller than chunking.window_lines")
        return self


# ==============================
# Resolver Settings
# ==============================


class ResolverConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    k_cmd: int = Field(default=3, gt=0)
    k_ctx: int = Field(default=8, gt=0)
    command_threshold: float = Field(default=0.55)
    margin: float = Field(default=0.05, ge=0)
    content_threshold: float = Field(default=0.30)
    context_budget_tokens: int = Field(default=1500, ge=0)
    chars_per_token: int = Field(default=4, gt=0)


# ==============================
# Completion Service Settings
# ==============================


class CompletionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    llm_host: str = Field(default="localhost:8000", description="host:port of the completion server")
    generate_path: str = Field(default="/generate")
    timeout_seconds: float = Field(default=120.0, gt=0)
    history_turns: int = Field(default=20, ge=0, description="Most recent turns sent with each prompt")
    context_template: str = Field(
        default="Relevant local context:\n{{ context }}",
        description="Template for the retrieved-context system message",
    )


# ==============================
# Sessions / Logging / Commands
# ==============================


class SessionsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    backend: str = Field(default="sqlite", description="sqlite | memory")
    db_path: Optional[str] = Field(default=None, description="Defaults to storage/sessions.sqlite")


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="INFO")
    console: bool = Field(default=True)
    file: Optional[str] = Field(default=None, description="Optional JSON-lines log file")


class CommandsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    include_builtin: bool = Field(default=True)
    catalog_file: Optional[str] = Field(default=None, description="Extra commands YAML; defaults to configs/command_catalog.yaml")


# ==============================
# Top-Level Settings
# ==============================


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    app: AppConfig = Field(default_factory=AppConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)

    def repo_root_path(self) -> Path:
        return Path(self.app.paths.repo_root).expanduser().resolve()

    def resolve_path(self, path_str: str) -> Path:
        path = Path(path_str).expanduser()
        return path if path.is_absolute() else (self.repo_root_path() / path)

    def storage_path(self) -> Path:
        return self.resolve_path(self.app.paths.storage_dir)
