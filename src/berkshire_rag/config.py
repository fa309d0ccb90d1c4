"""Shared configuration loaded from environment / ``.env``."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

from berkshire_rag.errors import ConfigurationError


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file.

    Build one instance at process start with :func:`get_settings` and pass it
    (or the values it carries) into each component.
    """

    # LLM
    openai_api_key: str = Field(default="", description="OpenAI API key")
    llm_model_name: str = Field(default="gpt-4o", description="Chat model identifier")
    llm_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible API. Leave empty to use OpenAI "
            "cloud, e.g. 'http://localhost:8000/v1' for a local vLLM server."
        ),
    )
    llm_temperature: float = 0.0
    request_timeout: float = Field(default=60.0, description="Timeout (s) for LLM / embedding calls")

    # Embedding (one pinned model shared by ingestion and query)
    embedding_provider: Literal["openai", "huggingface"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embed_max_retries: int = 3
    embed_retry_backoff: float = 1.0

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_persist_dir: str = Field(
        default="",
        description="When set, use an on-disk Chroma client at this path instead of HTTP.",
    )
    chroma_collection: str = "berkshire_letters"
    chroma_timeout: float = Field(
        default=30.0,
        ge=0,
        description="Timeout (s) for Chroma reads; 0 waits indefinitely.",
    )
    distance_metric: Literal["cosine", "ip", "l2"] = "cosine"

    # Ingestion
    source_dir: str = "data"
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    batch_size: int = Field(default=50, gt=0)
    extract_workers: int = Field(default=1, ge=1)

    # Retrieval / agent
    default_top_k: int = Field(default=5, ge=1)
    max_iterations: int = 2
    history_window: int = 6
    memory_db_path: str = Field(
        default="",
        description="SQLite file holding conversation memory; empty keeps it in-process only.",
    )

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def require_openai_credentials(self) -> None:
        """Fail fast when an OpenAI-backed component has nothing to talk to."""
        if not self.openai_api_key and not self.llm_base_url:
            raise ConfigurationError(
                "OPENAI_API_KEY is not set (and no LLM_BASE_URL override was given)"
            )


def get_settings(**overrides: object) -> Settings:
    """Construct the process-wide settings object.

    Keyword *overrides* take precedence over the environment, which is how
    CLI flags are layered on top of ``.env`` values.
    """
    return Settings(**{k: v for k, v in overrides.items() if v is not None})
