"""Pydantic models for configuration.

Hierarchy:
  EnvConfig       : one environment setting required by a client engine.
  RAGConfig       : the versioned RAG tuning file (config/rag.json).
    RetrievalConfig, ChunkingConfig, UploadConfig, EmbeddingConfig
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EmbeddingProvider = Literal["lmstudio", "openai"]


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required for a env setting.

    Attributes:
        env_key (str): The key/name of the environment variable to read.
        val_type (str): The expected type of the environment variable's value. Supported types are "string", "number" and "bool".
        default (str | int | bool | None): An optional default value if the environment variable is not set. If None, the variable is required and an error will be raised if it is not set.
    """

    env_key: str
    val_type: str
    default: str | int | bool | None = None


class _CamelModel(BaseModel):
    """Accepts the camelCase keys of rag.json while exposing snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RetrievalConfig(_CamelModel):
    default_top_k: int = Field(default=8, ge=1, le=50)
    max_top_k: int = 20
    min_similarity_score: float = Field(default=0.5, ge=0.0, le=1.0)


class ChunkingConfig(_CamelModel):
    chunk_size: int = 500
    chunk_overlap: int = 50


class UploadConfig(_CamelModel):
    max_file_size_bytes: int = 10485760  # 10 MB


class EmbeddingConfig(_CamelModel):
    provider: EmbeddingProvider = "lmstudio"
    model: str = "text-embedding-bge-m3"
    dimensions: int = 1024
    fallback_provider: EmbeddingProvider | None = None
    fallback_model: str | None = None
    fallback_dimensions: int | None = None
    retry_attempts: int = Field(default=3, ge=1, le=5)
    retry_delay_ms: int = Field(default=1000, ge=100, le=10000)


class RAGConfig(_CamelModel):
    """Process-wide RAG tuning parameters. Loaded once, read-only afterwards."""

    version: str
    retrieval: RetrievalConfig = RetrievalConfig()
    chunking: ChunkingConfig = ChunkingConfig()
    upload: UploadConfig = UploadConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()
