"""Pydantic models for embedding results and provider status."""

from pydantic import BaseModel


class EmbeddingResult(BaseModel):
    """Ephemeral value object, consumed immediately by indexing or retrieval."""

    embedding: list[float]
    provider: str
    model: str
    dimensions: int


class EmbeddingServiceStatus(BaseModel):
    available: bool
    provider: str | None = None
    model: str | None = None
    error: str | None = None
    latency_ms: int | None = None
