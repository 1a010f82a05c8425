"""Pydantic models for knowledge-base files and their indexing lifecycle.

Hierarchy:
  KnowledgeBaseFile : one uploaded source document and its lifecycle status.
  TextChunk         : a slice of a document's cleaned text, pre-embedding.
  IndexingResult    : outcome of one indexing run.
  KBStats           : per-character knowledge-base counters.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FileStatus(str, Enum):
    PENDING = "pending"
    INDEXING = "indexing"
    READY = "ready"
    FAILED = "failed"
    PAUSED = "paused"


class KnowledgeBaseFile(BaseModel):
    """An uploaded source document.

    The status is mutated only by the indexing pipeline or by an explicit
    pause/resume/re-index action. A paused file is excluded from retrieval.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    character_id: str | None = None
    file_name: str
    file_type: str | None = None
    file_size_bytes: int = 0
    storage_path: str
    status: FileStatus = FileStatus.PENDING
    tags: list[str] = []
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class StoredFile(BaseModel):
    """Result of writing an uploaded blob to file storage."""

    path: str
    original_name: str
    mime_type: str
    size_bytes: int


class TextChunk(BaseModel):
    """A contiguous slice of cleaned document text.

    Attributes:
        content:    Trimmed chunk text.
        index:      Zero-based position among the chunks of the document.
        start_char: Inclusive start offset in the cleaned text.
        end_char:   Exclusive end offset in the cleaned text.
    """

    content: str
    index: int
    start_char: int
    end_char: int


class IndexingResult(BaseModel):
    file_id: str
    success: bool
    chunks_created: int = 0
    total_chunks: int = 0
    error: str | None = None
    warning: str | None = None


class KBStats(BaseModel):
    total_files: int = 0
    ready_files: int = 0
    indexing_files: int = 0
    failed_files: int = 0
    paused_files: int = 0
    total_chunks: int = 0
