from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from shared.models.knowledge_base import FileStatus, KnowledgeBaseFile
from shared.models.memory import FeedbackAction, RetrievedMemory, SourceType


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class KnowledgeBaseFileResponse(_CamelResponse):
    id: str
    user_id: str
    character_id: str | None
    file_name: str
    file_type: str | None
    file_size_bytes: int
    status: FileStatus
    tags: list[str]
    created_at: datetime
    updated_at: datetime
    chunk_count: int = 0
    job_id: str | None = None
    message: str | None = None

    @classmethod
    def from_file(cls, file: KnowledgeBaseFile, chunk_count: int = 0, **extra) -> "KnowledgeBaseFileResponse":
        # storage_path stays server-side
        return cls(**file.model_dump(exclude={"storage_path"}), chunk_count=chunk_count, **extra)


class UploadResponse(_CamelResponse):
    file: KnowledgeBaseFileResponse
    job_id: str | None


class DeleteFileResponse(_CamelResponse):
    success: bool
    deleted_chunks: int | None = None
    soft_deleted: bool | None = None


class RagStatusResponse(_CamelResponse):
    available: bool
    provider: str | None = None
    model: str | None = None
    error: str | None = None
    latency_ms: int | None = None


class KBConfigSummary(_CamelResponse):
    max_file_size_bytes: int
    default_top_k: int
    chunk_size: int


class KBStatsResponse(_CamelResponse):
    character_id: str
    total_files: int
    ready_files: int
    indexing_files: int
    failed_files: int
    paused_files: int
    total_chunks: int
    embedding_service: RagStatusResponse
    config: KBConfigSummary


class FeedbackResponse(_CamelResponse):
    success: bool
    action: FeedbackAction


class RetrievedMemoryResponse(_CamelResponse):
    id: str
    content: str
    source_type: SourceType
    source_id: str | None
    source_file_name: str | None
    similarity: float
    tags: list[str] | None

    @classmethod
    def from_memory(cls, memory: RetrievedMemory) -> "RetrievedMemoryResponse":
        return cls(**memory.model_dump())


class RetrieveResponse(_CamelResponse):
    query: str
    rag_mode: str
    top_k: int
    memories: list[RetrievedMemoryResponse]
    memory_ids: list[str]
    context: str
    system_prompt: str | None = None
