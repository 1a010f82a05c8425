"""Indexing pipeline.

Turns one knowledge-base file into memory items: extract text, chunk it,
embed every chunk independently (failures are tolerated), then swap the
file's memory items in a single store transaction. The file status records
the outcome so failures stay visible without inspecting the return value.
"""

import asyncio

from services.embedding.EmbeddingService import EmbeddingService
from shared.clients.storage.FileStorageInterface import FileStorageInterface
from shared.clients.store.StoreClientInterface import StoreClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService
from shared.helper.text_chunker import process_file_for_indexing
from shared.models.knowledge_base import FileStatus, IndexingResult, KBStats, KnowledgeBaseFile, TextChunk
from shared.models.memory import MemoryItem, OwnerType, SourceType, VisibilityPolicy

CANCELLED_ERROR = "Operation cancelled"


class IndexingCancelledError(Exception):
    """Raised internally when the cancel event is set between pipeline phases."""


class IndexingService:
    """Indexes knowledge-base files into memory items."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_config: RAGConfigService,
        store: StoreClientInterface,
        storage: FileStorageInterface,
        embedding_service: EmbeddingService,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_config = rag_config
        self._store = store
        self._storage = storage
        self._embedding_service = embedding_service

    ##########################################
    ############### CORE INDEX ###############
    ##########################################

    async def index_file(self, file_id: str, cancel_event: asyncio.Event | None = None) -> IndexingResult:
        """Index a single knowledge-base file.

        Cancellation is cooperative: the event is checked before the lookup,
        before the availability probe, before extraction, before every chunk
        and before the final write. A cancelled run leaves the status as far
        as it already got. When the task itself is cancelled while the file
        is indexing (worker timeout), the file is marked failed and the
        cancellation propagates.

        Args:
            file_id (str): Id of the file record.
            cancel_event (asyncio.Event | None): Set to request cancellation.

        Returns:
            IndexingResult: Outcome of the run. Only task cancellation is raised.
        """
        if self._is_cancelled(cancel_event):
            return IndexingResult(file_id=file_id, success=False, error=CANCELLED_ERROR)

        file = await self._store.get_file(file_id)
        if file is None:
            return IndexingResult(file_id=file_id, success=False, error="File not found")

        if self._is_cancelled(cancel_event):
            return IndexingResult(file_id=file_id, success=False, error=CANCELLED_ERROR)

        status = await self._embedding_service.check_availability()
        if not status.available:
            await self._store.update_file_status(file_id, FileStatus.FAILED)
            error = f"Embedding service unavailable: {status.error or 'No provider configured'}"
            self.logging.error("Indexing of file %s aborted. %s", file_id, error)
            return IndexingResult(file_id=file_id, success=False, error=error)

        await self._store.update_file_status(file_id, FileStatus.INDEXING)

        try:
            return await self._index_file_content(file, cancel_event)
        except IndexingCancelledError:
            self.logging.warning("Indexing of file %s cancelled.", file_id)
            return IndexingResult(file_id=file_id, success=False, error=CANCELLED_ERROR)
        except asyncio.CancelledError:
            # task cancelled from outside (worker timeout), nothing will retry it
            self.logging.error("Indexing of file %s was interrupted, marking as failed.", file_id)
            await self._store.update_file_status(file_id, FileStatus.FAILED)
            raise
        except Exception as exc:
            self.logging.exception("Indexing of file %s failed: %s", file_id, exc)
            await self._store.update_file_status(file_id, FileStatus.FAILED)
            return IndexingResult(file_id=file_id, success=False, error=str(exc) or exc.__class__.__name__)

    async def _index_file_content(self, file: KnowledgeBaseFile, cancel_event: asyncio.Event | None) -> IndexingResult:
        self._raise_if_cancelled(cancel_event)
        chunks = await process_file_for_indexing(
            self._storage,
            file.storage_path,
            file.file_type,
            chunk_size=self._rag_config.get_chunk_size(),
            overlap=self._rag_config.get_chunk_overlap(),
            logger=self.logging,
        )
        if not chunks:
            await self._store.update_file_status(file.id, FileStatus.FAILED)
            return IndexingResult(file_id=file.id, success=False, error="No text content extracted")

        # phase 1: best-effort embedding, outside of any transaction
        embedded: list[tuple[TextChunk, list[float]]] = []
        failed_indices: list[int] = []
        for chunk in chunks:
            self._raise_if_cancelled(cancel_event)
            try:
                result = await self._embedding_service.generate_embedding(chunk.content)
                embedded.append((chunk, result.embedding))
            except Exception as exc:
                self.logging.error("Failed to embed chunk %d of file %s: %s", chunk.index, file.id, exc)
                failed_indices.append(chunk.index)

        if not embedded:
            await self._store.update_file_status(file.id, FileStatus.FAILED)
            return IndexingResult(
                file_id=file.id, success=False, total_chunks=len(chunks), error="All chunks failed to embed"
            )

        # phase 2: all-or-nothing swap of the file's memory items
        self._raise_if_cancelled(cancel_event)
        items = [self._build_memory_item(file, chunk, embedding) for chunk, embedding in embedded]
        created = await self._store.replace_source_memory_items(SourceType.FILE, file.id, items)
        # a pause issued while indexing ran wins over ready
        current = await self._store.get_file(file.id)
        if current is None or current.status != FileStatus.PAUSED:
            await self._store.update_file_status(file.id, FileStatus.READY)

        warning = None
        if failed_indices:
            warning = f"{len(failed_indices)}/{len(chunks)} chunks failed to embed"
            self.logging.warning("File %s: %s (chunk indices %s)", file.id, warning, failed_indices)

        self.logging.info("Indexed file %s: %d/%d chunks stored.", file.id, created, len(chunks), color="green")
        return IndexingResult(
            file_id=file.id, success=True, chunks_created=created, total_chunks=len(chunks), warning=warning
        )

    @staticmethod
    def _build_memory_item(file: KnowledgeBaseFile, chunk: TextChunk, embedding: list[float]) -> MemoryItem:
        if file.character_id:
            owner_type, owner_id = OwnerType.CHARACTER, file.character_id
        else:
            owner_type, owner_id = OwnerType.USER, file.user_id
        return MemoryItem(
            owner_type=owner_type,
            owner_id=owner_id,
            source_type=SourceType.FILE,
            source_id=file.id,
            content=chunk.content,
            embedding=embedding,
            tags=list(file.tags),
            visibility_policy=VisibilityPolicy.NORMAL,
        )

    @staticmethod
    def _is_cancelled(cancel_event: asyncio.Event | None) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _raise_if_cancelled(self, cancel_event: asyncio.Event | None) -> None:
        if self._is_cancelled(cancel_event):
            raise IndexingCancelledError()

    ##########################################
    ############## MAINTENANCE ###############
    ##########################################

    async def delete_file_memory_items(self, file_id: str) -> int:
        return await self._store.delete_memory_items_by_source(SourceType.FILE, file_id)

    async def get_file_memory_item_count(self, file_id: str) -> int:
        return await self._store.count_memory_items_by_source(SourceType.FILE, file_id)

    async def get_character_kb_stats(self, character_id: str) -> KBStats:
        """Count a character's files per status and its file-sourced memory items."""
        files = await self._store.list_files(character_id=character_id)
        total_chunks = await self._store.count_owner_memory_items(OwnerType.CHARACTER, character_id, SourceType.FILE)
        return KBStats(
            total_files=len(files),
            ready_files=sum(1 for f in files if f.status == FileStatus.READY),
            indexing_files=sum(1 for f in files if f.status == FileStatus.INDEXING),
            failed_files=sum(1 for f in files if f.status == FileStatus.FAILED),
            paused_files=sum(1 for f in files if f.status == FileStatus.PAUSED),
            total_chunks=total_chunks,
        )
