"""Tests for the indexing pipeline against the in-memory store and local storage."""

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest

from services.kb_indexing.IndexFileJob import IndexFileJob, IndexFileWorker
from services.kb_indexing.IndexingService import CANCELLED_ERROR, IndexingService
from shared.exceptions import StoreError
from shared.models.jobs import JobState
from shared.models.knowledge_base import FileStatus, KnowledgeBaseFile
from shared.models.memory import MemoryItem, OwnerType, SourceType
from conftest import CHARACTER_ID, USER_ID


@pytest.fixture
def indexing_service(helper_config, rag_config, store, storage, embedding_service) -> IndexingService:
    return IndexingService(helper_config, rag_config, store, storage, embedding_service)


async def _create_file(store, storage, data: bytes, file_name="notes.txt", mime_type="text/plain", tags=None, character_id=CHARACTER_ID) -> KnowledgeBaseFile:
    stored = await storage.store(USER_ID, character_id or "none", data, file_name, mime_type)
    return await store.create_file(KnowledgeBaseFile(
        user_id=USER_ID,
        character_id=character_id,
        file_name=file_name,
        file_type=mime_type,
        file_size_bytes=stored.size_bytes,
        storage_path=stored.path,
        tags=tags or [],
    ))


async def _file_items(store, file_id: str) -> list[MemoryItem]:
    return [item for item in store._items.values() if item.source_type == SourceType.FILE and item.source_id == file_id]


class TestIndexFile:

    @pytest.mark.asyncio
    async def test_indexes_all_chunks(self, indexing_service, store, storage):
        file = await _create_file(store, storage, b"x" * 250, tags=["lore"])

        result = await indexing_service.index_file(file.id)

        assert result.success is True
        assert (result.chunks_created, result.total_chunks, result.warning) == (3, 3, None)
        assert (await store.get_file(file.id)).status == FileStatus.READY
        items = await _file_items(store, file.id)
        assert len(items) == 3
        assert all(item.owner_type == OwnerType.CHARACTER and item.owner_id == CHARACTER_ID for item in items)
        assert all(item.tags == ["lore"] and len(item.embedding) == 4 for item in items)

    @pytest.mark.asyncio
    async def test_file_without_character_belongs_to_user(self, indexing_service, store, storage):
        file = await _create_file(store, storage, b"short note", character_id=None)

        await indexing_service.index_file(file.id)

        [item] = await _file_items(store, file.id)
        assert (item.owner_type, item.owner_id) == (OwnerType.USER, USER_ID)

    @pytest.mark.asyncio
    async def test_unknown_file(self, indexing_service):
        result = await indexing_service.index_file(str(uuid.uuid4()))

        assert (result.success, result.error) == (False, "File not found")

    @pytest.mark.asyncio
    async def test_unavailable_embedding_fails_the_file(self, indexing_service, store, storage, embedding_service):
        embedding_service.available = False
        file = await _create_file(store, storage, b"some text")

        result = await indexing_service.index_file(file.id)

        assert result.success is False
        assert result.error == "Embedding service unavailable: Connection refused"
        assert (await store.get_file(file.id)).status == FileStatus.FAILED
        assert embedding_service.calls == []

    @pytest.mark.asyncio
    async def test_blank_file_fails(self, indexing_service, store, storage):
        file = await _create_file(store, storage, b"   \n\n  ")

        result = await indexing_service.index_file(file.id)

        assert (result.success, result.error) == (False, "No text content extracted")
        assert (await store.get_file(file.id)).status == FileStatus.FAILED

    @pytest.mark.asyncio
    async def test_partial_embedding_failure_still_succeeds(self, indexing_service, store, storage, embedding_service):
        embedding_service.fail_calls = {1}
        file = await _create_file(store, storage, b"x" * 250)

        result = await indexing_service.index_file(file.id)

        assert result.success is True
        assert (result.chunks_created, result.total_chunks) == (2, 3)
        assert result.warning == "1/3 chunks failed to embed"
        assert (await store.get_file(file.id)).status == FileStatus.READY

    @pytest.mark.asyncio
    async def test_total_embedding_failure_keeps_previous_items(self, indexing_service, store, storage, embedding_service):
        file = await _create_file(store, storage, b"x" * 250)
        await indexing_service.index_file(file.id)
        previous_ids = {item.id for item in await _file_items(store, file.id)}
        embedding_service.fail_all = True

        result = await indexing_service.index_file(file.id)

        assert (result.success, result.error, result.total_chunks) == (False, "All chunks failed to embed", 3)
        assert (await store.get_file(file.id)).status == FileStatus.FAILED
        assert {item.id for item in await _file_items(store, file.id)} == previous_ids

    @pytest.mark.asyncio
    async def test_reindex_replaces_items(self, indexing_service, store, storage):
        file = await _create_file(store, storage, b"x" * 250)
        await indexing_service.index_file(file.id)
        previous_ids = {item.id for item in await _file_items(store, file.id)}

        result = await indexing_service.index_file(file.id)

        current_ids = {item.id for item in await _file_items(store, file.id)}
        assert result.chunks_created == 3
        assert len(current_ids) == 3
        assert current_ids.isdisjoint(previous_ids)

    @pytest.mark.asyncio
    async def test_store_failure_fails_the_file(self, indexing_service, store, storage):
        file = await _create_file(store, storage, b"some text")
        store.replace_source_memory_items = AsyncMock(side_effect=StoreError("connection lost"))

        result = await indexing_service.index_file(file.id)

        assert (result.success, result.error) == (False, "connection lost")
        assert (await store.get_file(file.id)).status == FileStatus.FAILED


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, indexing_service, store, storage):
        file = await _create_file(store, storage, b"some text")
        cancel_event = asyncio.Event()
        cancel_event.set()

        result = await indexing_service.index_file(file.id, cancel_event)

        assert (result.success, result.error) == (False, CANCELLED_ERROR)
        assert (await store.get_file(file.id)).status == FileStatus.PENDING

    @pytest.mark.asyncio
    async def test_cancelled_between_chunks_writes_nothing(self, indexing_service, store, storage, embedding_service):
        file = await _create_file(store, storage, b"x" * 250)
        cancel_event = asyncio.Event()
        embedding_service.on_call = lambda index, text: cancel_event.set()

        result = await indexing_service.index_file(file.id, cancel_event)

        assert (result.success, result.error) == (False, CANCELLED_ERROR)
        assert len(embedding_service.calls) == 1
        assert await _file_items(store, file.id) == []


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_counts_deletes_and_stats(self, indexing_service, store, storage):
        ready = await _create_file(store, storage, b"x" * 250)
        await indexing_service.index_file(ready.id)
        await _create_file(store, storage, b"pending")
        paused = await _create_file(store, storage, b"paused")
        await store.update_file_status(paused.id, FileStatus.PAUSED)

        stats = await indexing_service.get_character_kb_stats(CHARACTER_ID)

        assert (stats.total_files, stats.ready_files, stats.paused_files, stats.failed_files) == (3, 1, 1, 0)
        assert stats.total_chunks == 3
        assert await indexing_service.get_file_memory_item_count(ready.id) == 3
        assert await indexing_service.delete_file_memory_items(ready.id) == 3
        assert await indexing_service.get_file_memory_item_count(ready.id) == 0


class TestInterruptedRuns:

    @pytest.mark.asyncio
    async def test_worker_timeout_marks_file_failed(self, helper_config, indexing_service, store, storage, embedding_service, queue):
        file = await _create_file(store, storage, b"some text")

        async def stalled_embedding(text):
            await asyncio.sleep(5)

        embedding_service.generate_embedding = stalled_embedding
        index_file_job = IndexFileJob(helper_config, queue, indexing_service)
        worker = IndexFileWorker(helper_config, queue, index_file_job)
        worker.job_timeout = 0.05
        job_id = await index_file_job.enqueue_index_file(file.id, USER_ID)

        await worker.run_once()

        assert (await queue.get_job(job_id)).state == JobState.FAILED
        assert (await store.get_file(file.id)).status == FileStatus.FAILED

    @pytest.mark.asyncio
    async def test_pause_during_indexing_is_kept(self, indexing_service, store, storage, embedding_service):
        file = await _create_file(store, storage, b"some text")
        generate_embedding = embedding_service.generate_embedding

        async def pause_then_embed(text):
            await store.update_file_status(file.id, FileStatus.PAUSED)
            return await generate_embedding(text)

        embedding_service.generate_embedding = pause_then_embed

        result = await indexing_service.index_file(file.id)

        assert result.success is True
        assert (await store.get_file(file.id)).status == FileStatus.PAUSED
        assert await indexing_service.get_file_memory_item_count(file.id) == 1
