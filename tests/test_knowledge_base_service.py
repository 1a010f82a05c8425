"""Tests for knowledge-base file actions and memory-item feedback."""

import uuid

import pytest

from services.kb_indexing.IndexFileJob import IndexFileJob
from services.kb_indexing.IndexingService import IndexingService
from services.kb_indexing.KnowledgeBaseService import REINDEX_PRIORITY, KnowledgeBaseService
from shared.exceptions import FileTooLargeError, ForbiddenError, InvalidRequestError, NotFoundError
from shared.models.knowledge_base import FileStatus
from shared.models.memory import (
    LOW_PRIORITY_TAG,
    FeedbackAction,
    MemoryItem,
    OwnerType,
    SourceType,
    VisibilityPolicy,
)
from conftest import CHARACTER_ID, OTHER_USER_ID, USER_ID


@pytest.fixture
def indexing_service(helper_config, rag_config, store, storage, embedding_service) -> IndexingService:
    return IndexingService(helper_config, rag_config, store, storage, embedding_service)


@pytest.fixture
def kb_service(helper_config, rag_config, store, storage, indexing_service, queue) -> KnowledgeBaseService:
    index_file_job = IndexFileJob(helper_config, queue, indexing_service)
    return KnowledgeBaseService(helper_config, rag_config, store, storage, indexing_service, index_file_job)


# =============================================================================
# Upload
# =============================================================================

class TestUpload:

    @pytest.mark.asyncio
    async def test_accepts_and_queues_file(self, kb_service, storage, queue):
        file, job_id = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"# Lore", tags=[" places ", "", "people"])

        assert file.status == FileStatus.PENDING
        assert (file.file_type, file.file_size_bytes) == ("text/markdown", 6)
        assert file.tags == ["places", "people"]
        assert await storage.read(file.storage_path) == b"# Lore"
        assert (await queue.get_job(job_id)).data == {"fileId": file.id, "userId": USER_ID}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("file_name,character_id,message", [
        ("", CHARACTER_ID, "No file provided"),
        ("lore.md", None, "characterId is required"),
        ("lore.md", "not-a-uuid", "Invalid characterId"),
    ])
    async def test_rejects_invalid_input(self, kb_service, file_name, character_id, message):
        with pytest.raises(InvalidRequestError, match=message):
            await kb_service.accept_upload(USER_ID, character_id, file_name, b"data")

    @pytest.mark.asyncio
    async def test_rejects_oversized_file_before_storing(self, kb_service, store, tmp_path):
        with pytest.raises(FileTooLargeError, match=r"File size exceeds limit \(1.0 KB\)"):
            await kb_service.accept_upload(USER_ID, CHARACTER_ID, "big.txt", b"x" * 1025)

        assert await store.list_files(user_id=USER_ID) == []
        assert not (tmp_path / "kb").exists()


# =============================================================================
# File actions
# =============================================================================

class TestFileActions:

    @pytest.mark.asyncio
    async def test_files_of_other_users_are_not_found(self, kb_service):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text")

        with pytest.raises(NotFoundError):
            await kb_service.get_user_file(OTHER_USER_ID, file.id)
        with pytest.raises(NotFoundError):
            await kb_service.pause_file(OTHER_USER_ID, file.id)

    @pytest.mark.asyncio
    async def test_list_requires_valid_character(self, kb_service):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text")

        assert [f.id for f in await kb_service.list_character_files(USER_ID, CHARACTER_ID)] == [file.id]
        assert await kb_service.list_character_files(USER_ID, CHARACTER_ID, FileStatus.READY) == []
        with pytest.raises(InvalidRequestError):
            await kb_service.list_character_files(USER_ID, "bogus")

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, kb_service, store):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text")

        # resume only applies to paused files
        assert (await kb_service.resume_file(USER_ID, file.id)).status == FileStatus.PENDING
        assert (await kb_service.pause_file(USER_ID, file.id)).status == FileStatus.PAUSED
        assert (await kb_service.resume_file(USER_ID, file.id)).status == FileStatus.READY

    @pytest.mark.asyncio
    async def test_reindex_skips_file_in_progress(self, kb_service, queue):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text")

        same, job_id = await kb_service.reindex_file(USER_ID, file.id)

        assert job_id is None
        assert same.status == FileStatus.PENDING

    @pytest.mark.asyncio
    async def test_reindex_queues_with_priority(self, kb_service, store, queue):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text")
        await store.update_file_status(file.id, FileStatus.READY)

        updated, job_id = await kb_service.reindex_file(USER_ID, file.id)

        assert updated.status == FileStatus.PENDING
        assert (await queue.get_job(job_id)).options.priority == REINDEX_PRIORITY

    @pytest.mark.asyncio
    async def test_reindex_restores_status_when_queueing_fails(self, kb_service, store, queue):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text")
        await store.update_file_status(file.id, FileStatus.FAILED)
        await queue.stop()

        with pytest.raises(RuntimeError):
            await kb_service.reindex_file(USER_ID, file.id)

        assert (await store.get_file(file.id)).status == FileStatus.FAILED

    @pytest.mark.asyncio
    async def test_update_tags(self, kb_service):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text", tags=["old"])

        updated = await kb_service.update_file_tags(USER_ID, file.id, ["new", "  "])

        assert updated.tags == ["new"]

    @pytest.mark.asyncio
    async def test_soft_delete_pauses(self, kb_service, store):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"text")

        assert await kb_service.delete_file(USER_ID, file.id, hard=False) == 0

        assert (await store.get_file(file.id)).status == FileStatus.PAUSED

    @pytest.mark.asyncio
    async def test_hard_delete_removes_items_blob_and_record(self, kb_service, indexing_service, store, storage):
        file, _ = await kb_service.accept_upload(USER_ID, CHARACTER_ID, "lore.md", b"x" * 250)
        await indexing_service.index_file(file.id)

        assert await kb_service.delete_file(USER_ID, file.id, hard=True) == 3

        assert await store.get_file(file.id) is None
        assert await storage.exists(file.storage_path) is False
        assert await indexing_service.get_file_memory_item_count(file.id) == 0


# =============================================================================
# Feedback
# =============================================================================

class TestMemoryFeedback:

    async def _seed(self, store, owner_type=OwnerType.USER, owner_id=USER_ID, tags=None) -> MemoryItem:
        item = MemoryItem(
            owner_type=owner_type,
            owner_id=owner_id,
            source_type=SourceType.MANUAL,
            source_id=str(uuid.uuid4()),
            content="The tavern is called The Prancing Pony.",
            embedding=[1.0, 0.0, 0.0, 0.0],
            tags=tags or ["places"],
        )
        await store.replace_source_memory_items(item.source_type, item.source_id, [item])
        return item

    @pytest.mark.asyncio
    async def test_exclude(self, kb_service, store):
        item = await self._seed(store)

        updated = await kb_service.apply_memory_feedback(USER_ID, item.id, FeedbackAction.EXCLUDE)

        assert updated.visibility_policy == VisibilityPolicy.EXCLUDE_FROM_RAG
        assert (updated.content, updated.embedding, updated.tags) == (item.content, item.embedding, item.tags)

    @pytest.mark.asyncio
    async def test_lower_priority_is_idempotent(self, kb_service, store):
        item = await self._seed(store)

        await kb_service.apply_memory_feedback(USER_ID, item.id, FeedbackAction.LOWER_PRIORITY)
        updated = await kb_service.apply_memory_feedback(USER_ID, item.id, FeedbackAction.LOWER_PRIORITY)

        assert updated.tags == ["places", LOW_PRIORITY_TAG]

    @pytest.mark.asyncio
    async def test_restore(self, kb_service, store):
        item = await self._seed(store, tags=["places", LOW_PRIORITY_TAG])
        await kb_service.apply_memory_feedback(USER_ID, item.id, FeedbackAction.EXCLUDE)

        updated = await kb_service.apply_memory_feedback(USER_ID, item.id, FeedbackAction.RESTORE)

        assert updated.visibility_policy == VisibilityPolicy.NORMAL
        assert updated.tags == ["places"]

    @pytest.mark.asyncio
    async def test_character_items_accept_feedback_from_any_user(self, kb_service, store):
        item = await self._seed(store, owner_type=OwnerType.CHARACTER, owner_id=CHARACTER_ID)

        updated = await kb_service.apply_memory_feedback(OTHER_USER_ID, item.id, FeedbackAction.EXCLUDE)

        assert updated.visibility_policy == VisibilityPolicy.EXCLUDE_FROM_RAG

    @pytest.mark.asyncio
    async def test_errors(self, kb_service, store):
        item = await self._seed(store)

        with pytest.raises(InvalidRequestError):
            await kb_service.apply_memory_feedback(USER_ID, "not-a-uuid", FeedbackAction.EXCLUDE)
        with pytest.raises(NotFoundError):
            await kb_service.apply_memory_feedback(USER_ID, str(uuid.uuid4()), FeedbackAction.EXCLUDE)
        with pytest.raises(ForbiddenError):
            await kb_service.apply_memory_feedback(OTHER_USER_ID, item.id, FeedbackAction.EXCLUDE)
