"""Knowledge-base file management.

Upload acceptance, pause/resume/re-index/tag actions, hard and soft delete,
and memory-item feedback. Domain problems are raised as KnowledgeBaseError
subclasses, which the HTTP layer maps to status codes.
"""

from services.kb_indexing.IndexFileJob import IndexFileJob
from services.kb_indexing.IndexingService import IndexingService
from shared.clients.storage.FileStorageInterface import FileStorageInterface
from shared.clients.store.StoreClientInterface import StoreClientInterface
from shared.exceptions import FileTooLargeError, ForbiddenError, InvalidRequestError, NotFoundError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService, format_file_size
from shared.helper.text_chunker import get_mime_type
from shared.helper.validators import is_valid_uuid
from shared.models.knowledge_base import FileStatus, KnowledgeBaseFile
from shared.models.memory import LOW_PRIORITY_TAG, FeedbackAction, MemoryItem, OwnerType, VisibilityPolicy

REINDEX_PRIORITY = 10


class KnowledgeBaseService:
    """User-facing operations on knowledge-base files and memory items."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_config: RAGConfigService,
        store: StoreClientInterface,
        storage: FileStorageInterface,
        indexing_service: IndexingService,
        index_file_job: IndexFileJob,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_config = rag_config
        self._store = store
        self._storage = storage
        self._indexing_service = indexing_service
        self._index_file_job = index_file_job

    ##########################################
    ################# UPLOAD #################
    ##########################################

    async def accept_upload(
        self,
        user_id: str,
        character_id: str | None,
        file_name: str,
        data: bytes,
        tags: list[str] | None = None,
    ) -> tuple[KnowledgeBaseFile, str | None]:
        """Validate, store and register an uploaded file, then queue it for indexing.

        Args:
            user_id (str): Uploading user.
            character_id (str | None): Character whose knowledge base receives the file.
            file_name (str): Original file name.
            data (bytes): File content.
            tags (list[str] | None): User tags copied onto every memory item.

        Returns:
            tuple[KnowledgeBaseFile, str | None]: The pending file record and the job id
                (None if the job could not be queued).

        Raises:
            InvalidRequestError: Missing file name or invalid character id.
            FileTooLargeError: The file exceeds the configured upload limit.
        """
        if not file_name:
            raise InvalidRequestError("No file provided")
        if not character_id:
            raise InvalidRequestError("characterId is required")
        if not is_valid_uuid(character_id):
            raise InvalidRequestError("Invalid characterId")

        max_size = self._rag_config.get_max_file_size_bytes()
        if len(data) > max_size:
            raise FileTooLargeError(f"File size exceeds limit ({format_file_size(max_size)})")

        mime_type = get_mime_type(file_name)
        stored = await self._storage.store(user_id, character_id, data, file_name, mime_type)
        file = await self._store.create_file(KnowledgeBaseFile(
            user_id=user_id,
            character_id=character_id,
            file_name=stored.original_name,
            file_type=mime_type,
            file_size_bytes=stored.size_bytes,
            storage_path=stored.path,
            status=FileStatus.PENDING,
            tags=[tag.strip() for tag in tags or [] if tag.strip()],
        ))
        self.logging.info("Accepted upload %s (%s) for character %s.", file.id, format_file_size(file.file_size_bytes), character_id)

        job_id = await self._index_file_job.enqueue_index_file(file.id, user_id)
        return file, job_id

    ##########################################
    ################# READ ###################
    ##########################################

    async def get_user_file(self, user_id: str, file_id: str) -> KnowledgeBaseFile:
        """
        Raises:
            NotFoundError: If the file does not exist or belongs to another user.
        """
        file = await self._store.get_file(file_id, user_id=user_id)
        if file is None:
            raise NotFoundError("Knowledge base file not found")
        return file

    async def list_character_files(self, user_id: str, character_id: str, status: FileStatus | None = None) -> list[KnowledgeBaseFile]:
        if not is_valid_uuid(character_id):
            raise InvalidRequestError("Invalid characterId")
        return await self._store.list_files(user_id=user_id, character_id=character_id, status=status)

    ##########################################
    ############## FILE ACTIONS ##############
    ##########################################

    async def pause_file(self, user_id: str, file_id: str) -> KnowledgeBaseFile:
        await self.get_user_file(user_id, file_id)
        return await self._store.update_file_status(file_id, FileStatus.PAUSED)

    async def resume_file(self, user_id: str, file_id: str) -> KnowledgeBaseFile:
        """Return a paused file to ready. Any other status is left unchanged."""
        file = await self.get_user_file(user_id, file_id)
        if file.status != FileStatus.PAUSED:
            return file
        return await self._store.update_file_status(file_id, FileStatus.READY)

    async def reindex_file(self, user_id: str, file_id: str) -> tuple[KnowledgeBaseFile, str | None]:
        """Queue a file for re-indexing with raised priority.

        Returns:
            tuple[KnowledgeBaseFile, str | None]: The file and the new job id, or None
                when a run is already pending or in progress.

        Raises:
            NotFoundError: Unknown file.
            RuntimeError: The job could not be queued; the previous status is restored.
        """
        file = await self.get_user_file(user_id, file_id)
        if file.status in (FileStatus.PENDING, FileStatus.INDEXING):
            self.logging.info("Reindex of file %s skipped, already %s.", file_id, file.status.value)
            return file, None

        original_status = file.status
        updated = await self._store.update_file_status(file_id, FileStatus.PENDING)
        job_id = await self._index_file_job.enqueue_index_file(file_id, user_id, priority=REINDEX_PRIORITY)
        if job_id is None:
            await self._store.update_file_status(file_id, original_status)
            raise RuntimeError("Failed to enqueue reindex job")
        return updated, job_id

    async def update_file_tags(self, user_id: str, file_id: str, tags: list[str]) -> KnowledgeBaseFile:
        """Replace a file's tags. Existing memory items keep their tags until the next re-index."""
        await self.get_user_file(user_id, file_id)
        return await self._store.update_file_tags(file_id, [tag.strip() for tag in tags if tag.strip()])

    async def delete_file(self, user_id: str, file_id: str, hard: bool = False) -> int:
        """Delete a file.

        A hard delete removes the memory items, the blob and the record. A soft
        delete only pauses the file so its items drop out of retrieval.

        Returns:
            int: Number of memory items removed (always 0 for a soft delete).
        """
        file = await self.get_user_file(user_id, file_id)
        if not hard:
            await self._store.update_file_status(file_id, FileStatus.PAUSED)
            return 0

        deleted_chunks = await self._indexing_service.delete_file_memory_items(file_id)
        await self._storage.delete(file.storage_path)
        await self._store.delete_file(file_id)
        self.logging.info("Hard deleted file %s with %d memory items.", file_id, deleted_chunks)
        return deleted_chunks

    ##########################################
    ################ FEEDBACK ################
    ##########################################

    async def apply_memory_feedback(self, user_id: str, item_id: str, action: FeedbackAction) -> MemoryItem:
        """Apply user feedback to a memory item. Only visibility and tags change.

        Raises:
            InvalidRequestError: Malformed item id.
            NotFoundError: Unknown item.
            ForbiddenError: A user-owned item of another user.
        """
        if not is_valid_uuid(item_id):
            raise InvalidRequestError("Invalid memory item ID")
        item = await self._store.get_memory_item(item_id)
        if item is None:
            raise NotFoundError("Memory item not found")
        if item.owner_type == OwnerType.USER and item.owner_id != user_id:
            raise ForbiddenError("Access denied")

        if action == FeedbackAction.EXCLUDE:
            return await self._store.update_memory_item(item_id, visibility_policy=VisibilityPolicy.EXCLUDE_FROM_RAG)
        if action == FeedbackAction.LOWER_PRIORITY:
            if LOW_PRIORITY_TAG in item.tags:
                return item
            return await self._store.update_memory_item(item_id, tags=[*item.tags, LOW_PRIORITY_TAG])
        return await self._store.update_memory_item(
            item_id,
            visibility_policy=VisibilityPolicy.NORMAL,
            tags=[tag for tag in item.tags if tag != LOW_PRIORITY_TAG],
        )
