import math

from pydantic import BaseModel

from shared.clients.store.StoreClientInterface import StoreClientInterface
from shared.exceptions import StoreError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.knowledge_base import FileStatus, KnowledgeBaseFile, utc_now
from shared.models.memory import (
    MemoryItem,
    MemorySearchQuery,
    OwnerScope,
    OwnerType,
    RetrievedMemory,
    SourceType,
    VisibilityPolicy,
)


def cosine_distance(a: list[float], b: list[float]) -> float:
    """Cosine distance as pgvector's <=> computes it. Zero vectors are treated as maximally distant."""
    if len(a) != len(b):
        raise StoreError(f"different vector dimensions {len(a)} and {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 1.0
    return 1.0 - dot / norm


class _Conversation(BaseModel):
    user_id: str
    is_archived: bool = False
    message_ids: set[str] = set()


class StoreClientInmemory(StoreClientInterface):
    """Process-local store for development and tests.

    Records live in dicts and are copied on the way in and out, so callers
    never share mutable state with the store. Multi-step writes are applied to
    a copy and swapped in at the end.
    """

    def __init__(self, helper_config: HelperConfig, dimensions: int):
        super().__init__(helper_config=helper_config, dimensions=dimensions)
        self._files: dict[str, KnowledgeBaseFile] = {}
        self._items: dict[str, MemoryItem] = {}
        self._conversations: dict[str, _Conversation] = {}
        self._booted = False

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Inmemory"

    def _get_required_config(self) -> list[EnvConfig]:
        return []

    def is_booted(self) -> bool:
        return self._booted

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        self._booted = True

    async def close(self) -> None:
        self._booted = False

    ##########################################
    ############# CONVERSATIONS ##############
    ##########################################

    def add_conversation(self, conversation_id: str, user_id: str, is_archived: bool = False, message_ids: list[str] | None = None) -> None:
        """Register a conversation and its message ids (conversations are owned by the chat layer)."""
        self._conversations[conversation_id] = _Conversation(
            user_id=user_id, is_archived=is_archived, message_ids=set(message_ids or [])
        )

    def set_conversation_archived(self, conversation_id: str, is_archived: bool) -> None:
        self._conversations[conversation_id].is_archived = is_archived

    def _get_archived_message_ids(self, user_id: str) -> set[str]:
        ids: set[str] = set()
        for conversation in self._conversations.values():
            if conversation.user_id == user_id and conversation.is_archived:
                ids |= conversation.message_ids
        return ids

    ##########################################
    ########## KNOWLEDGE BASE FILES ##########
    ##########################################

    async def create_file(self, file: KnowledgeBaseFile) -> KnowledgeBaseFile:
        if file.id in self._files:
            raise StoreError(f"Knowledge base file {file.id} already exists")
        self._files[file.id] = file.model_copy(deep=True)
        return file.model_copy(deep=True)

    async def get_file(self, file_id: str, user_id: str | None = None) -> KnowledgeBaseFile | None:
        file = self._files.get(file_id)
        if file is None or (user_id is not None and file.user_id != user_id):
            return None
        return file.model_copy(deep=True)

    async def list_files(
        self,
        user_id: str | None = None,
        character_id: str | None = None,
        status: FileStatus | None = None,
    ) -> list[KnowledgeBaseFile]:
        files = [
            f for f in self._files.values()
            if (user_id is None or f.user_id == user_id)
            and (character_id is None or f.character_id == character_id)
            and (status is None or f.status == status)
        ]
        files.sort(key=lambda f: f.created_at)
        return [f.model_copy(deep=True) for f in files]

    async def update_file_status(self, file_id: str, status: FileStatus) -> KnowledgeBaseFile | None:
        return self._update_file(file_id, status=status)

    async def update_file_tags(self, file_id: str, tags: list[str]) -> KnowledgeBaseFile | None:
        return self._update_file(file_id, tags=list(tags))

    def _update_file(self, file_id: str, **changes) -> KnowledgeBaseFile | None:
        file = self._files.get(file_id)
        if file is None:
            return None
        updated = file.model_copy(update={**changes, "updated_at": utc_now()}, deep=True)
        self._files[file_id] = updated
        return updated.model_copy(deep=True)

    async def delete_file(self, file_id: str) -> bool:
        return self._files.pop(file_id, None) is not None

    ##########################################
    ############## MEMORY ITEMS ##############
    ##########################################

    async def replace_source_memory_items(self, source_type: SourceType, source_id: str, items: list[MemoryItem]) -> int:
        staged = {
            item_id: item for item_id, item in self._items.items()
            if not (item.source_type == source_type and item.source_id == source_id)
        }
        for item in items:
            self._check_embedding(item)
            if item.id in staged:
                raise StoreError(f"Memory item {item.id} already exists")
            staged[item.id] = item.model_copy(deep=True)
        # no await between staging and swap, readers see either the old or the new set
        self._items = staged
        return len(items)

    def _check_embedding(self, item: MemoryItem) -> None:
        if item.embedding is not None and len(item.embedding) != self.dimensions:
            raise StoreError(f"expected {self.dimensions} dimensions, not {len(item.embedding)}")

    async def delete_memory_items_by_source(self, source_type: SourceType, source_id: str) -> int:
        doomed = [
            item_id for item_id, item in self._items.items()
            if item.source_type == source_type and item.source_id == source_id
        ]
        for item_id in doomed:
            del self._items[item_id]
        return len(doomed)

    async def count_memory_items_by_source(self, source_type: SourceType, source_id: str) -> int:
        return sum(1 for item in self._items.values() if item.source_type == source_type and item.source_id == source_id)

    async def count_owner_memory_items(self, owner_type: OwnerType, owner_id: str, source_type: SourceType) -> int:
        return sum(
            1 for item in self._items.values()
            if item.owner_type == owner_type and item.owner_id == owner_id and item.source_type == source_type
        )

    async def get_memory_item(self, item_id: str) -> MemoryItem | None:
        item = self._items.get(item_id)
        return item.model_copy(deep=True) if item else None

    async def update_memory_item(
        self,
        item_id: str,
        visibility_policy: VisibilityPolicy | None = None,
        tags: list[str] | None = None,
    ) -> MemoryItem | None:
        item = self._items.get(item_id)
        if item is None:
            return None
        changes: dict = {}
        if visibility_policy is not None:
            changes["visibility_policy"] = visibility_policy
        if tags is not None:
            changes["tags"] = list(tags)
        updated = item.model_copy(update=changes, deep=True)
        self._items[item_id] = updated
        return updated.model_copy(deep=True)

    ##########################################
    ################ SEARCH ##################
    ##########################################

    @staticmethod
    def _in_scope(item: MemoryItem, scopes: list[OwnerScope]) -> bool:
        for scope in scopes:
            if item.owner_type != scope.owner_type or item.owner_id != scope.owner_id:
                continue
            if scope.owner_type != OwnerType.RELATIONSHIP:
                return True
            if scope.required_tag is None or scope.required_tag in item.tags:
                return True
        return False

    async def search_memories(self, query: MemorySearchQuery) -> list[RetrievedMemory]:
        archived_message_ids = self._get_archived_message_ids(query.user_id)
        paused_file_ids = {
            f.id for f in self._files.values()
            if f.user_id == query.user_id and f.status == FileStatus.PAUSED
        }

        ranked: list[tuple[float, float, MemoryItem]] = []
        for item in self._items.values():
            if item.embedding is None or item.visibility_policy == VisibilityPolicy.EXCLUDE_FROM_RAG:
                continue
            if not self._in_scope(item, query.scopes):
                continue
            if item.source_type == SourceType.MESSAGE and item.source_id in archived_message_ids:
                continue
            if item.source_type == SourceType.FILE and item.source_id in paused_file_ids:
                continue
            if any(tag not in item.tags for tag in query.tag_filters):
                continue

            distance = cosine_distance(item.embedding, query.embedding)
            penalty = query.low_priority_penalty if query.low_priority_tag in item.tags else 0.0
            similarity = 1.0 - distance - penalty
            if similarity < query.min_score:
                continue
            ranked.append((distance + penalty, similarity, item))

        ranked.sort(key=lambda entry: entry[0])
        return [
            RetrievedMemory(
                id=item.id,
                content=item.content,
                source_type=item.source_type,
                source_id=item.source_id,
                source_file_name=self._get_source_file_name(item),
                similarity=similarity,
                tags=list(item.tags),
            )
            for _, similarity, item in ranked[:query.limit]
        ]

    def _get_source_file_name(self, item: MemoryItem) -> str | None:
        if item.source_type != SourceType.FILE or item.source_id is None:
            return None
        file = self._files.get(item.source_id)
        return file.file_name if file else None
