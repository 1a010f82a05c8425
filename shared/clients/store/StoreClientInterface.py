from abc import ABC, abstractmethod
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.knowledge_base import FileStatus, KnowledgeBaseFile
from shared.models.memory import (
    MemoryItem,
    MemorySearchQuery,
    OwnerType,
    RetrievedMemory,
    SourceType,
    VisibilityPolicy,
)


class StoreClientInterface(ABC):
    """Persistence for knowledge-base file records and memory items.

    Engines raise StoreError for any backend failure so that callers can
    degrade without knowing which backend is in use.
    """

    def __init__(self, helper_config: HelperConfig, dimensions: int):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.dimensions = dimensions
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Validates that all required configuration values for the store engine are set.

        Raises:
            ValueError: If any required configuration value is missing or invalid.
        """
        for config in self._get_required_config():
            _ = self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    @abstractmethod
    def is_booted(self) -> bool:
        pass

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the store engine. E.g. "Postgres"
        """
        pass

    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        pass

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads a configuration value named STORE_<ENGINE>_<KEY>.

        Raises:
            ValueError: If the value type is unsupported or a required value is missing.
        """
        key = f"STORE_{self.get_engine_name().upper()}_{raw_key.upper()}"
        if val_type == "string":
            return self._helper_config.get_string_val(key, default=default)
        elif val_type == "number":
            return self._helper_config.get_number_val(key, default=default)
        elif val_type == "bool":
            return self._helper_config.get_bool_val(key, default=default)
        else:
            raise ValueError(f"Unsupported config value type '{val_type}' for env key '{raw_key}' in store engine '{self.get_engine_name()}'.")

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    @abstractmethod
    async def boot(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    ##########################################
    ########## KNOWLEDGE BASE FILES ##########
    ##########################################

    @abstractmethod
    async def create_file(self, file: KnowledgeBaseFile) -> KnowledgeBaseFile:
        pass

    @abstractmethod
    async def get_file(self, file_id: str, user_id: str | None = None) -> KnowledgeBaseFile | None:
        """Fetch a file record. When user_id is given, files of other users are treated as absent."""
        pass

    @abstractmethod
    async def list_files(
        self,
        user_id: str | None = None,
        character_id: str | None = None,
        status: FileStatus | None = None,
    ) -> list[KnowledgeBaseFile]:
        """List file records ordered by creation time, filtered by every argument that is set."""
        pass

    @abstractmethod
    async def update_file_status(self, file_id: str, status: FileStatus) -> KnowledgeBaseFile | None:
        pass

    @abstractmethod
    async def update_file_tags(self, file_id: str, tags: list[str]) -> KnowledgeBaseFile | None:
        pass

    @abstractmethod
    async def delete_file(self, file_id: str) -> bool:
        pass

    ##########################################
    ############## MEMORY ITEMS ##############
    ##########################################

    @abstractmethod
    async def replace_source_memory_items(self, source_type: SourceType, source_id: str, items: list[MemoryItem]) -> int:
        """Atomically delete every item of a source and insert the given items.

        Either both steps take effect or neither does.

        Returns:
            int: Number of items inserted.
        """
        pass

    @abstractmethod
    async def delete_memory_items_by_source(self, source_type: SourceType, source_id: str) -> int:
        pass

    @abstractmethod
    async def count_memory_items_by_source(self, source_type: SourceType, source_id: str) -> int:
        pass

    @abstractmethod
    async def count_owner_memory_items(self, owner_type: OwnerType, owner_id: str, source_type: SourceType) -> int:
        pass

    @abstractmethod
    async def get_memory_item(self, item_id: str) -> MemoryItem | None:
        pass

    @abstractmethod
    async def update_memory_item(
        self,
        item_id: str,
        visibility_policy: VisibilityPolicy | None = None,
        tags: list[str] | None = None,
    ) -> MemoryItem | None:
        """Change visibility and/or tags of an item. Content and embedding are never touched."""
        pass

    ##########################################
    ################ SEARCH ##################
    ##########################################

    @abstractmethod
    async def search_memories(self, query: MemorySearchQuery) -> list[RetrievedMemory]:
        """Run the ranked similarity search.

        Similarity is 1 - cosine distance, minus the low-priority penalty for
        items carrying the low-priority tag. The same penalty applies to the
        score floor and to the ordering. Excluded are items without an
        embedding, items marked exclude_from_rag, items sourced from messages of
        the user's archived conversations, items sourced from the user's paused
        files and items missing any of the tag filters.

        Returns:
            list[RetrievedMemory]: At most query.limit hits, best first.
        """
        pass
