from abc import ABC, abstractmethod
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.knowledge_base import StoredFile


class FileStorageInterface(ABC):
    """Blob store for uploaded knowledge-base files.

    Paths returned by store() are opaque to callers and are only ever handed
    back to the same engine.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Validates that all required configuration values for the storage engine are set.

        Raises:
            ValueError: If any required configuration value is missing or invalid.
        """
        for config in self._get_required_config():
            _ = self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the storage engine. E.g. "Local"
        """
        pass

    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        pass

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads a configuration value named STORAGE_<ENGINE>_<KEY>.

        Raises:
            ValueError: If the value type is unsupported or a required value is missing.
        """
        key = f"STORAGE_{self.get_engine_name().upper()}_{raw_key.upper()}"
        if val_type == "string":
            return self._helper_config.get_string_val(key, default=default)
        elif val_type == "number":
            return self._helper_config.get_number_val(key, default=default)
        elif val_type == "bool":
            return self._helper_config.get_bool_val(key, default=default)
        else:
            raise ValueError(f"Unsupported config value type '{val_type}' for env key '{raw_key}' in storage engine '{self.get_engine_name()}'.")

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    @abstractmethod
    async def store(self, user_id: str, character_id: str, data: bytes, file_name: str, mime_type: str) -> StoredFile:
        """Persist a blob under a fresh unique path.

        Args:
            user_id (str): Owner of the upload.
            character_id (str): Character whose knowledge base receives the file.
            data (bytes): File content.
            file_name (str): Original file name, sanitized before use in the path.
            mime_type (str): MIME type recorded in the result.

        Returns:
            StoredFile: Path, original name, MIME type and size.
        """
        pass

    @abstractmethod
    async def read(self, path: str) -> bytes:
        pass

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove a blob. Deleting a path that does not exist is not an error."""
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    async def get_file_size(self, path: str) -> int:
        pass
