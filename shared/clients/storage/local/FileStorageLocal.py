import asyncio
import os
import re
import uuid
from pathlib import Path

from shared.clients.storage.FileStorageInterface import FileStorageInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig
from shared.models.knowledge_base import StoredFile

DEFAULT_BASE_PATH = os.path.join(os.getcwd(), "data", "knowledge-base")
MAX_FILE_NAME_LENGTH = 100


def sanitize_file_name(name: str) -> str:
    """Replace anything outside [a-zA-Z0-9._-] with "_", collapse repeats and cap the length."""
    name = re.sub(r"[^a-zA-Z0-9._-]", "_", name)
    name = re.sub(r"_{2,}", "_", name)
    return name[:MAX_FILE_NAME_LENGTH]


class FileStorageLocal(FileStorageInterface):
    """Local filesystem storage.

    Layout: {base}/{user_id}/{character_id}/{uuid}-{sanitized_name}
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_path = Path(self.get_config_val("BASE_PATH", default=DEFAULT_BASE_PATH, val_type="string"))

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Local"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_PATH", val_type="string", default=DEFAULT_BASE_PATH),
        ]

    def _get_file_path(self, user_id: str, character_id: str, file_name: str) -> Path:
        return self._base_path / user_id / character_id / f"{uuid.uuid4()}-{sanitize_file_name(file_name)}"

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def store(self, user_id: str, character_id: str, data: bytes, file_name: str, mime_type: str) -> StoredFile:
        file_path = self._get_file_path(user_id, character_id, file_name)
        await asyncio.to_thread(self._write_file, file_path, data)
        self.logging.debug("Stored %d bytes at %s", len(data), file_path)
        return StoredFile(
            path=str(file_path),
            original_name=file_name,
            mime_type=mime_type,
            size_bytes=len(data),
        )

    @staticmethod
    def _write_file(file_path: Path, data: bytes) -> None:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(data)

    async def read(self, path: str) -> bytes:
        return await asyncio.to_thread(Path(path).read_bytes)

    async def delete(self, path: str) -> None:
        await asyncio.to_thread(Path(path).unlink, missing_ok=True)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(Path(path).exists)

    async def get_file_size(self, path: str) -> int:
        stat = await asyncio.to_thread(Path(path).stat)
        return stat.st_size
