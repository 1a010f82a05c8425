"""RAG tuning configuration service.

Loads the versioned JSON tuning file once, validates it against RAGConfig and
exposes typed accessors. A missing or invalid file never propagates to callers:
the service logs the problem and serves the built-in defaults instead.
"""

import json
from pathlib import Path

from pydantic import ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EmbeddingProvider, RAGConfig

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "rag.json"
DEFAULT_CONFIG_VERSION = "1.0"


class RAGConfigService:
    """Centralized, read-only access to the RAG tuning parameters."""

    def __init__(self, helper_config: HelperConfig, config: RAGConfig | None = None) -> None:
        self.logging = helper_config.get_logger()
        self._config_path = Path(helper_config.get_string_val("RAG_CONFIG_PATH", default=str(DEFAULT_CONFIG_PATH)))
        self._config: RAGConfig | None = config

    ##########################################
    ################ LOADING #################
    ##########################################

    def get_config(self) -> RAGConfig:
        """Return the validated configuration, loading it on first access.

        Returns:
            RAGConfig: The parsed configuration, or the defaults if the file is
                missing, unreadable or fails validation.
        """
        if self._config is not None:
            return self._config

        try:
            raw = json.loads(self._config_path.read_text(encoding="utf-8"))
            self._config = RAGConfig.model_validate(raw)
            self.logging.info(
                "Loaded RAG config v%s from %s", self._config.version, self._config_path
            )
        except FileNotFoundError:
            self.logging.warning("RAG config %s not found, using defaults.", self._config_path)
            self._config = self._get_defaults()
        except (OSError, UnicodeDecodeError) as exc:
            self.logging.error("Unreadable RAG config %s: %s. Using defaults.", self._config_path, exc)
            self._config = self._get_defaults()
        except (json.JSONDecodeError, ValidationError) as exc:
            self.logging.error("Invalid RAG config %s: %s. Using defaults.", self._config_path, exc)
            self._config = self._get_defaults()
        return self._config

    @staticmethod
    def _get_defaults() -> RAGConfig:
        return RAGConfig(version=DEFAULT_CONFIG_VERSION)

    ##########################################
    ############### RETRIEVAL ################
    ##########################################

    def get_default_top_k(self) -> int:
        return self.get_config().retrieval.default_top_k

    def get_max_top_k(self) -> int:
        return self.get_config().retrieval.max_top_k

    def get_min_similarity_score(self) -> float:
        return self.get_config().retrieval.min_similarity_score

    ##########################################
    ############### CHUNKING #################
    ##########################################

    def get_chunk_size(self) -> int:
        return self.get_config().chunking.chunk_size

    def get_chunk_overlap(self) -> int:
        return self.get_config().chunking.chunk_overlap

    ##########################################
    ################ UPLOAD ##################
    ##########################################

    def get_max_file_size_bytes(self) -> int:
        return self.get_config().upload.max_file_size_bytes

    ##########################################
    ############### EMBEDDING ################
    ##########################################

    def get_embedding_provider(self) -> EmbeddingProvider:
        return self.get_config().embedding.provider

    def get_embedding_model(self) -> str:
        return self.get_config().embedding.model

    def get_embedding_dimensions(self) -> int:
        return self.get_config().embedding.dimensions

    def get_fallback_embedding_provider(self) -> EmbeddingProvider | None:
        return self.get_config().embedding.fallback_provider

    def get_fallback_embedding_model(self) -> str | None:
        return self.get_config().embedding.fallback_model

    def get_fallback_embedding_dimensions(self) -> int | None:
        return self.get_config().embedding.fallback_dimensions

    def get_retry_attempts(self) -> int:
        return self.get_config().embedding.retry_attempts

    def get_retry_delay_ms(self) -> int:
        return self.get_config().embedding.retry_delay_ms


def format_file_size(size_bytes: int) -> str:
    """Render a byte count for user-facing messages (e.g. "10.0 MB")."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"
