"""Shared fixtures: config, in-memory store, local storage, queue and a scripted embedding service."""

import logging

import pytest
import pytest_asyncio

from shared.clients.queue.inmemory.JobQueueInmemory import JobQueueInmemory
from shared.clients.storage.local.FileStorageLocal import FileStorageLocal
from shared.clients.store.inmemory.StoreClientInmemory import StoreClientInmemory
from shared.exceptions import EmbeddingUnavailableError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService
from shared.logging.logging_setup import ColorLogger
from shared.models.config import RAGConfig
from shared.models.embedding import EmbeddingResult, EmbeddingServiceStatus

DIMENSIONS = 4

USER_ID = "11111111-1111-4111-8111-111111111111"
OTHER_USER_ID = "99999999-9999-4999-8999-999999999999"
CHARACTER_ID = "22222222-2222-4222-8222-222222222222"
OTHER_CHARACTER_ID = "33333333-3333-4333-8333-333333333333"


class FakeEmbeddingService:
    """Scripted stand-in for EmbeddingService.

    Texts map to vectors through ``vectors``; anything else embeds to the
    first unit vector. Calls whose zero-based index is in ``fail_calls`` fail,
    as do all calls while ``fail_all`` is set.
    """

    def __init__(self, dimensions: int = DIMENSIONS):
        self.dimensions = dimensions
        self.vectors: dict[str, list[float]] = {}
        self.available = True
        self.fail_all = False
        self.fail_calls: set[int] = set()
        self.on_call = None
        self.calls: list[str] = []

    async def check_availability(self) -> EmbeddingServiceStatus:
        if self.available:
            return EmbeddingServiceStatus(available=True, provider="lmstudio", model="test-embed", latency_ms=1)
        return EmbeddingServiceStatus(available=False, provider="lmstudio", model="test-embed", error="Connection refused")

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        index = len(self.calls)
        self.calls.append(text)
        if self.on_call is not None:
            self.on_call(index, text)
        if self.fail_all or index in self.fail_calls:
            raise EmbeddingUnavailableError("lmstudio embedding request failed", provider="lmstudio")
        vector = self.vectors.get(text, [1.0] + [0.0] * (self.dimensions - 1))
        return EmbeddingResult(embedding=vector, provider="lmstudio", model="test-embed", dimensions=len(vector))


def build_rag_config(**embedding) -> RAGConfig:
    return RAGConfig(
        version="test",
        retrieval={"defaultTopK": 4, "maxTopK": 10, "minSimilarityScore": 0.5},
        chunking={"chunkSize": 100, "chunkOverlap": 10},
        upload={"maxFileSizeBytes": 1024},
        embedding={
            "provider": "lmstudio",
            "model": "test-embed",
            "dimensions": DIMENSIONS,
            "retryAttempts": 2,
            "retryDelayMs": 100,
            **embedding,
        },
    )


@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=ColorLogger(logging.getLogger("kb_rag.tests")))


@pytest.fixture
def rag_config(helper_config) -> RAGConfigService:
    return RAGConfigService(helper_config, config=build_rag_config())


@pytest.fixture
def store(helper_config) -> StoreClientInmemory:
    return StoreClientInmemory(helper_config=helper_config, dimensions=DIMENSIONS)


@pytest.fixture
def storage(helper_config, tmp_path, monkeypatch) -> FileStorageLocal:
    monkeypatch.setenv("STORAGE_LOCAL_BASE_PATH", str(tmp_path / "kb"))
    return FileStorageLocal(helper_config=helper_config)


@pytest.fixture
def embedding_service() -> FakeEmbeddingService:
    return FakeEmbeddingService()


@pytest_asyncio.fixture
async def queue(helper_config):
    job_queue = JobQueueInmemory(helper_config=helper_config)
    await job_queue.start()
    yield job_queue
    await job_queue.stop()
