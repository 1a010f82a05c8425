"""FastAPI application entry point for the knowledge-base RAG bridge."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService
from shared.helper.validators import parse_tags
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.clients.store.StoreClientManager import StoreClientManager
from shared.clients.storage.FileStorageManager import FileStorageManager
from shared.clients.queue.JobQueueManager import JobQueueManager
from shared.models.rag import GlobalRagSettings
from services.embedding.EmbeddingService import EmbeddingService
from services.kb_indexing.IndexingService import IndexingService
from services.kb_indexing.IndexFileJob import IndexFileJob, IndexFileWorker
from services.kb_indexing.KnowledgeBaseService import KnowledgeBaseService
from services.retrieval.RetrievalService import RetrievalService
from server.routers.KnowledgeBaseRouter import router as knowledge_base_router
from server.routers.MemoryItemRouter import router as memory_item_router
from server.routers.RetrievalRouter import router as retrieval_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # when the app starts
    app.state.logging = logging
    helper_config = HelperConfig(logger=logging)
    app.state.helper_config = helper_config

    rag_config = RAGConfigService(helper_config=helper_config)
    rag_config.get_config()
    app.state.rag_config = rag_config
    app.state.global_rag_settings = GlobalRagSettings(
        enabled=helper_config.get_bool_val("RAG_ENABLED", default=True),
        tag_filters=parse_tags(helper_config.get_optional_string_val("RAG_TAG_FILTERS")),
    )

    logging.info("Booting all clients...")
    embedding_service = EmbeddingService(
        helper_config=helper_config,
        rag_config=rag_config,
        embed_manager=EmbedClientManager(helper_config=helper_config, rag_config=rag_config),
    )
    await embedding_service.boot()
    store = StoreClientManager(helper_config=helper_config, rag_config=rag_config).get_client()
    await store.boot()
    storage = FileStorageManager(helper_config=helper_config).get_storage()
    queue = JobQueueManager(helper_config=helper_config).get_queue()
    await queue.start()
    logging.info("All clients booted successfully.")

    indexing_service = IndexingService(
        helper_config=helper_config,
        rag_config=rag_config,
        store=store,
        storage=storage,
        embedding_service=embedding_service,
    )
    index_file_job = IndexFileJob(helper_config=helper_config, queue=queue, indexing_service=indexing_service)
    worker = IndexFileWorker(helper_config=helper_config, queue=queue, index_file_job=index_file_job)

    app.state.embedding_service = embedding_service
    app.state.store = store
    app.state.storage = storage
    app.state.queue = queue
    app.state.indexing_service = indexing_service
    app.state.kb_service = KnowledgeBaseService(
        helper_config=helper_config,
        rag_config=rag_config,
        store=store,
        storage=storage,
        indexing_service=indexing_service,
        index_file_job=index_file_job,
    )
    app.state.retrieval_service = RetrievalService(
        helper_config=helper_config,
        rag_config=rag_config,
        store=store,
        embedding_service=embedding_service,
    )
    app.state.worker = worker

    await check_connections(embedding_service)
    worker.start()

    # while the app is running...
    yield

    # when the app shuts down, drain the worker and close all client connections
    logging.info("Shutting down, stopping index worker and closing all clients...")
    await worker.stop()
    await store.close()
    await embedding_service.close()
    logging.info("All clients closed.")


app = FastAPI(
    title="kb_rag_bridge",
    description=(
        "Knowledge-base retrieval-augmented generation for character chat. "
        "Uploaded documents are chunked, embedded and stored as memory items; "
        "POST /rag/retrieve returns the most relevant memories as a prompt context block."
    ),
    version=app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(knowledge_base_router)
app.include_router(memory_item_router)
app.include_router(retrieval_router)


async def check_connections(embedding_service: EmbeddingService) -> None:
    """Check the embedding providers on startup.

    An unavailable provider is non-fatal: indexing jobs fail and are retried,
    retrieval degrades to no context.
    """
    status = await embedding_service.check_availability()
    if status.available:
        logging.info("Embedding provider '%s' is available (model %s).", status.provider, status.model)
    else:
        logging.warning(
            "No embedding provider is reachable (%s). Indexing will fail until one is available.",
            status.error,
        )


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting kb_rag_bridge API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
