"""Retrieval engine.

Embeds the query, runs the ranked similarity search against the memory
store and renders hits as a context block for the system prompt. Failures
never propagate: a chat turn proceeds without context instead.
"""

import html

from services.embedding.EmbeddingService import EmbeddingService
from services.retrieval.effective_config import normalize_tags, parse_rag_mode
from shared.clients.store.StoreClientInterface import StoreClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService
from shared.helper.validators import is_valid_uuid
from shared.models.memory import (
    INTERNAL_TAG_PREFIX,
    LOW_PRIORITY_PENALTY,
    LOW_PRIORITY_TAG,
    MemorySearchQuery,
    OwnerScope,
    OwnerType,
    RetrievalResult,
    RetrievedMemory,
)
from shared.models.rag import RagMode

CONTEXT_HEADER = "The following relevant information was retrieved from your knowledge base:"
CONTEXT_FOOTER = "Use this context naturally in your response when relevant."

# (minimum relevance, excerpt length), checked top-down
EXCERPT_LIMITS = [(0.8, 800), (0.6, 500)]
DEFAULT_EXCERPT_LIMIT = 300


def get_excerpt_limit(similarity: float) -> int:
    for threshold, limit in EXCERPT_LIMITS:
        if similarity >= threshold:
            return limit
    return DEFAULT_EXCERPT_LIMIT


def get_visible_tags(tags: list[str] | None) -> list[str]:
    return [tag for tag in tags or [] if not tag.startswith(INTERNAL_TAG_PREFIX)]


def format_memories_for_prompt(memories: list[RetrievedMemory]) -> str:
    """Render memories as a <relevant_context> block.

    Each memory becomes a <memory> element carrying its id, source type,
    source file name (if known), relevance and user-visible tags. The
    excerpt is longer for more relevant memories.

    Args:
        memories (list[RetrievedMemory]): Hits, best first.

    Returns:
        str: The block, or "" when there is nothing to render.
    """
    if not memories:
        return ""

    blocks = []
    for memory in memories:
        attributes = [
            f'id="{html.escape(memory.id)}"',
            f'type="{html.escape(memory.source_type.value)}"',
        ]
        if memory.source_file_name:
            attributes.append(f'source="{html.escape(memory.source_file_name)}"')
        attributes.append(f'relevance="{memory.similarity:.2f}"')
        visible_tags = get_visible_tags(memory.tags)
        if visible_tags:
            attributes.append(f'tags="{html.escape(", ".join(visible_tags))}"')

        limit = get_excerpt_limit(memory.similarity)
        excerpt = memory.content[:limit] + ("..." if len(memory.content) > limit else "")
        blocks.append(f"<memory {' '.join(attributes)}>\n{excerpt}\n</memory>")

    body = "\n".join(blocks)
    return f"<relevant_context>\n{CONTEXT_HEADER}\n\n{body}\n\n{CONTEXT_FOOTER}\n</relevant_context>"


def get_memory_item_ids(memories: list[RetrievedMemory]) -> list[str]:
    return [memory.id for memory in memories]


def inject_context_into_system_prompt(system_prompt: str, context_block: str) -> str:
    """Append a context block to the system prompt, separated by a blank line."""
    if not context_block:
        return system_prompt
    if not system_prompt:
        return context_block
    return f"{system_prompt}\n\n{context_block}"


class RetrievalService:
    """Ranked, scoped similarity retrieval of memory items."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_config: RAGConfigService,
        store: StoreClientInterface,
        embedding_service: EmbeddingService,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_config = rag_config
        self._store = store
        self._embedding_service = embedding_service

    ##########################################
    ################ TOP-K ###################
    ##########################################

    def get_effective_top_k(self, top_k: int | None, rag_mode: RagMode) -> int:
        """Apply the mode to the requested (or default) top-K and cap it."""
        if rag_mode == RagMode.IGNORE:
            return 0
        base = max(0, top_k if top_k is not None else self._rag_config.get_default_top_k())
        if rag_mode == RagMode.LIGHT and base > 0:
            base = max(1, (base + 1) // 2)  # half, rounded half up
        return min(base, self._rag_config.get_max_top_k())

    ##########################################
    ############### RETRIEVAL ################
    ##########################################

    @staticmethod
    def _build_scopes(user_id: str, character_id: str | None) -> list[OwnerScope]:
        scopes = [OwnerScope(owner_type=OwnerType.USER, owner_id=user_id)]
        if character_id is not None:
            scopes.append(OwnerScope(owner_type=OwnerType.CHARACTER, owner_id=character_id))
            scopes.append(OwnerScope(owner_type=OwnerType.RELATIONSHIP, owner_id=user_id, required_tag=character_id))
        return scopes

    async def retrieve_relevant_memories(
        self,
        user_id: str,
        query: str,
        character_id: str | None = None,
        top_k: int | None = None,
        rag_mode: RagMode | str = RagMode.HEAVY,
        tag_filters: list[str] | None = None,
    ) -> RetrievalResult:
        """Retrieve the memories most relevant to a query.

        Args:
            user_id (str): Current user; their own items are always in scope.
            query (str): Query text, typically the latest user message.
            character_id (str | None): Active character. Ignored unless it is a canonical UUID.
            top_k (int | None): Requested result count, default from config.
            rag_mode (RagMode | str): heavy, light or ignore. Unknown values count as heavy.
            tag_filters (list[str] | None): Tags every hit must carry.

        Returns:
            RetrievalResult: Hits, best first. Empty on any failure.
        """
        mode = parse_rag_mode(rag_mode) or RagMode.HEAVY
        effective_top_k = self.get_effective_top_k(top_k, mode)
        if mode == RagMode.IGNORE or effective_top_k == 0:
            return RetrievalResult(memories=[], query=query, top_k=0)

        if character_id is not None and not is_valid_uuid(character_id):
            self.logging.warning("Ignoring malformed character id for retrieval: %r", character_id)
            character_id = None

        try:
            embedding = (await self._embedding_service.generate_embedding(query)).embedding
        except Exception as exc:
            self.logging.error("Failed to generate query embedding: %s", exc)
            return RetrievalResult(memories=[], query=query, top_k=effective_top_k)

        search = MemorySearchQuery(
            embedding=embedding,
            scopes=self._build_scopes(user_id, character_id),
            user_id=user_id,
            tag_filters=normalize_tags(tag_filters) or [],
            min_score=self._rag_config.get_min_similarity_score(),
            low_priority_tag=LOW_PRIORITY_TAG,
            low_priority_penalty=LOW_PRIORITY_PENALTY,
            limit=effective_top_k,
        )
        try:
            memories = await self._store.search_memories(search)
        except Exception as exc:
            self.logging.error("Memory retrieval failed: %s", exc)
            return RetrievalResult(memories=[], query=query, top_k=effective_top_k)

        self.logging.debug("Retrieved %d memories (top-k %d, mode %s).", len(memories), effective_top_k, mode.value)
        return RetrievalResult(memories=memories, query=query, top_k=effective_top_k)
