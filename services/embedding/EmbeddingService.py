"""Embedding service.

Turns text into fixed-dimension vectors through the configured provider chain
(primary, then optional fallback). Every provider call is wrapped in the same
retry combinator, and every returned vector is normalized to the configured
target dimensionality.
"""

import asyncio
import time
from typing import Awaitable, Callable

import httpx

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.embed.EmbedClientManager import EmbedClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService
from shared.exceptions import EmbeddingUnavailableError
from shared.helper.retry import with_retry
from shared.models.embedding import EmbeddingResult, EmbeddingServiceStatus

AVAILABILITY_TIMEOUT_SECONDS = 5.0
DEFAULT_BATCH_CONCURRENCY = 2  # conservative for locally hosted models


def normalize_embedding(embedding: list[float], target_dims: int, logger=None) -> list[float]:
    """Truncate or zero-pad a vector to exactly ``target_dims`` entries.

    Both directions are lossy: the stored vector no longer matches what the
    model would produce natively. Each adjustment is logged as a warning.

    Args:
        embedding (list[float]): Raw vector from the provider.
        target_dims (int): Configured dimensionality of the memory store.
        logger: Optional logger for the warnings.

    Returns:
        list[float]: A vector of length target_dims.
    """
    length = len(embedding)
    if length == target_dims:
        return embedding
    if length > target_dims:
        if logger:
            logger.warning("Truncating embedding %dD → %dD", length, target_dims)
        return embedding[:target_dims]
    if logger:
        logger.warning("Padding embedding %dD → %dD", length, target_dims)
    return embedding + [0.0] * (target_dims - length)


class EmbeddingService:
    """Provider-chain embedding with retry, fallback and dimension normalization."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_config: RAGConfigService,
        embed_manager: EmbedClientManager,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag_config = rag_config
        self._embed_manager = embed_manager
        self._sleep = sleep

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        for client in self._embed_manager.get_clients():
            await client.boot()

    async def close(self) -> None:
        for client in self._embed_manager.get_clients():
            await client.close()

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_provider_chain(self) -> list[tuple[EmbedClientInterface, str]]:
        """Return (client, model) pairs to try in order: primary, then fallback if configured."""
        chain = [(
            self._embed_manager.get_client(self._rag_config.get_embedding_provider()),
            self._rag_config.get_embedding_model(),
        )]
        fallback_provider = self._rag_config.get_fallback_embedding_provider()
        fallback_model = self._rag_config.get_fallback_embedding_model()
        if fallback_provider and fallback_model:
            chain.append((self._embed_manager.get_client(fallback_provider), fallback_model))
        return chain

    ##########################################
    ############### EMBEDDING ################
    ##########################################

    async def generate_embedding(self, text: str) -> EmbeddingResult:
        """Embed a single text with retry and fallback.

        Args:
            text (str): The text to embed.

        Returns:
            EmbeddingResult: Normalized vector plus the provider and model that produced it.

        Raises:
            EmbeddingError: The primary provider's error, once every provider in
                the chain has exhausted its retries.
        """
        primary_error: Exception | None = None
        for client, model in self._get_provider_chain():
            name = f"{client.get_engine_name()}/{model}"
            if primary_error is not None:
                self.logging.warning(
                    "Primary embedding provider failed after retries, trying fallback %s: %s",
                    name, primary_error,
                )
            try:
                return await with_retry(
                    lambda client=client, model=model: self._call_provider(client, model, text),
                    attempts=self._rag_config.get_retry_attempts(),
                    delay_ms=self._rag_config.get_retry_delay_ms(),
                    name=name,
                    logger=self.logging,
                    sleep=self._sleep,
                )
            except Exception as exc:
                if primary_error is None:
                    primary_error = exc
                else:
                    self.logging.error("Fallback embedding provider %s failed: %s", name, exc)

        if primary_error is None:
            raise EmbeddingUnavailableError("No embedding provider configured")
        raise primary_error

    async def generate_embeddings(self, texts: list[str], concurrency: int = DEFAULT_BATCH_CONCURRENCY) -> list[EmbeddingResult]:
        """Embed many texts in fixed-size concurrent batches, preserving input order.

        Args:
            texts (list[str]): Texts to embed.
            concurrency (int): Number of texts embedded in parallel per batch.

        Returns:
            list[EmbeddingResult]: One result per input, same order.
        """
        concurrency = max(1, concurrency)
        results: list[EmbeddingResult] = []
        for start in range(0, len(texts), concurrency):
            batch = texts[start:start + concurrency]
            results.extend(await asyncio.gather(*[self.generate_embedding(text) for text in batch]))
        return results

    async def _call_provider(self, client: EmbedClientInterface, model: str, text: str) -> EmbeddingResult:
        raw = await client.do_embed(model=model, text=text)
        normalized = normalize_embedding(raw, self._rag_config.get_embedding_dimensions(), self.logging)
        return EmbeddingResult(
            embedding=normalized,
            provider=client.get_engine_name(),
            model=model,
            dimensions=len(normalized),
        )

    ##########################################
    ############# AVAILABILITY ###############
    ##########################################

    async def check_availability(self) -> EmbeddingServiceStatus:
        """Report whether the embedding chain can currently serve requests.

        Local providers are probed with a short GET on the model listing; a cloud
        provider is available when its credential is present. When the local
        probe cannot connect, a configured and credentialed fallback is reported
        instead.

        Returns:
            EmbeddingServiceStatus: Availability, provider, model, error and probe latency.
        """
        provider = self._rag_config.get_embedding_provider()
        model = self._rag_config.get_embedding_model()
        client = self._embed_manager.get_client(provider)

        if not client.is_local():
            if client.has_credentials():
                return EmbeddingServiceStatus(available=True, provider=provider, model=model)
            return EmbeddingServiceStatus(
                available=False, provider=provider, model=model,
                error=f"{provider} API key not configured",
            )

        started = time.monotonic()
        try:
            response = await client.do_fetch_models(timeout=AVAILABILITY_TIMEOUT_SECONDS)
        except (httpx.HTTPError, RuntimeError) as exc:
            fallback_status = self._get_fallback_status()
            if fallback_status is not None:
                self.logging.warning(
                    "Embedding provider %s unreachable (%s), fallback %s is available.",
                    provider, exc, fallback_status.provider,
                )
                return fallback_status
            return EmbeddingServiceStatus(
                available=False, provider=provider, model=model,
                error=str(exc) or "Connection failed",
            )

        latency_ms = int((time.monotonic() - started) * 1000)
        if response.is_success:
            return EmbeddingServiceStatus(available=True, provider=provider, model=model, latency_ms=latency_ms)
        return EmbeddingServiceStatus(
            available=False, provider=provider, model=model,
            error=f"HTTP {response.status_code}", latency_ms=latency_ms,
        )

    def _get_fallback_status(self) -> EmbeddingServiceStatus | None:
        fallback_provider = self._rag_config.get_fallback_embedding_provider()
        if not fallback_provider or fallback_provider == self._rag_config.get_embedding_provider():
            return None
        fallback_client = self._embed_manager.get_client(fallback_provider)
        if fallback_client.is_local() or not fallback_client.has_credentials():
            return None
        return EmbeddingServiceStatus(
            available=True,
            provider=fallback_provider,
            model=self._rag_config.get_fallback_embedding_model(),
        )
