from abc import abstractmethod

import httpx
from shared.clients.ClientInterface import ClientInterface
from shared.exceptions import (
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingUnavailableError,
)
from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    """Provider strategy for an OpenAI-compatible embeddings API.

    Subclasses only describe the provider (base URL, auth, whether it runs
    locally); request, error mapping and response parsing are shared.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ############### CHECKER ##################
    ##########################################

    @abstractmethod
    def is_local(self) -> bool:
        """
        Returns True if the provider is a locally hosted server whose availability
        must be probed over the network, False for a cloud API where a credential
        is all that is needed.
        """
        pass

    @abstractmethod
    def has_credentials(self) -> bool:
        """
        Returns True if the credential required to call the provider is present.
        Local providers without authentication always return True.
        """
        pass

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "embed"
        """
        return "embed"

    ################ ENDPOINTS ##################
    def _get_endpoint_healthcheck(self) -> str:
        return self._get_endpoint_models()

    def _get_endpoint_models(self) -> str:
        """
        Returns the endpoint path for model listing requests.
        """
        return "/models"

    def get_endpoint_embedding(self) -> str:
        """
        Returns the endpoint path for embedding requests.
        """
        return "/embeddings"

    ################ PAYLOAD BUILDER ##################
    def get_embed_payload(self, model: str, text: str) -> dict:
        """Build the request body for an embedding request.

        Args:
            model (str): Model identifier as known to the provider.
            text (str): The text to embed.

        Returns:
            dict: {"model": "...", "input": "..."}
        """
        return {"model": model, "input": text}

    ##########################################
    ################# OTHER ##################
    ##########################################

    def extract_embedding_from_response(self, response_data: dict) -> list[float]:
        """Extract the first embedding vector from an OpenAI-compatible response.

        Args:
            response_data (dict): The parsed JSON response body ({"data": [{"embedding": [...]}]}).

        Returns:
            list[float]: The raw embedding vector, not yet normalized.

        Raises:
            EmbeddingResponseError: If the vector field is missing or not a list.
        """
        data = response_data.get("data") if isinstance(response_data, dict) else None
        first = data[0] if isinstance(data, list) and data else None
        embedding = first.get("embedding") if isinstance(first, dict) else None
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingResponseError(
                f"Invalid embedding response from {self.get_engine_name()}",
                provider=self.get_engine_name(),
            )
        return [float(v) for v in embedding]

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_fetch_models(self, timeout: float | None = None) -> httpx.Response:
        """Fetch the list of available models from the provider.

        Args:
            timeout (float | None): Per-request timeout override.

        Returns:
            httpx.Response: The response containing the model list.
        """
        return await self.do_request(method="GET", endpoint=self._get_endpoint_models(), timeout=timeout)

    async def do_embed(self, model: str, text: str) -> list[float]:
        """Send one embedding request and return the raw vector.

        Args:
            model (str): Model identifier.
            text (str): The text to embed.

        Returns:
            list[float]: The raw vector as returned by the provider.

        Raises:
            EmbeddingUnavailableError: Missing credential, network failure or timeout.
            EmbeddingRequestError: Non-2xx response; carries status and body.
            EmbeddingResponseError: 2xx response without a usable vector.
        """
        engine = self.get_engine_name()
        if not self.has_credentials():
            raise EmbeddingUnavailableError(f"{engine} API key not configured", provider=engine)

        try:
            response = await self.do_request(
                method="POST",
                endpoint=self.get_endpoint_embedding(),
                json=self.get_embed_payload(model, text),
            )
        except httpx.TransportError as exc:
            raise EmbeddingUnavailableError(f"{engine} embedding request failed: {exc}", provider=engine) from exc

        if not response.is_success:
            body = response.text
            raise EmbeddingRequestError(
                f"{engine} embedding failed ({response.status_code}): {body}",
                provider=engine,
                status_code=response.status_code,
                body=body,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise EmbeddingResponseError(f"Invalid embedding response from {engine}", provider=engine) from exc
        return self.extract_embedding_from_response(payload)
