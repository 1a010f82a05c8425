from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService
from shared.clients.embed.EmbedClientInterface import EmbedClientInterface


class EmbedClientManager:
    """
    Manager class to instantiate the embedding provider clients named in the RAG config.

    The primary provider is mandatory; the fallback provider is instantiated
    only when the config names one. Both share a single client instance when
    they are the same engine.
    """

    def __init__(self, helper_config: HelperConfig, rag_config: RAGConfigService):
        self.helper_config = helper_config
        self.rag_config = rag_config
        self.logging = helper_config.get_logger()
        self.clients = self._initialize_clients()

    def _get_engines_from_config(self) -> list[str]:
        """
        Reads the primary and optional fallback embedding engines from the RAG config.

        Returns:
            list[str]: Engine names, primary first, capitalized for class lookup.
        """
        engines = [self.rag_config.get_embedding_provider()]
        fallback = self.rag_config.get_fallback_embedding_provider()
        if fallback and fallback not in engines:
            engines.append(fallback)
        return [engine.strip().lower().capitalize() for engine in engines]

    def _initialize_clients(self) -> dict[str, EmbedClientInterface]:
        """
        Initializes one client per configured engine.

        Returns:
            dict[str, EmbedClientInterface]: Clients keyed by lowercase engine name.

        Raises:
            ValueError: If an engine is unsupported.
        """
        clients: dict[str, EmbedClientInterface] = {}
        for engine in self._get_engines_from_config():
            className = f"EmbedClient{engine}"
            try:
                module = __import__(
                    f"shared.clients.embed.{engine.lower()}.{className}",
                    fromlist=[className],
                )
                client_class = getattr(module, className)
                clients[engine.lower()] = client_class(helper_config=self.helper_config)
                self.logging.debug("Instantiated Embed client for engine: %s", engine)
            except (ImportError, AttributeError) as e:
                raise ValueError(f"Unsupported Embed engine specified: '{engine}'. Error: {e}")
        return clients

    def get_client(self, provider: str) -> EmbedClientInterface:
        """
        Returns the client for a provider name.

        Raises:
            KeyError: If the provider was not configured.
        """
        return self.clients[provider.lower()]

    def get_clients(self) -> list[EmbedClientInterface]:
        return list(self.clients.values())
