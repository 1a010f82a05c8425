from shared.helper.HelperConfig import HelperConfig
from shared.helper.RAGConfigService import RAGConfigService
from shared.clients.store.StoreClientInterface import StoreClientInterface


class StoreClientManager:
    """
    Manager class to instantiate the memory store engine selected by STORE_ENGINE.

    The store is bound to the embedding dimensionality of the RAG config, so
    the vector column and every stored embedding have the same length.
    """

    def __init__(self, helper_config: HelperConfig, rag_config: RAGConfigService):
        self.helper_config = helper_config
        self.rag_config = rag_config
        self.logging = helper_config.get_logger()
        self.engine = helper_config.get_string_val("STORE_ENGINE", default="inmemory").strip().lower().capitalize()
        self.client = self._initialize_client()

    def _initialize_client(self) -> StoreClientInterface:
        """
        Initializes the store client.

        Returns:
            StoreClientInterface: The store instance.

        Raises:
            ValueError: If the engine is unsupported.
        """
        className = f"StoreClient{self.engine}"
        try:
            module = __import__(
                f"shared.clients.store.{self.engine.lower()}.{className}",
                fromlist=[className],
            )
            client_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported store engine specified: '{self.engine}'. Error: {e}")
        self.logging.debug("Instantiated store client for engine: %s", self.engine)
        return client_class(helper_config=self.helper_config, dimensions=self.rag_config.get_embedding_dimensions())

    def get_client(self) -> StoreClientInterface:
        return self.client
