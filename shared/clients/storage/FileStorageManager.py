from shared.helper.HelperConfig import HelperConfig
from shared.clients.storage.FileStorageInterface import FileStorageInterface


class FileStorageManager:
    """
    Manager class to instantiate the file storage engine selected by STORAGE_ENGINE.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.engine = helper_config.get_string_val("STORAGE_ENGINE", default="local").lower().capitalize()
        self.storage = self._initialize_storage()

    def _initialize_storage(self) -> FileStorageInterface:
        """
        Initializes the storage engine.

        Returns:
            FileStorageInterface: The storage instance.

        Raises:
            ValueError: If the engine is unsupported.
        """
        className = f"FileStorage{self.engine}"
        try:
            module = __import__(
                f"shared.clients.storage.{self.engine.lower()}.{className}",
                fromlist=[className],
            )
            storage_class = getattr(module, className)
            self.logging.debug("Instantiated file storage for engine: %s", self.engine)
            return storage_class(helper_config=self.helper_config)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported storage engine specified: '{self.engine}'. Error: {e}")

    def get_storage(self) -> FileStorageInterface:
        return self.storage
