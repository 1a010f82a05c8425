from shared.helper.HelperConfig import HelperConfig
from shared.clients.queue.JobQueueInterface import JobQueueInterface


class JobQueueManager:
    """
    Manager class to instantiate the job queue engine selected by QUEUE_ENGINE.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.engine = helper_config.get_string_val("QUEUE_ENGINE", default="inmemory").strip().lower().capitalize()
        self.queue = self._initialize_queue()

    def _initialize_queue(self) -> JobQueueInterface:
        """
        Initializes the job queue.

        Raises:
            ValueError: If the engine is unsupported.
        """
        className = f"JobQueue{self.engine}"
        try:
            module = __import__(
                f"shared.clients.queue.{self.engine.lower()}.{className}",
                fromlist=[className],
            )
            queue_class = getattr(module, className)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported queue engine specified: '{self.engine}'. Error: {e}")
        self.logging.debug("Instantiated job queue for engine: %s", self.engine)
        return queue_class(helper_config=self.helper_config)

    def get_queue(self) -> JobQueueInterface:
        return self.queue
