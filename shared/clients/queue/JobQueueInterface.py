from abc import ABC, abstractmethod
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.jobs import Job, JobOptions


class JobQueueInterface(ABC):
    """Named work queues with priority, retry and expiry semantics.

    Jobs are claimed by fetch() and must then be settled with complete() or
    fail(). fail() applies the job's retry policy unless retry is disabled.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the name of the queue engine. E.g. "Inmemory"
        """
        pass

    @abstractmethod
    def is_started(self) -> bool:
        pass

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Release queue resources. Jobs that are still queued are dropped by non-durable engines."""
        pass

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    @abstractmethod
    async def send(self, name: str, data: dict[str, Any], options: JobOptions | None = None) -> str:
        """Queue a job and return its id.

        Raises:
            RuntimeError: If the queue has not been started.
        """
        pass

    @abstractmethod
    async def fetch(self, name: str, batch_size: int = 1) -> list[Job]:
        """Claim up to batch_size available jobs, highest priority first, FIFO within a priority."""
        pass

    @abstractmethod
    async def complete(self, job_id: str) -> None:
        pass

    @abstractmethod
    async def fail(self, job_id: str, error: str, retry: bool = True) -> None:
        """Settle a claimed job as failed.

        With retry=True the job becomes available again after its retry delay
        while retries are left; otherwise it is marked failed for good.
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        pass
