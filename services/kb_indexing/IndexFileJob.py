"""Background indexing through the job queue.

IndexFileJob enqueues and handles "index-file" jobs; IndexFileWorker polls
the queue and runs the handler under a hard timeout.
"""

import asyncio

from services.kb_indexing.IndexingService import IndexingService
from shared.clients.queue.JobQueueInterface import JobQueueInterface
from shared.exceptions import IndexingFailedError
from shared.helper.HelperConfig import HelperConfig
from shared.models.jobs import IndexFilePayload, Job, JobOptions

INDEX_FILE_QUEUE = "index-file"
RETRY_LIMIT = 3
RETRY_DELAY_SECONDS = 30
EXPIRE_IN_SECONDS = 60 * 60

DEFAULT_POLL_INTERVAL_SECONDS = 2
DEFAULT_JOB_TIMEOUT_SECONDS = 120
DEFAULT_SHUTDOWN_TIMEOUT_SECONDS = 30


class IndexFileJob:
    """Enqueue and handle index-file jobs."""

    def __init__(self, helper_config: HelperConfig, queue: JobQueueInterface, indexing_service: IndexingService) -> None:
        self.logging = helper_config.get_logger()
        self._queue = queue
        self._indexing_service = indexing_service

    async def enqueue_index_file(self, file_id: str, user_id: str, priority: int = 0) -> str | None:
        """Queue a file for indexing.

        Args:
            file_id (str): File to index.
            user_id (str): Owner of the file.
            priority (int): Higher values are processed first.

        Returns:
            str | None: The job id, or None if the queue rejected the job.
        """
        payload = IndexFilePayload(file_id=file_id, user_id=user_id)
        options = JobOptions(
            priority=priority,
            retry_limit=RETRY_LIMIT,
            retry_delay_seconds=RETRY_DELAY_SECONDS,
            expire_in_seconds=EXPIRE_IN_SECONDS,
        )
        try:
            job_id = await self._queue.send(INDEX_FILE_QUEUE, payload.model_dump(by_alias=True), options)
        except Exception as exc:
            self.logging.error("Failed to enqueue index job for file %s, user %s: %s", file_id, user_id, exc)
            return None
        self.logging.info("Enqueued job %s for file %s", job_id, file_id)
        return job_id

    async def handle_index_file(self, job: Job, cancel_event: asyncio.Event | None = None) -> None:
        """Run the indexing pipeline for one job.

        Raises:
            IndexingFailedError: When indexing did not succeed, so the queue retries the job.
        """
        payload = IndexFilePayload.model_validate(job.data)
        self.logging.info("Processing job %s for file %s (user: %s)", job.id, payload.file_id, payload.user_id)

        result = await self._indexing_service.index_file(payload.file_id, cancel_event)
        if not result.success:
            raise IndexingFailedError(result.error or "Indexing failed")
        self.logging.info("Job %s completed: %d chunks created", job.id, result.chunks_created)


class IndexFileWorker:
    """Single-task poller that processes index-file jobs one at a time."""

    def __init__(
        self,
        helper_config: HelperConfig,
        queue: JobQueueInterface,
        index_file_job: IndexFileJob,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._queue = queue
        self._index_file_job = index_file_job
        self.poll_interval = helper_config.get_number_val("INDEX_JOB_POLL_INTERVAL", default=DEFAULT_POLL_INTERVAL_SECONDS)
        self.job_timeout = helper_config.get_number_val("INDEX_JOB_TIMEOUT", default=DEFAULT_JOB_TIMEOUT_SECONDS)
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    def start(self) -> None:
        if self.is_running():
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="index-file-worker")
        self.logging.info("Index worker listening on queue '%s'.", INDEX_FILE_QUEUE)

    async def stop(self, timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Stop polling, let the in-flight job finish within timeout, then release the queue."""
        self._stopping.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
            except asyncio.TimeoutError:
                self.logging.warning("Index worker did not drain within %ss, cancelling.", timeout)
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        await self._queue.stop()
        self.logging.info("Index worker stopped.")

    ##########################################
    ############### PROCESSING ###############
    ##########################################

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                processed = await self.run_once()
            except Exception as exc:
                self.logging.exception("Index worker poll failed: %s", exc)
                processed = False
            if processed:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> bool:
        """Fetch and process at most one job.

        Returns:
            bool: True if a job was processed.
        """
        jobs = await self._queue.fetch(INDEX_FILE_QUEUE, batch_size=1)
        for job in jobs:
            await self._process_job(job)
        return bool(jobs)

    async def _process_job(self, job: Job) -> None:
        cancel_event = asyncio.Event()
        try:
            await asyncio.wait_for(
                self._index_file_job.handle_index_file(job, cancel_event),
                timeout=self.job_timeout,
            )
        except asyncio.TimeoutError:
            # timed-out jobs are never retried
            cancel_event.set()
            self.logging.error("Job %s timed out after %ss, marking as failed.", job.id, self.job_timeout)
            await self._queue.fail(job.id, f"Job {job.id} timed out after {self.job_timeout}s", retry=False)
            return
        except Exception as exc:
            self.logging.error("Job %s failed: %s", job.id, exc)
            await self._queue.fail(job.id, str(exc), retry=True)
            return
        await self._queue.complete(job.id)
