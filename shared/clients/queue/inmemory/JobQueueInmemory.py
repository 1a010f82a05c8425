import itertools
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Callable

from shared.clients.queue.JobQueueInterface import JobQueueInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.jobs import Job, JobOptions, JobState
from shared.models.knowledge_base import utc_now

_AVAILABLE_STATES = (JobState.CREATED, JobState.RETRY)
FINISHED_JOB_RETENTION = 1000


class JobQueueInmemory(JobQueueInterface):
    """In-process queue. Jobs do not survive a restart."""

    def __init__(
        self,
        helper_config: HelperConfig,
        clock: Callable[[], datetime] = utc_now,
        retention: int = FINISHED_JOB_RETENTION,
    ):
        super().__init__(helper_config=helper_config)
        self._clock = clock
        self._jobs: dict[str, Job] = {}
        self._sequence: dict[str, int] = {}
        # completed, failed and expired jobs stay readable until pushed out
        self._finished: deque[str] = deque()
        self._retention = max(0, retention)
        self._counter = itertools.count()
        self._started = False

    ##########################################
    ################ GETTER ##################
    ##########################################

    def _get_engine_name(self) -> str:
        return "Inmemory"

    def is_started(self) -> bool:
        return self._started

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def start(self) -> None:
        self._started = True
        self.logging.info("In-memory job queue started.")

    async def stop(self) -> None:
        pending = sum(1 for job in self._jobs.values() if job.state in _AVAILABLE_STATES)
        if pending:
            self.logging.warning("Stopping in-memory job queue with %d unprocessed job(s).", pending)
        self._started = False

    ##########################################
    ############### OPERATIONS ###############
    ##########################################

    async def send(self, name: str, data: dict[str, Any], options: JobOptions | None = None) -> str:
        if not self._started:
            raise RuntimeError("Job queue not started. Call start() before sending jobs.")
        now = self._clock()
        job = Job(name=name, data=data, options=options or JobOptions(), created_at=now, start_after=now)
        self._jobs[job.id] = job
        self._sequence[job.id] = next(self._counter)
        return job.id

    async def fetch(self, name: str, batch_size: int = 1) -> list[Job]:
        if not self._started:
            return []
        now = self._clock()
        available: list[Job] = []
        expired: list[str] = []
        for job in self._jobs.values():
            if job.name != name or job.state not in _AVAILABLE_STATES:
                continue
            if job.is_expired(now):
                job.state = JobState.EXPIRED
                self.logging.warning("Job %s expired before it was processed.", job.id)
                expired.append(job.id)
                continue
            if job.start_after <= now:
                available.append(job)

        for job_id in expired:
            self._mark_finished(job_id)

        available.sort(key=lambda job: (-job.options.priority, self._sequence[job.id]))
        claimed = available[:max(1, batch_size)]
        for job in claimed:
            job.state = JobState.ACTIVE
        return [job.model_copy(deep=True) for job in claimed]

    async def complete(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is not None:
            job.state = JobState.COMPLETED
            self._mark_finished(job_id)

    async def fail(self, job_id: str, error: str, retry: bool = True) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        job.last_error = error
        if retry and job.retry_count < job.options.retry_limit:
            job.retry_count += 1
            job.state = JobState.RETRY
            job.start_after = self._clock() + timedelta(seconds=job.options.retry_delay_seconds)
            self.logging.info(
                "Job %s will be retried (%d/%d) in %ss.",
                job_id, job.retry_count, job.options.retry_limit, job.options.retry_delay_seconds,
            )
        else:
            job.state = JobState.FAILED
            self._mark_finished(job_id)

    async def get_job(self, job_id: str) -> Job | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    def _mark_finished(self, job_id: str) -> None:
        """Record a job as finished and drop the oldest finished jobs beyond the retention."""
        self._sequence.pop(job_id, None)
        self._finished.append(job_id)
        while len(self._finished) > self._retention:
            self._jobs.pop(self._finished.popleft(), None)
