"""Tests for the in-memory job queue, the index-file job and its worker."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.kb_indexing.IndexFileJob import INDEX_FILE_QUEUE, IndexFileJob, IndexFileWorker
from shared.clients.queue.inmemory.JobQueueInmemory import JobQueueInmemory
from shared.exceptions import IndexingFailedError
from shared.models.jobs import Job, JobOptions, JobState
from shared.models.knowledge_base import IndexingResult


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


async def _started_queue(helper_config, clock=None) -> JobQueueInmemory:
    queue = JobQueueInmemory(helper_config, clock=clock) if clock else JobQueueInmemory(helper_config)
    await queue.start()
    return queue


# =============================================================================
# Queue semantics
# =============================================================================

class TestJobQueueInmemory:

    @pytest.mark.asyncio
    async def test_send_requires_start(self, helper_config):
        queue = JobQueueInmemory(helper_config)

        with pytest.raises(RuntimeError):
            await queue.send(INDEX_FILE_QUEUE, {})

    @pytest.mark.asyncio
    async def test_fetch_orders_by_priority_then_arrival(self, helper_config):
        queue = await _started_queue(helper_config)
        first = await queue.send(INDEX_FILE_QUEUE, {"n": 1})
        second = await queue.send(INDEX_FILE_QUEUE, {"n": 2})
        urgent = await queue.send(INDEX_FILE_QUEUE, {"n": 3}, JobOptions(priority=10))
        await queue.send("other-queue", {"n": 4}, JobOptions(priority=99))

        fetched = await queue.fetch(INDEX_FILE_QUEUE, batch_size=3)

        assert [job.id for job in fetched] == [urgent, first, second]
        assert all(job.state == JobState.ACTIVE for job in fetched)
        assert await queue.fetch(INDEX_FILE_QUEUE) == []

    @pytest.mark.asyncio
    async def test_failed_job_is_retried_after_delay(self, helper_config):
        clock = FakeClock()
        queue = await _started_queue(helper_config, clock)
        job_id = await queue.send(INDEX_FILE_QUEUE, {}, JobOptions(retry_limit=1, retry_delay_seconds=30))
        await queue.fetch(INDEX_FILE_QUEUE)

        await queue.fail(job_id, "boom")

        job = await queue.get_job(job_id)
        assert (job.state, job.retry_count, job.last_error) == (JobState.RETRY, 1, "boom")
        assert await queue.fetch(INDEX_FILE_QUEUE) == []

        clock.advance(31)
        [retried] = await queue.fetch(INDEX_FILE_QUEUE)
        await queue.fail(retried.id, "boom again")

        assert (await queue.get_job(job_id)).state == JobState.FAILED

    @pytest.mark.asyncio
    async def test_fail_without_retry(self, helper_config):
        queue = await _started_queue(helper_config)
        job_id = await queue.send(INDEX_FILE_QUEUE, {})
        await queue.fetch(INDEX_FILE_QUEUE)

        await queue.fail(job_id, "timed out", retry=False)

        job = await queue.get_job(job_id)
        assert (job.state, job.retry_count) == (JobState.FAILED, 0)

    @pytest.mark.asyncio
    async def test_unprocessed_job_expires(self, helper_config):
        clock = FakeClock()
        queue = await _started_queue(helper_config, clock)
        job_id = await queue.send(INDEX_FILE_QUEUE, {}, JobOptions(expire_in_seconds=60))

        clock.advance(61)

        assert await queue.fetch(INDEX_FILE_QUEUE) == []
        assert (await queue.get_job(job_id)).state == JobState.EXPIRED

    @pytest.mark.asyncio
    async def test_oldest_finished_jobs_are_pruned(self, helper_config):
        queue = JobQueueInmemory(helper_config, retention=2)
        await queue.start()
        completed = await queue.send(INDEX_FILE_QUEUE, {"n": 1})
        failed = await queue.send(INDEX_FILE_QUEUE, {"n": 2})
        retried = await queue.send(INDEX_FILE_QUEUE, {"n": 3}, JobOptions(retry_limit=1))
        newest = await queue.send(INDEX_FILE_QUEUE, {"n": 4})
        waiting = await queue.send(INDEX_FILE_QUEUE, {"n": 5})
        await queue.fetch(INDEX_FILE_QUEUE, batch_size=4)

        await queue.complete(completed)
        await queue.fail(failed, "boom", retry=False)
        await queue.fail(retried, "boom")
        await queue.complete(newest)

        assert await queue.get_job(completed) is None
        assert (await queue.get_job(failed)).state == JobState.FAILED
        assert (await queue.get_job(newest)).state == JobState.COMPLETED
        assert (await queue.get_job(retried)).state == JobState.RETRY
        assert (await queue.get_job(waiting)).state == JobState.CREATED


# =============================================================================
# Index-file job
# =============================================================================

class TestIndexFileJob:

    @pytest.mark.asyncio
    async def test_enqueue_uses_camel_case_payload_and_retry_policy(self, helper_config, queue):
        job = IndexFileJob(helper_config, queue, indexing_service=MagicMock())

        job_id = await job.enqueue_index_file("file-1", "user-1", priority=10)

        stored = await queue.get_job(job_id)
        assert stored.name == INDEX_FILE_QUEUE
        assert stored.data == {"fileId": "file-1", "userId": "user-1"}
        assert (stored.options.priority, stored.options.retry_limit, stored.options.retry_delay_seconds) == (10, 3, 30)
        assert stored.options.expire_in_seconds == 3600

    @pytest.mark.asyncio
    async def test_enqueue_failure_returns_none(self, helper_config):
        stopped_queue = JobQueueInmemory(helper_config)
        job = IndexFileJob(helper_config, stopped_queue, indexing_service=MagicMock())

        assert await job.enqueue_index_file("file-1", "user-1") is None

    @pytest.mark.asyncio
    async def test_handler_raises_on_unsuccessful_indexing(self, helper_config, queue):
        indexing_service = MagicMock()
        indexing_service.index_file = AsyncMock(return_value=IndexingResult(file_id="file-1", success=False, error="No text content extracted"))
        job = IndexFileJob(helper_config, queue, indexing_service)
        cancel_event = asyncio.Event()

        with pytest.raises(IndexingFailedError, match="No text content extracted"):
            await job.handle_index_file(Job(name=INDEX_FILE_QUEUE, data={"fileId": "file-1", "userId": "user-1"}), cancel_event)

        indexing_service.index_file.assert_awaited_once_with("file-1", cancel_event)


# =============================================================================
# Worker
# =============================================================================

class TestIndexFileWorker:

    def _worker(self, helper_config, queue, handler) -> IndexFileWorker:
        index_file_job = MagicMock()
        index_file_job.handle_index_file = handler
        return IndexFileWorker(helper_config, queue, index_file_job)

    @pytest.mark.asyncio
    async def test_successful_job_is_completed(self, helper_config, queue):
        worker = self._worker(helper_config, queue, AsyncMock(return_value=None))
        job_id = await queue.send(INDEX_FILE_QUEUE, {"fileId": "f", "userId": "u"})

        assert await worker.run_once() is True
        assert (await queue.get_job(job_id)).state == JobState.COMPLETED
        assert await worker.run_once() is False

    @pytest.mark.asyncio
    async def test_failed_job_is_scheduled_for_retry(self, helper_config, queue):
        worker = self._worker(helper_config, queue, AsyncMock(side_effect=IndexingFailedError("All chunks failed to embed")))
        job_id = await queue.send(INDEX_FILE_QUEUE, {"fileId": "f", "userId": "u"}, JobOptions(retry_limit=3))

        await worker.run_once()

        job = await queue.get_job(job_id)
        assert (job.state, job.retry_count, job.last_error) == (JobState.RETRY, 1, "All chunks failed to embed")

    @pytest.mark.asyncio
    async def test_timed_out_job_is_cancelled_and_not_retried(self, helper_config, queue):
        seen_events: list[asyncio.Event] = []

        async def slow_handler(job, cancel_event):
            seen_events.append(cancel_event)
            await asyncio.sleep(5)

        worker = self._worker(helper_config, queue, slow_handler)
        worker.job_timeout = 0.05
        job_id = await queue.send(INDEX_FILE_QUEUE, {"fileId": "f", "userId": "u"}, JobOptions(retry_limit=3))

        await worker.run_once()

        job = await queue.get_job(job_id)
        assert (job.state, job.retry_count) == (JobState.FAILED, 0)
        assert "timed out" in job.last_error
        assert seen_events[0].is_set()

    @pytest.mark.asyncio
    async def test_start_processes_jobs_and_stop_releases_queue(self, helper_config, queue):
        worker = self._worker(helper_config, queue, AsyncMock(return_value=None))
        job_id = await queue.send(INDEX_FILE_QUEUE, {"fileId": "f", "userId": "u"})

        worker.start()
        assert worker.is_running()
        for _ in range(100):
            if (await queue.get_job(job_id)).state == JobState.COMPLETED:
                break
            await asyncio.sleep(0.01)
        await worker.stop(timeout=1)

        assert (await queue.get_job(job_id)).state == JobState.COMPLETED
        assert worker.is_running() is False
        assert queue.is_started() is False
