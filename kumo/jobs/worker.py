import asyncio
import time
from dataclasses import dataclass

from pydantic import ValidationError

from kumo.core.exceptions import is_retryable
from kumo.core.logger import logger
from kumo.jobs.models import load_job
from kumo.jobs.pipeline import ScrapePipeline, describe_error
from kumo.jobs.queue import JobQueue, QueueEntry, compute_backoff
from kumo.jobs.store import JobStore
from kumo.services.progress import ProgressEvent, ProgressPublisher, notify


@dataclass
class WorkerStats:
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    start_time: float = 0.0

    @property
    def uptime(self) -> float:
        return time.time() - self.start_time if self.start_time else 0.0


class ScrapeWorkerPool:
    def __init__(
        self,
        queue: JobQueue,
        store: JobStore,
        pipeline: ScrapePipeline,
        publisher: ProgressPublisher,
        concurrency: int = 3,
        poll_interval: float = 1.0,
        backoff_base: float = 2.0,
        attempt_timeout: float = 600,
        recovery_interval: float = 60,
    ):
        self.queue = queue
        self.store = store
        self.pipeline = pipeline
        self.publisher = publisher
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval
        self.backoff_base = backoff_base
        self.attempt_timeout = attempt_timeout
        self.recovery_interval = recovery_interval

        self.is_running = False
        self.stats = WorkerStats()
        self.tasks: list[asyncio.Task] = []

    async def start(self):
        if self.is_running:
            logger.log("WORKER", "Scrape worker pool is already running")
            return

        await self.queue.recover_stale()

        self.is_running = True
        self.stats = WorkerStats(start_time=time.time())
        self.tasks = [
            asyncio.create_task(self._run_worker(index))
            for index in range(self.concurrency)
        ]
        self.tasks.append(asyncio.create_task(self._run_recovery()))
        logger.log("WORKER", f"Started {self.concurrency} scrape workers")

    async def stop(self):
        if not self.is_running and not self.tasks:
            return

        logger.log("WORKER", "Stopping scrape workers")
        self.is_running = False
        for task in self.tasks:
            if not task.done():
                task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []

    async def _run_worker(self, index: int):
        while self.is_running:
            try:
                processed = await self.process_next()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scrape worker {index} error: {e}")
                processed = False

            if not processed:
                await asyncio.sleep(self.poll_interval)

    async def _run_recovery(self):
        while self.is_running:
            await asyncio.sleep(self.recovery_interval)
            try:
                await self.queue.recover_stale()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Queue recovery error: {e}")

    async def process_next(self) -> bool:
        """Claims and runs one queued job. Returns False when nothing was ready."""
        entry = await self.queue.claim_next()
        if entry is None:
            return False

        try:
            await self._execute(entry)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = describe_error(e)
            logger.error(f"Job {entry.job_id} bookkeeping failed: {message}")
            await self._release(entry, message)
        return True

    async def _release(self, entry: QueueEntry, message: str):
        """Gives a claim back after an unexpected error so it never stays active."""
        try:
            if entry.exhausted:
                await self.store.fail(entry.job_id, message, entry.claim_token)
                await self.queue.mark_failed(entry, message)
                self.stats.failed += 1
                await notify(
                    self.publisher,
                    ProgressEvent(
                        name="job-failed",
                        job_id=entry.job_id,
                        status="failed",
                        error=message,
                    ),
                )
            else:
                delay = compute_backoff(entry.attempts, self.backoff_base)
                await self.queue.retry_later(entry, message, delay)
                self.stats.retried += 1
        except Exception as e:
            logger.error(
                f"Could not release job {entry.job_id}, it is recovered once its lease expires: {e}"
            )

    def _progress_reporter(self, entry: QueueEntry):
        async def report(progress: int):
            stored = await self.store.update_progress(
                entry.job_id, progress, entry.claim_token
            )
            if stored is None:
                return
            await notify(
                self.publisher,
                ProgressEvent(
                    name="job-updated",
                    job_id=entry.job_id,
                    status="processing",
                    progress=stored,
                ),
            )

        return report

    async def _run_attempt(self, job, entry: QueueEntry):
        attempt = self.pipeline.run(job, self._progress_reporter(entry))
        if self.attempt_timeout and self.attempt_timeout > 0:
            return await asyncio.wait_for(attempt, self.attempt_timeout)
        return await attempt

    async def _execute(self, entry: QueueEntry):
        self.stats.processed += 1

        try:
            job = load_job(entry.payload)
        except ValidationError as e:
            message = f"Malformed queue payload: {e}"
            await self.store.fail(entry.job_id, message, entry.claim_token)
            await self.queue.mark_failed(entry, message)
            logger.error(f"Job {entry.job_id} failed: {message}")
            self.stats.failed += 1
            await notify(
                self.publisher,
                ProgressEvent(
                    name="job-failed", job_id=entry.job_id, status="failed", error=message
                ),
            )
            return

        if not await self.store.mark_processing(job.id, entry.attempts, entry.claim_token):
            # Already terminal, nothing left to run
            await self.queue.mark_completed(entry)
            return

        logger.log(
            "WORKER",
            f"Processing {job.kind} job {job.id} ({job.target_url}) - attempt {entry.attempts}/{entry.max_attempts}",
        )
        await notify(
            self.publisher,
            ProgressEvent(
                name="job-updated", job_id=job.id, status="processing", progress=0
            ),
        )

        try:
            result = await self._run_attempt(job, entry)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                message = f"Attempt timed out after {self.attempt_timeout}s"
            else:
                message = describe_error(e)
            await self._handle_failure(entry, job, e, message)
            return

        if not await self.store.complete(job.id, result, entry.claim_token):
            logger.warning(
                f"Job {job.id} is owned by another claim, dropping the result of attempt {entry.attempts}"
            )
            return

        await self.queue.mark_completed(entry)
        self.stats.completed += 1
        logger.log("WORKER", f"Completed {job.kind} job {job.id}: {result}")
        await notify(
            self.publisher,
            ProgressEvent(
                name="job-completed",
                job_id=job.id,
                status="completed",
                progress=100,
                result=result,
            ),
        )

    async def _handle_failure(self, entry: QueueEntry, job, error: Exception, message: str):
        if is_retryable(error) and not entry.exhausted:
            delay = compute_backoff(entry.attempts, self.backoff_base)
            await self.queue.retry_later(entry, message, delay)
            self.stats.retried += 1
            logger.warning(
                f"Job {job.id} attempt {entry.attempts}/{entry.max_attempts} failed: {message} - retrying in {delay:g}s"
            )
            await notify(
                self.publisher,
                ProgressEvent(
                    name="job-updated",
                    job_id=job.id,
                    status="processing",
                    error=message,
                ),
            )
            return

        if not await self.store.fail(job.id, message, entry.claim_token):
            logger.warning(f"Job {job.id} is owned by another claim, not failing it")
            return

        await self.queue.mark_failed(entry, message)
        self.stats.failed += 1
        logger.error(f"Job {job.id} failed: {message}")
        await notify(
            self.publisher,
            ProgressEvent(name="job-failed", job_id=job.id, status="failed", error=message),
        )
