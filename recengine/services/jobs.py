import asyncio
import inspect
import time
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

from cachetools import TTLCache
from loguru import logger

from recengine.core.config import settings
from recengine.core.errors import JobQueueFull, ValidationError
from recengine.models.records import utcnow
from recengine.models.results import JobRecord, JobStatus

JobHandler = Callable[[dict[str, Any]], Awaitable[Any]]
CompletionCallback = Callable[[JobRecord], Any]


class TokenBucket:
    """Global admission control: at most ``rate`` dispatches per second, bursting to ``capacity``."""

    def __init__(
        self,
        rate: float,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.rate = rate
        self.capacity = capacity or max(1.0, rate)
        self.tokens = self.capacity
        self._clock = clock
        self._sleep = sleep
        self._updated = clock()
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        self.tokens = min(self.capacity, self.tokens + (now - self._updated) * self.rate)
        self._updated = now

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                self._refill()
                if self.tokens >= 1:
                    self.tokens -= 1
                    return
                await self._sleep((1 - self.tokens) / self.rate)


class JobRunner:
    """
    Bounded pool of asyncio workers for derived-data jobs (e.g. embeddings).

    ``enqueue`` never waits: it records the job and returns its id. Each job is
    attempted up to ``max_attempts`` times with exponential backoff. A job that
    exhausts its attempts is marked failed, logged, and passed to ``on_complete``
    like any other finished job.
    """

    def __init__(
        self,
        concurrency: int | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        rate_per_second: float | None = None,
        queue_size: int | None = None,
        on_complete: CompletionCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.concurrency = concurrency or settings.JOB_CONCURRENCY
        self.max_attempts = max_attempts or settings.JOB_MAX_ATTEMPTS
        self.backoff_base = backoff_base if backoff_base is not None else settings.JOB_BACKOFF_BASE_SECONDS
        self.backoff_max = backoff_max if backoff_max is not None else settings.JOB_BACKOFF_MAX_SECONDS
        self.on_complete = on_complete
        self._sleep = sleep
        self._bucket = TokenBucket(rate_per_second or settings.JOB_RATE_PER_SECOND, sleep=sleep)
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size or settings.JOB_QUEUE_SIZE)
        self._handlers: dict[str, JobHandler] = {}
        self._jobs: TTLCache = TTLCache(maxsize=settings.JOB_HISTORY_SIZE, ttl=settings.JOB_HISTORY_TTL_SECONDS)
        self._pending: dict[str, JobRecord] = {}
        self._done_events: dict[str, asyncio.Event] = {}
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def register(self, job_type: str, handler: JobHandler) -> None:
        self._handlers[job_type] = handler

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    async def start(self) -> None:
        if self._workers:
            return
        logger.info(f"Starting job runner with {self.concurrency} workers")
        self._workers = [asyncio.create_task(self._worker(i)) for i in range(self.concurrency)]

    async def stop(self) -> None:
        if not self._workers:
            return
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Job runner stopped")

    def enqueue(self, job_type: str, payload: dict[str, Any]) -> str:
        if job_type not in self._handlers:
            raise ValidationError(f"Unknown job type '{job_type}'")

        record = JobRecord(job_id=uuid.uuid4().hex, job_type=job_type, payload=dict(payload))
        try:
            self._queue.put_nowait(record.job_id)
        except asyncio.QueueFull:
            logger.warning(f"Job queue full, rejecting {job_type} job")
            raise JobQueueFull(f"Job queue is full ({self._queue.maxsize})")

        self._pending[record.job_id] = record
        self._jobs[record.job_id] = record
        self._done_events[record.job_id] = asyncio.Event()
        logger.debug(f"Enqueued {job_type} job {record.job_id}")
        return record.job_id

    def get_status(self, job_id: str) -> JobRecord | None:
        return self._pending.get(job_id) or self._jobs.get(job_id)

    async def wait(self, job_id: str, timeout: float | None = None) -> JobRecord | None:
        """Wait until a job finishes; returns its record, or None for an unknown id."""
        event = self._done_events.get(job_id)
        if event is not None:
            await asyncio.wait_for(event.wait(), timeout=timeout)
        return self.get_status(job_id)

    async def join(self) -> None:
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                record = self._pending.get(job_id)
                if record is not None:
                    await self._run(record)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Worker {index} crashed while running job {job_id}: {e}")
            finally:
                self._queue.task_done()

    async def _run(self, record: JobRecord) -> None:
        handler = self._handlers[record.job_type]
        for attempt in range(1, self.max_attempts + 1):
            await self._bucket.acquire()
            record.status = JobStatus.RUNNING
            record.attempts = attempt
            try:
                result = await handler(record.payload)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                record.last_error = f"{type(e).__name__}: {e}"
                if attempt < self.max_attempts:
                    wait_time = self.backoff_delay(attempt)
                    logger.warning(
                        f"Job {record.job_id} ({record.job_type}) failed: {e}. "
                        f"Retrying in {wait_time}s... (Attempt {attempt}/{self.max_attempts})"
                    )
                    await self._sleep(wait_time)
                    continue
                record.status = JobStatus.FAILED
                logger.error(
                    f"Job {record.job_id} ({record.job_type}) permanently failed after {attempt} attempts: "
                    f"{record.last_error}"
                )
            else:
                record.status = JobStatus.SUCCEEDED
                record.result = result
                logger.debug(f"Job {record.job_id} ({record.job_type}) succeeded on attempt {attempt}")
            break

        await self._finish(record)

    async def _finish(self, record: JobRecord) -> None:
        record.finished_at = utcnow()
        self._jobs[record.job_id] = record
        self._pending.pop(record.job_id, None)
        event = self._done_events.pop(record.job_id, None)
        if event is not None:
            event.set()

        if self.on_complete is None:
            return
        try:
            outcome = self.on_complete(record)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Completion callback failed for job {record.job_id}: {e}")
