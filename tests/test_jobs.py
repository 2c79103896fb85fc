import asyncio

import pytest

from conftest import FakeClock, SleepRecorder
from recengine.core.errors import JobQueueFull, ValidationError
from recengine.models.results import JobStatus
from recengine.services.jobs import JobRunner, TokenBucket


def test_backoff_schedule():
    runner = JobRunner(backoff_base=2, backoff_max=60)
    assert [runner.backoff_delay(a) for a in range(1, 8)] == [2, 4, 8, 16, 32, 60, 60]


def test_job_retries_until_success():
    async def run():
        sleep = SleepRecorder()
        runner = JobRunner(concurrency=2, max_attempts=5, sleep=sleep)
        attempts = []

        async def flaky(payload):
            attempts.append(payload["n"])
            if len(attempts) < 3:
                raise RuntimeError("provider hiccup")
            return payload["n"] * 2

        runner.register("double", flaky)
        await runner.start()
        job_id = runner.enqueue("double", {"n": 21})
        record = await runner.wait(job_id, timeout=5)
        await runner.stop()

        assert record.status is JobStatus.SUCCEEDED
        assert record.result == 42
        assert record.attempts == 3
        assert record.finished_at is not None
        assert sleep.delays == [2, 4]

    asyncio.run(run())


def test_permanent_failure_is_recorded_and_reported():
    async def run():
        finished = []
        runner = JobRunner(max_attempts=3, sleep=SleepRecorder(), on_complete=finished.append)

        async def broken(payload):
            raise ValueError("bad payload")

        runner.register("broken", broken)
        await runner.start()
        job_id = runner.enqueue("broken", {})
        record = await runner.wait(job_id, timeout=5)

        # the runner survives and keeps serving jobs
        async def ok(payload):
            return "done"

        runner.register("ok", ok)
        second = await runner.wait(runner.enqueue("ok", {}), timeout=5)
        await runner.stop()

        assert record.status is JobStatus.FAILED
        assert record.attempts == 3
        assert "bad payload" in record.last_error
        assert second.status is JobStatus.SUCCEEDED
        assert [r.job_id for r in finished] == [job_id, second.job_id]

    asyncio.run(run())


def test_enqueue_returns_immediately_and_status_is_queryable():
    async def run():
        runner = JobRunner(sleep=SleepRecorder())

        async def handler(payload):
            return None

        runner.register("noop", handler)
        job_id = runner.enqueue("noop", {"x": 1})
        assert runner.get_status(job_id).status is JobStatus.QUEUED
        assert runner.get_status("missing") is None

        await runner.start()
        await runner.join()
        await runner.stop()
        assert runner.get_status(job_id).done

    asyncio.run(run())


def test_unknown_job_type_and_full_queue_are_rejected():
    async def run():
        runner = JobRunner(queue_size=1, sleep=SleepRecorder())

        async def handler(payload):
            return None

        runner.register("noop", handler)
        with pytest.raises(ValidationError):
            runner.enqueue("other", {})
        runner.enqueue("noop", {})
        with pytest.raises(JobQueueFull):
            runner.enqueue("noop", {})

    asyncio.run(run())


def test_concurrency_is_bounded():
    async def run():
        runner = JobRunner(concurrency=2, sleep=SleepRecorder())
        active = 0
        peak = 0

        async def handler(payload):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        runner.register("work", handler)
        await runner.start()
        for _ in range(6):
            runner.enqueue("work", {})
        await runner.join()
        await runner.stop()
        assert peak == 2

    asyncio.run(run())


def test_token_bucket_paces_dispatch():
    async def run():
        clock = FakeClock()
        sleep = SleepRecorder(clock)
        bucket = TokenBucket(rate=2, capacity=1, clock=clock, sleep=sleep)
        await bucket.acquire()
        await bucket.acquire()
        await bucket.acquire()
        assert sleep.delays == [0.5, 0.5]

    asyncio.run(run())
