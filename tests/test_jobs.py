"""Tests for insight/jobs.py — FIFO job queue with cancellation."""

from __future__ import annotations

import asyncio

import pytest

from insight.analysis import STOPPED_MESSAGE
from insight.errors import AbortedError, AuthError
from insight.history import SqliteHistoryStore
from insight.jobs import JobQueue
from insight.models import AnalysisResult, JobStatus


class FakeAnalyst:
    """Records the order of analyses and the peak number running at once."""

    def __init__(self, delay: float = 0.01, fail_on: frozenset[str] = frozenset()) -> None:
        self.delay = delay
        self.fail_on = fail_on
        self.order: list[str] = []
        self.running = 0
        self.peak = 0
        self.started = asyncio.Event()
        self.queue: JobQueue | None = None
        self.analyzing_snapshots: list[int] = []

    async def analyze_paper(self, query, token=None, attachment=None, enable_search=True):
        self.order.append(query)
        self.running += 1
        self.peak = max(self.peak, self.running)
        if self.queue is not None:
            self.analyzing_snapshots.append(
                sum(1 for j in self.queue.jobs if j.status is JobStatus.ANALYZING)
            )
        self.started.set()
        try:
            await token.run(asyncio.sleep(self.delay))
        except AbortedError as exc:
            raise AbortedError(STOPPED_MESSAGE) from exc
        finally:
            self.running -= 1
        if query in self.fail_on:
            raise AuthError("401 for " + query)
        return AnalysisResult(markdown=f"Title: {query}\nbody")


def make_queue(analyst, history=None) -> JobQueue:
    queue = JobQueue(analyst, history=history)
    analyst.queue = queue
    return queue


class TestOrdering:
    @pytest.mark.asyncio
    async def test_fifo_and_single_concurrency(self):
        analyst = FakeAnalyst()
        queue = make_queue(analyst)

        ids = [queue.enqueue(q) for q in ("first", "second", "third")]
        await queue.join()

        assert analyst.order == ["first", "second", "third"]
        assert analyst.peak == 1
        assert analyst.analyzing_snapshots == [1, 1, 1]
        assert [queue.get(i).status for i in ids] == [JobStatus.COMPLETED] * 3
        assert queue.progress.processed == 3
        assert queue.progress.total == 3

    @pytest.mark.asyncio
    async def test_batch_skips_blank_lines(self):
        analyst = FakeAnalyst(delay=0)
        queue = make_queue(analyst)

        ids = queue.enqueue_batch(["a", "  ", "", "b "])
        await queue.join()

        assert len(ids) == 2
        assert analyst.order == ["a", "b"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_job_does_not_stop_siblings(self):
        analyst = FakeAnalyst(delay=0, fail_on=frozenset({"bad"}))
        queue = make_queue(analyst)

        good1, bad, good2 = (queue.enqueue(q) for q in ("ok1", "bad", "ok2"))
        await queue.join()

        assert queue.get(bad).status is JobStatus.ERROR
        assert "401" in queue.get(bad).error_message
        assert queue.get(good1).status is JobStatus.COMPLETED
        assert queue.get(good2).status is JobStatus.COMPLETED
        assert queue.progress.processed == 3

    @pytest.mark.asyncio
    async def test_retry_reuses_id_with_fresh_state(self):
        analyst = FakeAnalyst(delay=0, fail_on=frozenset({"flaky"}))
        queue = make_queue(analyst)

        job_id = queue.enqueue("flaky")
        await queue.join()
        assert queue.get(job_id).status is JobStatus.ERROR

        analyst.fail_on = frozenset()
        assert queue.retry(job_id) is True
        assert queue.get(job_id).error_message is None
        await queue.join()

        job = queue.get(job_id)
        assert job.status is JobStatus.COMPLETED
        assert job.attempts == 2

    @pytest.mark.asyncio
    async def test_retry_refused_for_completed_job(self):
        queue = make_queue(FakeAnalyst(delay=0))
        job_id = queue.enqueue("x")
        await queue.join()
        assert queue.retry(job_id) is False


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_queued_job_never_dispatches(self):
        analyst = FakeAnalyst(delay=0.05)
        queue = make_queue(analyst)

        queue.enqueue("running")
        queued = queue.enqueue("queued")
        queue.enqueue("after")
        await analyst.started.wait()

        assert queue.cancel(queued) is True
        await queue.join()

        assert "queued" not in analyst.order
        assert queue.get(queued) is None
        assert analyst.order == ["running", "after"]
        assert queue.progress.total == 2

    @pytest.mark.asyncio
    async def test_cancel_in_flight_job_marks_error_and_continues(self):
        analyst = FakeAnalyst(delay=30)
        queue = make_queue(analyst)

        running = queue.enqueue("slow")
        await analyst.started.wait()
        analyst.delay = 0
        sibling = queue.enqueue("next")

        assert queue.cancel(running) is True
        await asyncio.wait_for(queue.join(), timeout=5)

        assert queue.get(running).status is JobStatus.ERROR
        assert queue.get(running).error_message == STOPPED_MESSAGE
        assert queue.get(sibling).status is JobStatus.COMPLETED
        assert queue.progress.processed == 2

    @pytest.mark.asyncio
    async def test_cancel_unknown_or_finished(self):
        queue = make_queue(FakeAnalyst(delay=0))
        job_id = queue.enqueue("x")
        await queue.join()

        assert queue.cancel("missing") is False
        assert queue.cancel(job_id) is False


class TestHistory:
    @pytest.mark.asyncio
    async def test_completed_job_written_to_history(self, tmp_path):
        store = SqliteHistoryStore(tmp_path / "h.db")
        queue = make_queue(FakeAnalyst(delay=0), history=store)

        job_id = queue.enqueue("Attention Is All You Need")
        await queue.join()

        job = queue.get(job_id)
        assert job.history_id == job_id
        item = store.get_by_id(job_id)
        assert item.title == "Attention Is All You Need"
        assert item.analysis.markdown.startswith("Title:")
