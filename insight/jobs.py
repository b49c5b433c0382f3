"""
FIFO queue of paper analysis jobs.

Jobs run strictly one at a time in submission order, which keeps provider
load and rate limits predictable during batch submissions. ``enqueue``,
``cancel`` and ``retry`` are plain (non-async) methods: on a single event
loop they can never interleave with a state transition of the drain loop.

Status flow
───────────
queued ──▶ analyzing ──▶ completed
   │            └──────▶ error   (provider failure or cancellation)
   └── cancel() removes the job without dispatching
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Iterable
from typing import Optional

from insight.analysis import STOPPED_MESSAGE, PaperAnalyst, extract_title
from insight.cancellation import CancellationToken
from insight.errors import AbortedError
from insight.history import HistoryStore
from insight.models import (
    AnalysisJob,
    FileAttachment,
    HistoryItem,
    JobStatus,
    QueueProgress,
)

logger = logging.getLogger(__name__)


class JobQueue:
    """Single-concurrency analysis queue.

    Must be used from within a running event loop: the first ``enqueue``
    starts a drain task that lives until the queue is empty.
    """

    def __init__(
        self,
        analyst: PaperAnalyst,
        history: Optional[HistoryStore] = None,
    ) -> None:
        self.analyst = analyst
        self.history = history
        self._jobs: dict[str, AnalysisJob] = {}
        self._pending: deque[str] = deque()
        self._tokens: dict[str, CancellationToken] = {}
        self._drain_task: Optional[asyncio.Task] = None
        self._processed = 0
        self._total = 0

    # ── Inspection ─────────────────────────────────────────────────────

    @property
    def jobs(self) -> list[AnalysisJob]:
        """All known jobs in submission order."""
        return list(self._jobs.values())

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        return self._jobs.get(job_id)

    @property
    def progress(self) -> QueueProgress:
        return QueueProgress(processed=self._processed, total=self._total)

    @property
    def busy(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    # ── Submission ─────────────────────────────────────────────────────

    def enqueue(
        self,
        query: str,
        attachment: Optional[FileAttachment] = None,
        enable_search: bool = True,
    ) -> str:
        """Queue one analysis and return its job id."""
        job = AnalysisJob(
            id=uuid.uuid4().hex,
            query=query,
            attachment=attachment,
            enable_search=enable_search,
        )
        self._jobs[job.id] = job
        self._pending.append(job.id)
        self._total += 1
        logger.info("Queued job id=%s query=%r (%d pending)", job.id, query, len(self._pending))
        self._ensure_draining()
        return job.id

    def enqueue_batch(self, queries: Iterable[str], enable_search: bool = True) -> list[str]:
        """Queue several queries; blank lines are skipped."""
        return [
            self.enqueue(q.strip(), enable_search=enable_search)
            for q in queries
            if q and q.strip()
        ]

    def cancel(self, job_id: str) -> bool:
        """Cancel a job.

        A queued job is removed outright and never dispatched. An in-flight
        job has its token signaled and finishes as ``error``. Returns False
        for unknown or already-finished jobs.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return False

        if job.status is JobStatus.QUEUED:
            self._pending.remove(job_id)
            del self._jobs[job_id]
            self._total -= 1
            logger.info("Removed queued job id=%s", job_id)
            return True

        token = self._tokens.get(job_id)
        if job.status is JobStatus.ANALYZING and token is not None:
            token.cancel(STOPPED_MESSAGE)
            logger.info("Cancelling in-flight job id=%s", job_id)
            return True
        return False

    def retry(self, job_id: str) -> bool:
        """Re-queue a failed job under the same id with fresh state."""
        job = self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.ERROR:
            return False

        job.status = JobStatus.QUEUED
        job.result = None
        job.error_message = None
        self._pending.append(job_id)
        self._total += 1
        logger.info("Retrying job id=%s (attempt %d)", job_id, job.attempts + 1)
        self._ensure_draining()
        return True

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        while self._drain_task is not None and not self._drain_task.done():
            await self._drain_task

    # ── Drain loop ─────────────────────────────────────────────────────

    def _ensure_draining(self) -> None:
        if not self.busy:
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending:
            job_id = self._pending.popleft()
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.QUEUED:
                continue
            await self._run(job)

    async def _run(self, job: AnalysisJob) -> None:
        token = CancellationToken()
        self._tokens[job.id] = token
        job.status = JobStatus.ANALYZING
        job.attempts += 1
        logger.info("Analyzing job id=%s query=%r", job.id, job.query)

        try:
            result = await self.analyst.analyze_paper(
                job.query,
                token=token,
                attachment=job.attachment,
                enable_search=job.enable_search,
            )
        except AbortedError as exc:
            job.status = JobStatus.ERROR
            job.error_message = str(exc)
            logger.info("Job id=%s stopped by user", job.id)
        except Exception as exc:
            job.status = JobStatus.ERROR
            job.error_message = str(exc) or exc.__class__.__name__
            logger.exception("Job id=%s failed", job.id)
        else:
            job.status = JobStatus.COMPLETED
            job.result = result
            job.history_id = self._record(job)
            logger.info("Job id=%s completed", job.id)
        finally:
            self._tokens.pop(job.id, None)
            self._processed += 1

    def _record(self, job: AnalysisJob) -> Optional[str]:
        """Write a completed job to history, if a store is attached."""
        if self.history is None or job.result is None:
            return None
        item = HistoryItem(
            id=job.id,
            title=extract_title(job.result.markdown, fallback=job.query or "Untitled paper"),
            query=job.query,
            analysis=job.result,
        )
        try:
            return self.history.save(item)
        except Exception:
            logger.exception("Could not save job id=%s to history", job.id)
            return None


# ── Process-wide queue ─────────────────────────────────────────────────────

_queue: Optional[JobQueue] = None


def get_job_queue(
    analyst: Optional[PaperAnalyst] = None,
    history: Optional[HistoryStore] = None,
) -> JobQueue:
    """Return the process-wide queue, creating it on first use."""
    global _queue
    if _queue is None:
        _queue = JobQueue(analyst or PaperAnalyst(), history=history)
    return _queue
