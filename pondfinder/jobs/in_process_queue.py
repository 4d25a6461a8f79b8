"""In-process job scheduler using asyncio.

Runs at most ``concurrency`` workflows at a time as asyncio tasks in this
process; job state lives in a JobStore so pollers see consistent records.
Pending jobs are promoted oldest-first whenever a job is submitted or a
running job ends. No external dependencies (Redis, Celery) needed.

Cancellation is cooperative: ``cancel`` only records the cancelled status.
A running workflow notices on its next progress update and stops; its return
value is then discarded.
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set

from loguru import logger

from pondfinder.jobs.dispatcher import JobDispatcher
from pondfinder.jobs.models import (
    CANCELLED_MESSAGE,
    JobRecord,
    JobStatus,
    JobType,
    utcnow,
)
from pondfinder.jobs.store import InMemoryJobStore, JobStore

ORPHANED_MESSAGE = "Interrupted by service restart"
DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100


class JobContext:
    """Handle a running workflow uses to report progress and check for cancel."""

    def __init__(self, job: JobRecord, store: JobStore):
        self.job = job
        self._store = store
        self._cancelled = False

    @property
    def job_id(self) -> str:
        return self.job.id

    @property
    def params(self) -> Dict[str, Any]:
        return self.job.params

    async def update_progress(self, progress: int, message: str) -> bool:
        """Persist progress (clamped to 0-100, never decreasing).

        Returns False, and writes nothing, once the job has been cancelled.
        The workflow must stop when it gets False.
        """
        if self._cancelled:
            return False
        progress = min(100, max(0, int(progress)))
        updated = await self._store.update_progress(self.job.id, progress, message)
        if updated is None:
            self._cancelled = True
            return False
        self.job = updated
        return True

    async def is_cancelled(self) -> bool:
        if not self._cancelled:
            current = await self._store.get(self.job.id)
            self._cancelled = current is None or current.status == JobStatus.CANCELLED
        return self._cancelled


Workflow = Callable[[JobContext, Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


class InProcessQueue(JobDispatcher):
    """Concurrency-limited async job scheduler."""

    def __init__(
        self,
        workflows: Mapping[JobType, Workflow],
        store: Optional[JobStore] = None,
        concurrency: int = 2,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._workflows = dict(workflows)
        self._store = store or InMemoryJobStore()
        self._concurrency = concurrency
        self._running_count = 0
        self._tasks: Set[asyncio.Task] = set()
        self._promote_lock = asyncio.Lock()
        self._accepting = False

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def running_count(self) -> int:
        return self._running_count

    async def submit(self, job_type: JobType, params: Dict[str, Any], owner_id: str) -> JobRecord:
        job = await self._store.create(
            JobRecord(type=JobType(job_type), params=dict(params or {}), owner_id=owner_id)
        )
        logger.info(f"Job {job.id} ({job.type.value}) queued for {owner_id}")
        await self._promote()
        return await self._store.get(job.id) or job

    async def get_status(self, job_id: str) -> Optional[JobRecord]:
        return await self._store.get(job_id)

    async def list_jobs(self, owner_id: str, limit: int = DEFAULT_LIST_LIMIT) -> List[JobRecord]:
        limit = min(max(1, limit), MAX_LIST_LIMIT)
        return await self._store.list_for_owner(owner_id, limit)

    async def cancel(self, job_id: str, owner_id: str) -> Optional[JobRecord]:
        job = await self._store.get(job_id)
        if job is None or job.owner_id != owner_id:
            return None
        cancelled = await self._store.transition(
            job_id,
            [JobStatus.PENDING, JobStatus.RUNNING],
            status=JobStatus.CANCELLED,
            status_message=CANCELLED_MESSAGE,
            completed_at=utcnow(),
        )
        if cancelled is not None:
            logger.info(f"Job {job_id} cancelled (was {job.status.value})")
        return cancelled

    async def start(self) -> None:
        """Recover from a previous run, then start any pending jobs.

        Jobs left ``running`` by a crashed process cannot be resumed; they are
        marked failed so pollers get a terminal state.
        """
        orphaned = await self._store.fail_orphaned_running(ORPHANED_MESSAGE)
        if orphaned:
            logger.warning(f"Marked {orphaned} orphaned running job(s) as failed")
        self._accepting = True
        await self._promote()

    async def stop(self) -> None:
        self._accepting = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no workflow is running (newly promoted ones included)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def purge_expired(self, retention: timedelta) -> int:
        return await self._store.purge_expired(retention)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _promote(self) -> None:
        """Fill free slots with the oldest pending jobs."""
        if not self._accepting:
            return
        async with self._promote_lock:
            while self._running_count < self._concurrency:
                job = await self._store.claim_next_pending()
                if job is None:
                    return
                self._running_count += 1
                logger.info(f"Job {job.id} ({job.type.value}) started")
                task = asyncio.create_task(self._run(job), name=f"job-{job.id}")
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def _run(self, job: JobRecord) -> None:
        try:
            await self._execute(job)
        finally:
            self._running_count -= 1
            await self._promote()

    async def _execute(self, job: JobRecord) -> None:
        ctx = JobContext(job, self._store)
        try:
            workflow = self._workflows.get(job.type)
            if workflow is None:
                raise ValueError(f"Unknown job type: {job.type.value}")
            result = await workflow(ctx, job.params)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Job {job.id} failed")
            message = f"{type(e).__name__}: {e}"
            # CAS from running: a cancellation recorded meanwhile stays authoritative
            await self._store.transition(
                job.id,
                [JobStatus.RUNNING],
                status=JobStatus.FAILED,
                error=message,
                status_message=f"Failed: {message}",
                completed_at=utcnow(),
            )
            return

        if result is None:
            if not await ctx.is_cancelled():
                logger.error(f"Job {job.id} workflow returned no result")
                await self._store.transition(
                    job.id,
                    [JobStatus.RUNNING],
                    status=JobStatus.FAILED,
                    error="Workflow returned no result",
                    status_message="Failed: Workflow returned no result",
                    completed_at=utcnow(),
                )
            return

        summary = result.get("summary") or "Completed"
        completed = await self._store.transition(
            job.id,
            [JobStatus.RUNNING],
            status=JobStatus.COMPLETED,
            progress=100,
            status_message=summary,
            result=result,
            completed_at=utcnow(),
        )
        if completed is None:
            logger.info(f"Job {job.id} finished after cancellation; result discarded")
        else:
            logger.success(f"Job {job.id} completed: {summary}")
