"""Job persistence.

The scheduler keeps all job state in a JobStore so that get/list/cancel see
the same records the worker tasks update. Every status change goes through a
compare-and-set on the current status, which is what keeps a cancellation
from being overwritten by a workflow that finishes a moment later.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from pondfinder.jobs.models import JobRecord, JobStatus, utcnow

STARTING_MESSAGE = "Starting..."

TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobStore(ABC):
    @abstractmethod
    async def create(self, job: JobRecord) -> JobRecord:
        ...

    @abstractmethod
    async def get(self, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    async def list_for_owner(self, owner_id: str, limit: int) -> List[JobRecord]:
        """Newest first."""
        ...

    @abstractmethod
    async def claim_next_pending(self) -> Optional[JobRecord]:
        """Atomically move the oldest pending job to running and return it."""
        ...

    @abstractmethod
    async def transition(
        self, job_id: str, from_statuses: Iterable[JobStatus], **fields: Any
    ) -> Optional[JobRecord]:
        """Apply ``fields`` only if the job's status is in ``from_statuses``."""
        ...

    @abstractmethod
    async def update_progress(self, job_id: str, progress: int, message: str) -> Optional[JobRecord]:
        """Record progress on a running job. None if it is no longer running."""
        ...

    @abstractmethod
    async def fail_orphaned_running(self, message: str) -> int:
        """Mark every running job failed (used at startup). Returns the count."""
        ...

    @abstractmethod
    async def purge_expired(self, retention: timedelta) -> int:
        """Delete finished jobs older than ``retention``. Returns the count."""
        ...


class InMemoryJobStore(JobStore):
    """Process-local store; records are copied in and out."""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, job: JobRecord) -> JobRecord:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
            return job.model_copy(deep=True)

    async def get(self, job_id: str) -> Optional[JobRecord]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_for_owner(self, owner_id: str, limit: int) -> List[JobRecord]:
        owned = [j for j in self._jobs.values() if j.owner_id == owner_id]
        # Stable sort keeps insertion order for identical timestamps
        owned.reverse()
        owned.sort(key=lambda j: j.created_at, reverse=True)
        return [j.model_copy(deep=True) for j in owned[:limit]]

    async def claim_next_pending(self) -> Optional[JobRecord]:
        async with self._lock:
            pending = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
            if not pending:
                return None
            oldest = min(pending, key=lambda j: j.created_at)
            claimed = oldest.model_copy(update={
                "status": JobStatus.RUNNING,
                "started_at": utcnow(),
                "status_message": STARTING_MESSAGE,
            })
            self._jobs[claimed.id] = claimed
            return claimed.model_copy(deep=True)

    async def transition(
        self, job_id: str, from_statuses: Iterable[JobStatus], **fields: Any
    ) -> Optional[JobRecord]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in set(from_statuses):
                return None
            updated = job.model_copy(update=fields)
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    async def update_progress(self, job_id: str, progress: int, message: str) -> Optional[JobRecord]:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return None
            updated = job.model_copy(update={
                "progress": max(job.progress, progress),
                "status_message": message,
            })
            self._jobs[job_id] = updated
            return updated.model_copy(deep=True)

    async def fail_orphaned_running(self, message: str) -> int:
        async with self._lock:
            count = 0
            for job_id, job in list(self._jobs.items()):
                if job.status == JobStatus.RUNNING:
                    self._jobs[job_id] = job.model_copy(update=_orphan_fields(message))
                    count += 1
            return count

    async def purge_expired(self, retention: timedelta) -> int:
        cutoff = utcnow() - retention
        async with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.status in TERMINAL_STATUSES
                and job.completed_at is not None
                and job.completed_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
            return len(expired)


class SupabaseJobStore(JobStore):
    """Jobs table in Supabase (Postgres).

    The supabase client is synchronous, so calls run in the default executor
    to keep the event loop free.
    """

    # Claims lost to another worker before giving up on this pass
    _CLAIM_ATTEMPTS = 5

    def __init__(self, client, table: str = "jobs"):
        self._client = client
        self._table = table

    async def _run(self, fn: Callable[[], Any]) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn)

    def _query(self):
        return self._client.table(self._table)

    async def create(self, job: JobRecord) -> JobRecord:
        row = job.model_dump(mode="json")
        response = await self._run(lambda: self._query().insert(row).execute())
        return _first(response) or job

    async def get(self, job_id: str) -> Optional[JobRecord]:
        response = await self._run(
            lambda: self._query().select("*").eq("id", job_id).limit(1).execute()
        )
        return _first(response)

    async def list_for_owner(self, owner_id: str, limit: int) -> List[JobRecord]:
        response = await self._run(
            lambda: self._query()
            .select("*")
            .eq("owner_id", owner_id)
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [JobRecord.model_validate(row) for row in response.data or []]

    async def claim_next_pending(self) -> Optional[JobRecord]:
        for _ in range(self._CLAIM_ATTEMPTS):
            response = await self._run(
                lambda: self._query()
                .select("id")
                .eq("status", JobStatus.PENDING.value)
                .order("created_at")
                .limit(1)
                .execute()
            )
            if not response.data:
                return None
            job_id = response.data[0]["id"]
            claimed = await self.transition(
                job_id,
                [JobStatus.PENDING],
                status=JobStatus.RUNNING,
                started_at=utcnow(),
                status_message=STARTING_MESSAGE,
            )
            if claimed is not None:
                return claimed
        return None

    async def transition(
        self, job_id: str, from_statuses: Iterable[JobStatus], **fields: Any
    ) -> Optional[JobRecord]:
        values = _serialize_fields(fields)
        statuses = [JobStatus(s).value for s in from_statuses]
        response = await self._run(
            lambda: self._query()
            .update(values)
            .eq("id", job_id)
            .in_("status", statuses)
            .execute()
        )
        return _first(response)

    async def update_progress(self, job_id: str, progress: int, message: str) -> Optional[JobRecord]:
        current = await self.get(job_id)
        if current is None or current.status != JobStatus.RUNNING:
            return None
        return await self.transition(
            job_id,
            [JobStatus.RUNNING],
            progress=max(current.progress, progress),
            status_message=message,
        )

    async def fail_orphaned_running(self, message: str) -> int:
        values = _serialize_fields(_orphan_fields(message))
        response = await self._run(
            lambda: self._query()
            .update(values)
            .eq("status", JobStatus.RUNNING.value)
            .execute()
        )
        return len(response.data or [])

    async def purge_expired(self, retention: timedelta) -> int:
        cutoff = (utcnow() - retention).isoformat()
        response = await self._run(
            lambda: self._query()
            .delete()
            .in_("status", [s.value for s in TERMINAL_STATUSES])
            .lt("completed_at", cutoff)
            .execute()
        )
        return len(response.data or [])


def _orphan_fields(message: str) -> Dict[str, Any]:
    return {
        "status": JobStatus.FAILED,
        "error": message,
        "status_message": f"Failed: {message}",
        "completed_at": utcnow(),
    }


def _serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    values = {}
    for name, value in fields.items():
        if hasattr(value, "isoformat"):
            value = value.isoformat()
        elif isinstance(value, JobStatus):
            value = value.value
        values[name] = value
    return values


def _first(response) -> Optional[JobRecord]:
    if not response.data:
        return None
    return JobRecord.model_validate(response.data[0])
