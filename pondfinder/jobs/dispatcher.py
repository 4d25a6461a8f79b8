"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pondfinder.jobs.models import JobRecord, JobType


class JobDispatcher(ABC):
    """Abstract interface for job dispatching."""

    @abstractmethod
    async def submit(self, job_type: JobType, params: Dict[str, Any], owner_id: str) -> JobRecord:
        """Create a pending job and start it if capacity allows."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> Optional[JobRecord]:
        """Get current state of a job."""
        ...

    @abstractmethod
    async def list_jobs(self, owner_id: str, limit: int = 20) -> List[JobRecord]:
        """Jobs created by ``owner_id``, newest first."""
        ...

    @abstractmethod
    async def cancel(self, job_id: str, owner_id: str) -> Optional[JobRecord]:
        """Cancel a pending or running job. None if not found or already finished."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (recover state, begin processing)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
