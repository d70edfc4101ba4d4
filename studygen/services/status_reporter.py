"""
Status reporting for a single generation job.

Each report overwrites the job's record in the job store with a complete,
self-describing record: the update merged with the job id and the job's
immutable metadata. Readers never need to combine partial writes.
"""
from typing import Optional, Protocol, Union

from studygen.schemas.study_job import (
    JobMetadata,
    JobRecord,
    JobState,
    JobStatusUpdate,
    TERMINAL_STATES,
)
from studygen.services.job_store import JobStore, job_key
from studygen.utils.logger import logger


class StatusReporter(Protocol):
    async def report(self, update: JobStatusUpdate) -> None: ...


class JobStatusReporter:
    """Writes merged job records for one job id, keeping progress non-decreasing."""

    def __init__(
        self,
        job_store: JobStore,
        job_id: str,
        metadata: Optional[JobMetadata],
        ttl_seconds: int = 3600,
        initial_progress: int = 0,
    ):
        self.job_store = job_store
        self.job_id = job_id
        self.metadata = metadata
        self.ttl_seconds = ttl_seconds
        self.last_progress = initial_progress
        self.last_status: Optional[JobState] = None

    async def report(self, update: Union[JobStatusUpdate, dict]) -> None:
        if isinstance(update, dict):
            update = JobStatusUpdate.model_validate(update)

        # One terminal record per job; later reports are dropped
        if self.is_terminal:
            logger.warning(
                "job.status_after_terminal",
                extra={"job_id": self.job_id, "status": update.status, "label": self.last_status},
            )
            return

        # A poller must never see progress move backwards
        progress = max(update.progress, self.last_progress)

        record = JobRecord(
            job_id=self.job_id,
            metadata=self.metadata,
            status=update.status,
            progress=progress,
            message=update.message,
            result_id=update.result_id if update.status == JobState.COMPLETED else None,
            error=update.error if update.status == JobState.FAILED else None,
        )
        await self.job_store.put(job_key(self.job_id), record.to_record(), self.ttl_seconds)

        self.last_progress = progress
        self.last_status = JobState(update.status)
        logger.info(
            "job.status",
            extra={"job_id": self.job_id, "status": update.status, "progress": progress},
        )

    @property
    def is_terminal(self) -> bool:
        return self.last_status in TERMINAL_STATES

    async def fail(self, error: str) -> None:
        await self.report(
            JobStatusUpdate(status=JobState.FAILED, progress=100, message=error, error=error)
        )
