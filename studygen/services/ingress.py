"""
Ingress paths into the generation pipeline: document upload and topic-only.

Validation happens before any job or package side effect; a rejected request
raises an IngressValidationError and leaves the job record untouched. Once a
request is accepted, every failure ends the job as FAILED (written by
``run_generation_job`` / ``_record_failure``) and the error is re-raised.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from studygen.config import Settings, get_settings
from studygen.exceptions import (
    DocumentMismatchError,
    EmptyUploadError,
    JobMetadataMissingError,
    JobNotFoundError,
    JobOwnershipError,
    MissingJobIdError,
)
from studygen.middleware.auth import check_ownership
from studygen.schemas.study_job import (
    JobMetadata,
    JobState,
    JobStatusUpdate,
    SourceDescriptor,
    STATE_PROGRESS,
    TERMINAL_STATES,
)
from studygen.services.artifact_store import new_artifact_id
from studygen.services.blob_store import BlobStore
from studygen.services.job_store import JobStore, job_key, source_content_key
from studygen.services.status_reporter import JobStatusReporter
from studygen.services.study_generation import GenerationRequest, GenerationResult, StudyGenerationPipeline
from studygen.services.text_extractor import extract_text
from studygen.utils.logger import logger
from studygen.utils.metrics import inc
from studygen.utils.slug import slugify

PDF_CONTENT_TYPE = "application/pdf"

# Cancel events for jobs running in this process, keyed by job id
_cancel_events: Dict[str, asyncio.Event] = {}


@dataclass
class AcceptedJob:
    """A job that passed validation and is ready for the pipeline."""
    job_id: str
    reporter: JobStatusReporter
    request: GenerationRequest


class StudyJobService:
    def __init__(
        self,
        job_store: JobStore,
        blob_store: BlobStore,
        pipeline: StudyGenerationPipeline,
        settings: Optional[Settings] = None,
    ):
        self.job_store = job_store
        self.blob_store = blob_store
        self.pipeline = pipeline
        self.settings = settings or get_settings()

    def _reporter(self, job_id: str, metadata: JobMetadata, progress: int) -> JobStatusReporter:
        return JobStatusReporter(
            self.job_store,
            job_id,
            metadata,
            ttl_seconds=self.settings.job_ttl_seconds,
            initial_progress=progress,
        )

    # ------------------------------------------------------------------
    # Upload path
    # ------------------------------------------------------------------

    async def init_upload(
        self,
        user_id: str,
        file_name: str,
        topic: str,
        question_count: int = 10,
        flashcard_count: int = 15,
    ) -> Dict[str, str]:
        job_id = new_artifact_id()
        document_id = new_artifact_id()
        metadata = JobMetadata(
            user_id=user_id,
            topic=topic,
            topic_slug=slugify(topic),
            question_count=question_count or 10,
            flashcard_count=flashcard_count or 15,
            document_id=document_id,
            source_key=f"{user_id}/{document_id}.pdf",
        )

        await self._reporter(job_id, metadata, 0).report(
            JobStatusUpdate(
                status=JobState.PENDING,
                progress=STATE_PROGRESS[JobState.PENDING],
                message="Awaiting file upload...",
            )
        )
        logger.info(
            "ingress.upload_initialized",
            extra={"job_id": job_id, "document_id": document_id, "topic": topic, "label": file_name},
        )
        return {
            "jobId": job_id,
            "documentId": document_id,
            "uploadUrl": f"/api/study/upload/{document_id}",
        }

    async def _validate_upload(
        self, job_id: Optional[str], document_id: str, user_id: str, data: bytes
    ) -> JobMetadata:
        if not job_id:
            raise MissingJobIdError()

        record = await self.job_store.get(job_key(job_id))
        if record is None:
            raise JobNotFoundError(job_id)

        raw_metadata = record.get("metadata")
        if not raw_metadata:
            raise JobMetadataMissingError()
        metadata = JobMetadata.model_validate(raw_metadata)

        if metadata.user_id != user_id:
            raise JobOwnershipError()
        if metadata.document_id != document_id:
            raise DocumentMismatchError()
        if not data:
            raise EmptyUploadError()

        return metadata

    async def accept_upload(
        self,
        job_id: Optional[str],
        document_id: str,
        user_id: str,
        data: bytes,
        file_name: Optional[str] = None,
    ) -> AcceptedJob:
        """
        Validate the upload, store the source document and extract its text.

        Rejections raise before anything is written. After validation, a
        failure to store or extract ends the job as FAILED.
        """
        metadata = await self._validate_upload(job_id, document_id, user_id, data)
        reporter = self._reporter(job_id, metadata, STATE_PROGRESS[JobState.PENDING])

        try:
            source_key = metadata.source_key or f"{user_id}/{document_id}.pdf"
            await self.blob_store.put(source_key, data, PDF_CONTENT_TYPE)

            await reporter.report(
                JobStatusUpdate(
                    status=JobState.UPLOADED,
                    progress=STATE_PROGRESS[JobState.UPLOADED],
                    message="File uploaded. Processing...",
                )
            )
            await reporter.report(
                JobStatusUpdate(
                    status=JobState.PARSING,
                    progress=STATE_PROGRESS[JobState.PARSING],
                    message="Extracting text from document...",
                )
            )

            extracted = await asyncio.to_thread(extract_text, data, file_name)
            content = extracted[: self.settings.max_extracted_text_chars]

            await self.job_store.put(
                source_content_key(document_id),
                {
                    "documentId": document_id,
                    "topic": metadata.topic,
                    "topicSlug": metadata.topic_slug,
                    "extractedAt": datetime.now(timezone.utc).isoformat(),
                    "textLength": len(extracted),
                    "truncatedLength": len(content),
                    "content": content,
                },
                self.settings.source_cache_ttl_seconds,
            )
        except BaseException as e:
            await self._record_failure(reporter, e)
            raise

        logger.info(
            "ingress.upload_accepted",
            extra={"job_id": job_id, "document_id": document_id, "length": len(content)},
        )
        request = GenerationRequest(
            user_id=user_id,
            topic=metadata.topic,
            topic_slug=metadata.topic_slug,
            question_count=metadata.question_count,
            flashcard_count=metadata.flashcard_count,
            source_type="pdf",
            source_content=content,
            source_path=source_key,
        )
        return AcceptedJob(job_id=job_id, reporter=reporter, request=request)

    async def complete_upload(
        self,
        job_id: Optional[str],
        document_id: str,
        user_id: str,
        data: bytes,
        file_name: Optional[str] = None,
    ) -> GenerationResult:
        accepted = await self.accept_upload(job_id, document_id, user_id, data, file_name)
        return await self.run_generation_job(accepted)

    # ------------------------------------------------------------------
    # Topic-only path
    # ------------------------------------------------------------------

    async def start_topic_job(
        self,
        user_id: str,
        topic: str,
        question_count: int = 10,
        flashcard_count: int = 15,
        source: Optional[SourceDescriptor] = None,
    ) -> AcceptedJob:
        """Create a PENDING job for topic-only generation. Run it with ``run_generation_job``."""
        job_id = new_artifact_id()
        source = source or SourceDescriptor(type="topic")
        metadata = JobMetadata(
            user_id=user_id,
            topic=topic,
            topic_slug=slugify(topic),
            question_count=question_count,
            flashcard_count=flashcard_count,
            source=SourceDescriptor(type=source.type, path=source.path),
        )
        reporter = self._reporter(job_id, metadata, 0)
        await reporter.report(
            JobStatusUpdate(
                status=JobState.PENDING,
                progress=STATE_PROGRESS[JobState.PENDING],
                message="Queued for generation...",
            )
        )

        request = GenerationRequest(
            user_id=user_id,
            topic=topic,
            topic_slug=metadata.topic_slug,
            question_count=question_count,
            flashcard_count=flashcard_count,
            source_type="pdf" if source.type == "pdf" else "ai",
            source_content=source.content,
            source_path=source.path,
        )
        logger.info("ingress.topic_job_created", extra={"job_id": job_id, "topic": topic})
        return AcceptedJob(job_id=job_id, reporter=reporter, request=request)

    # ------------------------------------------------------------------
    # Running and failing jobs
    # ------------------------------------------------------------------

    async def run_generation_job(
        self, job: AcceptedJob, cancel_event: Optional[asyncio.Event] = None
    ) -> GenerationResult:
        """
        Run the pipeline for an accepted job. Writes FAILED and re-raises on any
        error, task cancellation included.

        Without an explicit ``cancel_event`` the job registers its own, so
        ``cancel_job`` can stop it between stages.
        """
        if cancel_event is None:
            cancel_event = asyncio.Event()
        _cancel_events[job.job_id] = cancel_event

        try:
            result = await self.pipeline.run(job.request, job.reporter, cancel_event=cancel_event)
        except BaseException as e:
            await self._record_failure(job.reporter, e)
            raise
        finally:
            _cancel_events.pop(job.job_id, None)

        inc("jobs.completed")
        logger.info("job.completed", extra={"job_id": job.job_id, "package_id": result.package_id})
        return result

    async def cancel_job(self, job_id: str, user_id: str) -> bool:
        """
        Ask a running job to stop before its next stage.

        Returns False when the job already finished or is not running in this
        process. Unknown jobs and other users' jobs raise like an upload would.
        """
        record = await self.job_store.get(job_key(job_id))
        if record is None:
            raise JobNotFoundError(job_id)

        owner = (record.get("metadata") or {}).get("userId")
        if not check_ownership(owner, user_id):
            raise JobOwnershipError()

        cancel_event = _cancel_events.get(job_id)
        if record.get("status") in TERMINAL_STATES or cancel_event is None:
            logger.info("job.cancel_ignored", extra={"job_id": job_id, "status": record.get("status")})
            return False

        cancel_event.set()
        logger.info("job.cancel_requested", extra={"job_id": job_id, "user_id": user_id})
        return True

    async def _record_failure(self, reporter: JobStatusReporter, error: BaseException) -> None:
        message = str(error) or type(error).__name__
        inc("jobs.failed")
        logger.error(
            "job.failed",
            extra={"job_id": reporter.job_id, "error": message[:200], "error_type": type(error).__name__},
        )
        try:
            await reporter.fail(message)
        except Exception as write_error:
            # The caller re-raises the original error
            logger.error(
                "job.failure_record_failed",
                extra={"job_id": reporter.job_id, "error": str(write_error)[:200]},
            )

    async def get_job_record(self, job_id: str) -> Optional[Dict[str, Any]]:
        return await self.job_store.get(job_key(job_id))
