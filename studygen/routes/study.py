"""
Study Material Generation API Routes
Upload or topic -> background generation job -> poll status -> fetch materials
"""
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from studygen.config import get_settings
from studygen.database import AsyncSessionLocal, get_db
from studygen.exceptions import IngressValidationError, StudyGenerationError, TextExtractionError
from studygen.middleware.auth import check_ownership, get_user_id
from studygen.models.study_package import PACKAGE_COMPLETED, StudyPackage
from studygen.schemas.study_job import GenerateRequest, UploadInitRequest
from studygen.services.artifact_store import ArtifactStore
from studygen.services.blob_store import get_blob_store
from studygen.services.generation_client import GenerationClient, get_generation_client
from studygen.services.ingress import AcceptedJob, StudyJobService
from studygen.services.job_store import get_job_store
from studygen.services.study_generation import StudyGenerationPipeline
from studygen.utils.logger import logger

router = APIRouter(prefix="/api/study", tags=["study"])
limiter = Limiter(key_func=get_remote_address)


@lru_cache()
def _generator() -> GenerationClient:
    return get_generation_client()


def get_artifact_store() -> ArtifactStore:
    return ArtifactStore(get_blob_store(), AsyncSessionLocal, _generator().model_name)


def get_study_service() -> StudyJobService:
    settings = get_settings()
    artifact_store = get_artifact_store()
    pipeline = StudyGenerationPipeline(AsyncSessionLocal, artifact_store, _generator(), settings)
    return StudyJobService(get_job_store(), get_blob_store(), pipeline, settings)


async def _run_job_in_background(service: StudyJobService, job: AcceptedJob) -> None:
    """Background task body. FAILED is already recorded by the time an error reaches here."""
    try:
        await service.run_generation_job(job)
    except Exception as e:
        logger.error(
            "study.background_job_failed",
            extra={"job_id": job.job_id, "error": str(e)[:200], "error_type": type(e).__name__},
        )


@router.post("/upload/init")
@limiter.limit("20/minute")
async def init_upload(
    request: Request,
    payload: UploadInitRequest,
    user_id: str = Depends(get_user_id),
    service: StudyJobService = Depends(get_study_service),
):
    """Create a PENDING job and return where to upload the document."""
    return await service.init_upload(
        user_id,
        payload.file_name,
        payload.topic,
        payload.question_count,
        payload.flashcard_count,
    )


@router.put("/upload/{document_id}")
@limiter.limit("10/minute")
async def complete_upload(
    request: Request,
    document_id: str,
    background_tasks: BackgroundTasks,
    job_id_query: Optional[str] = Query(None, alias="jobId"),
    x_job_id: Optional[str] = Header(None),
    x_file_name: Optional[str] = Header(None),
    user_id: str = Depends(get_user_id),
    service: StudyJobService = Depends(get_study_service),
):
    """
    Receive the document bytes for an initialized job.

    Storage and text extraction happen before responding; generation runs in
    the background and is tracked via GET /api/study/jobs/{job_id}/status.
    """
    job_id = x_job_id or job_id_query
    data = await request.body()

    try:
        accepted = await service.accept_upload(job_id, document_id, user_id, data, x_file_name)
    except IngressValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except TextExtractionError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except StudyGenerationError as e:
        raise HTTPException(status_code=502, detail=str(e))

    background_tasks.add_task(_run_job_in_background, service, accepted)

    return {
        "success": True,
        "jobId": accepted.job_id,
        "sourceKey": accepted.request.source_path,
        "statusUrl": f"/api/study/jobs/{accepted.job_id}/status",
    }


@router.post("/generate", status_code=202)
@limiter.limit("10/minute")
async def generate_from_topic(
    request: Request,
    payload: GenerateRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    service: StudyJobService = Depends(get_study_service),
):
    """Start topic-only generation and return the job id immediately."""
    accepted = await service.start_topic_job(
        user_id,
        payload.topic,
        payload.question_count,
        payload.flashcard_count,
        payload.source,
    )
    background_tasks.add_task(_run_job_in_background, service, accepted)

    return {
        "jobId": accepted.job_id,
        "statusUrl": f"/api/study/jobs/{accepted.job_id}/status",
    }


@router.get("/jobs/{job_id}/status")
async def get_job_status(job_id: str, service: StudyJobService = Depends(get_study_service)):
    """Poll the full job record."""
    record = await service.get_job_record(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return record


@router.post("/jobs/{job_id}/cancel")
async def cancel_job(
    job_id: str,
    user_id: str = Depends(get_user_id),
    service: StudyJobService = Depends(get_study_service),
):
    """Stop a running job before its next stage. The job then ends as FAILED."""
    try:
        requested = await service.cancel_job(job_id, user_id)
    except IngressValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    return {"jobId": job_id, "cancelRequested": requested}


@router.get("/packages")
async def list_packages(
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(StudyPackage)
        .where(StudyPackage.user_id == user_id)
        .options(
            selectinload(StudyPackage.summary),
            selectinload(StudyPackage.flashcard_set),
            selectinload(StudyPackage.quiz_set),
        )
        .order_by(StudyPackage.created_at.desc())
    )
    packages = result.scalars().all()

    return {
        "packages": [
            {
                "id": pkg.id,
                "topic": pkg.topic,
                "topicSlug": pkg.topic_slug,
                "sourceType": pkg.source_type,
                "status": pkg.status,
                "createdAt": pkg.created_at.isoformat() if pkg.created_at else None,
                "materials": {
                    "hasSummary": pkg.summary is not None,
                    "hasFlashcards": pkg.flashcard_set is not None,
                    "hasQuiz": pkg.quiz_set is not None,
                },
            }
            for pkg in packages
        ]
    }


@router.get("/materials/{package_id}")
async def get_materials(
    package_id: str,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db),
    artifact_store: ArtifactStore = Depends(get_artifact_store),
):
    """Load the summary, flashcards and quiz of a completed package."""
    package = await db.get(StudyPackage, package_id)
    if package is None or not check_ownership(package.user_id, user_id):
        raise HTTPException(status_code=404, detail="Study package not found")

    if package.status != PACKAGE_COMPLETED:
        raise HTTPException(status_code=409, detail="Study package is not ready")

    return await artifact_store.load_materials(package)
