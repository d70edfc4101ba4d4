"""
Study package generation pipeline.

Runs the summary, flashcards and quiz stages in order for one package,
reporting job status before each stage and on completion. Stage errors
propagate unmodified to the caller, which owns the terminal FAILED write;
the package is then left in "generating" with the artifact rows of the
stages that finished.
"""
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Optional, Tuple

from sqlalchemy import update

from studygen.config import Settings
from studygen.exceptions import GenerationCancelledError, StudyGenerationError
from studygen.models.study_package import PACKAGE_COMPLETED, PACKAGE_GENERATING, StudyPackage
from studygen.schemas.study_job import JobState, JobStatusUpdate, STATE_PROGRESS
from studygen.services.artifact_store import ArtifactStore, ExistingArtifacts, StoredArtifact, new_artifact_id
from studygen.services.generation_client import GenerationClient
from studygen.services.status_reporter import StatusReporter
from studygen.services.study_stages import StudyStages
from studygen.utils.logger import logger
from studygen.utils.metrics import inc, track_duration


@dataclass
class GenerationRequest:
    user_id: str
    topic: str
    topic_slug: str
    question_count: int = 10
    flashcard_count: int = 15
    source_type: str = "ai"  # "ai" | "pdf"
    source_content: Optional[str] = None
    source_path: Optional[str] = None


@dataclass
class GenerationResult:
    package_id: str
    summary_id: str
    flashcards_id: str
    quiz_id: str


STAGE_MESSAGES = {
    JobState.SUMMARIZING: "Generating summary...",
    JobState.GENERATING_FLASHCARDS: "Creating flashcards...",
    JobState.GENERATING_QUIZ: "Creating quiz questions...",
    JobState.COMPLETED: "Study materials generated successfully!",
}


class StudyGenerationPipeline:
    def __init__(
        self,
        session_factory,
        artifact_store: ArtifactStore,
        generator: GenerationClient,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.artifact_store = artifact_store
        self.settings = settings
        self.stages = StudyStages(generator, artifact_store, settings)

    async def run(
        self,
        request: GenerationRequest,
        reporter: Optional[StatusReporter] = None,
        cancel_event: Optional[asyncio.Event] = None,
        package_id: Optional[str] = None,
    ) -> GenerationResult:
        package_id, resumed = await self._open_package(request, package_id)
        existing = await self.artifact_store.existing_artifacts(package_id) if resumed else ExistingArtifacts()

        logger.info(
            "study.package_started",
            extra={"package_id": package_id, "topic": request.topic, "source_type": request.source_type, "resumed": resumed},
        )

        async def notify(state: JobState, result_id: Optional[str] = None) -> None:
            if reporter is not None:
                await reporter.report(
                    JobStatusUpdate(
                        status=state,
                        progress=STATE_PROGRESS[state],
                        message=STAGE_MESSAGES[state],
                        result_id=result_id,
                    )
                )

        self._check_cancelled(cancel_event, package_id)
        await notify(JobState.SUMMARIZING)
        summary_id = existing.summary_id or (await self._run_stage(
            "summary",
            package_id,
            self.stages.summary(package_id, request.user_id, request.topic, request.source_content),
        )).id

        self._check_cancelled(cancel_event, package_id)
        await notify(JobState.GENERATING_FLASHCARDS)
        flashcards_id = existing.flashcards_id or (await self._run_stage(
            "flashcards",
            package_id,
            self.stages.flashcards(
                package_id, request.user_id, request.topic, request.source_content, request.flashcard_count
            ),
        )).id

        self._check_cancelled(cancel_event, package_id)
        await notify(JobState.GENERATING_QUIZ)
        quiz_id = existing.quiz_id or (await self._run_stage(
            "quiz",
            package_id,
            self.stages.quiz(
                package_id, request.user_id, request.topic, request.source_content, request.question_count
            ),
        )).id

        await self._mark_completed(package_id)
        await notify(JobState.COMPLETED, result_id=package_id)

        inc("study.packages_completed")
        logger.info("study.package_completed", extra={"package_id": package_id})
        return GenerationResult(
            package_id=package_id,
            summary_id=summary_id,
            flashcards_id=flashcards_id,
            quiz_id=quiz_id,
        )

    async def _open_package(self, request: GenerationRequest, package_id: Optional[str]) -> Tuple[str, bool]:
        """Create a new package, or reopen an unfinished one owned by the same user."""
        async with self.session_factory() as session:
            if package_id is not None:
                package = await session.get(StudyPackage, package_id)
                if package is None or package.user_id != request.user_id:
                    raise StudyGenerationError(f"Package {package_id} not found")
                if package.status == PACKAGE_COMPLETED:
                    raise StudyGenerationError(f"Package {package_id} is already completed")
                return package_id, True

            package = StudyPackage(
                id=new_artifact_id(),
                user_id=request.user_id,
                topic=request.topic,
                topic_slug=request.topic_slug,
                source_type=request.source_type or "ai",
                source_path=request.source_path,
                status=PACKAGE_GENERATING,
            )
            session.add(package)
            await session.commit()
            return package.id, False

    async def _run_stage(self, stage: str, package_id: str, work: Awaitable[StoredArtifact]) -> StoredArtifact:
        logger.info("study.stage_started", extra={"package_id": package_id, "stage": stage})
        try:
            async with track_duration("study", stage):
                return await asyncio.wait_for(work, timeout=self.settings.stage_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise StudyGenerationError(
                f"{stage} stage timed out after {self.settings.stage_timeout_seconds:g}s"
            ) from e

    async def _mark_completed(self, package_id: str) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(StudyPackage).where(StudyPackage.id == package_id).values(status=PACKAGE_COMPLETED)
            )
            await session.commit()

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], package_id: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.warning("study.cancelled", extra={"package_id": package_id})
            raise GenerationCancelledError(f"Generation cancelled for package {package_id}")
