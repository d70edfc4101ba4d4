import asyncio
import json

import pytest
from sqlalchemy import select

from studygen.exceptions import GenerationCancelledError, GenerationUnavailableError, StudyGenerationError
from studygen.models.study_package import (
    PACKAGE_COMPLETED,
    PACKAGE_GENERATING,
    StudyFlashcardSet,
    StudyPackage,
    StudyQuizSet,
    StudySummary,
)
from studygen.schemas.study_job import JobMetadata
from studygen.services.job_store import job_key
from studygen.services.status_reporter import JobStatusReporter
from studygen.services.study_generation import GenerationRequest, StudyGenerationPipeline
from tests.fakes import RecordingReporter, ScriptedGenerator, count_rows


def topic_request(**overrides) -> GenerationRequest:
    values = dict(user_id="user_1", topic="Endodontics", topic_slug="endodontics", question_count=5, flashcard_count=5)
    values.update(overrides)
    return GenerationRequest(**values)


@pytest.mark.asyncio
async def test_successful_run_reports_monotonic_progress(pipeline, session_factory):
    reporter = RecordingReporter()

    result = await pipeline.run(topic_request(), reporter)

    statuses = [update.status for update in reporter.updates]
    progress = [update.progress for update in reporter.updates]
    assert statuses == ["SUMMARIZING", "GENERATING_FLASHCARDS", "GENERATING_QUIZ", "COMPLETED"]
    assert progress == sorted(progress)
    assert progress[-1] == 100
    assert reporter.updates[-1].result_id == result.package_id

    async with session_factory() as session:
        package = await session.get(StudyPackage, result.package_id)
    assert package.status == PACKAGE_COMPLETED
    assert package.source_type == "ai"


@pytest.mark.asyncio
async def test_quiz_failure_keeps_earlier_artifacts(session_factory, artifact_store, settings):
    generator = ScriptedGenerator({"quiz-mc": GenerationUnavailableError("quota exhausted")})
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)
    reporter = RecordingReporter()

    with pytest.raises(GenerationUnavailableError):
        await pipeline.run(topic_request(), reporter)

    assert await count_rows(session_factory, StudySummary) == 1
    assert await count_rows(session_factory, StudyFlashcardSet) == 1
    assert await count_rows(session_factory, StudyQuizSet) == 0
    assert (await _only_package(session_factory)).status == PACKAGE_GENERATING
    assert reporter.updates[-1].status == "GENERATING_QUIZ"


@pytest.mark.asyncio
async def test_resume_skips_finished_stages(session_factory, artifact_store, settings):
    failing = ScriptedGenerator({"quiz-tf": GenerationUnavailableError("timeout")})
    first = StudyGenerationPipeline(session_factory, artifact_store, failing, settings)
    with pytest.raises(GenerationUnavailableError):
        await first.run(topic_request())
    package = await _only_package(session_factory)
    existing = await artifact_store.existing_artifacts(package.id)

    generator = ScriptedGenerator()
    second = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)
    result = await second.run(topic_request(), package_id=package.id)

    assert result.summary_id == existing.summary_id
    assert result.flashcards_id == existing.flashcards_id
    assert generator.calls_for("summary") == []
    assert generator.calls_for("flashcards") == []
    assert generator.calls_for("quiz-mc")
    assert (await _only_package(session_factory)).status == PACKAGE_COMPLETED


async def _only_package(session_factory) -> StudyPackage:
    async with session_factory() as session:
        return (await session.execute(select(StudyPackage))).scalar_one()


@pytest.mark.asyncio
async def test_resume_rejects_other_users_and_completed_packages(pipeline, session_factory):
    result = await pipeline.run(topic_request())

    with pytest.raises(StudyGenerationError, match="not found"):
        await pipeline.run(topic_request(user_id="user_2"), package_id=result.package_id)
    with pytest.raises(StudyGenerationError, match="already completed"):
        await pipeline.run(topic_request(), package_id=result.package_id)


@pytest.mark.asyncio
async def test_cancel_between_stages(session_factory, artifact_store, settings):
    cancel_event = asyncio.Event()

    def summary_then_cancel(system_prompt, user_prompt):
        cancel_event.set()
        return ScriptedGenerator().responses["summary"]

    generator = ScriptedGenerator({"summary": summary_then_cancel})
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)

    with pytest.raises(GenerationCancelledError):
        await pipeline.run(topic_request(), cancel_event=cancel_event)

    assert await count_rows(session_factory, StudySummary) == 1
    assert await count_rows(session_factory, StudyFlashcardSet) == 0
    assert generator.calls_for("flashcards") == []


@pytest.mark.asyncio
async def test_empty_summary_fails_the_stage(session_factory, artifact_store, settings):
    generator = ScriptedGenerator({"summary": "   "})
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)

    with pytest.raises(GenerationUnavailableError):
        await pipeline.run(topic_request())

    assert await count_rows(session_factory, StudySummary) == 0


@pytest.mark.asyncio
async def test_short_summary_triggers_one_expansion(session_factory, artifact_store, blob_store, settings):
    generator = ScriptedGenerator({"summary": "# Short\n\nToo brief.", "summary-expansion": "# Expanded\n\nLonger."})
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)

    await pipeline.run(topic_request())

    assert len(generator.calls_for("summary-expansion")) == 1
    summaries = [data for path, (data, _) in blob_store.blobs.items() if "/summary-" in path]
    assert summaries == [b"# Expanded\n\nLonger."]


@pytest.mark.asyncio
async def test_stage_prompts_use_source_not_summary(pipeline, generator):
    generator.responses["summary"] = "SUMMARY-ONLY-MARKER " * 100
    source = "Sodium hypochlorite concentration notes. " * 400

    await pipeline.run(topic_request(source_type="pdf", source_content=source))

    for kind in ("flashcards", "quiz-mc", "quiz-tf"):
        for _, _, user_prompt in generator.calls_for(kind):
            assert "SUMMARY-ONLY-MARKER" not in user_prompt
            assert source[:8000] in user_prompt
            assert source[:8001] not in user_prompt
    assert source[:12000] in generator.calls_for("summary")[0][2]


@pytest.mark.asyncio
async def test_stage_timeout_becomes_generation_error(session_factory, artifact_store, settings):
    async def slow_summary(system_prompt, user_prompt):
        await asyncio.sleep(1)
        return "late"

    settings.stage_timeout_seconds = 0.05
    generator = ScriptedGenerator({"summary": slow_summary})
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)

    with pytest.raises(StudyGenerationError, match="timed out"):
        await pipeline.run(topic_request())


@pytest.mark.asyncio
async def test_quiz_retries_until_targets_met(session_factory, artifact_store, blob_store, settings):
    attempts = []

    def short_then_full(system_prompt, user_prompt):
        attempts.append(1)
        if len(attempts) == 1:
            return '[{"question": "Only one?", "options": ["a", "b"], "correctAnswer": 0}]'
        return ScriptedGenerator().responses["quiz-mc"]

    generator = ScriptedGenerator({"quiz-mc": short_then_full})
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)

    await pipeline.run(topic_request(question_count=5))

    assert len(attempts) == 2
    quiz_blob = next(data for path, (data, _) in blob_store.blobs.items() if "/quiz-" in path)
    quiz = json.loads(quiz_blob)
    assert len(quiz["multipleChoice"]) == 4
    assert len(quiz["trueFalse"]) == 2


@pytest.mark.asyncio
async def test_malformed_flashcards_job_completes(session_factory, artifact_store, blob_store, job_store, settings):
    flashcards = (
        "[{'front': 'Q1', 'back': 'A1'}, {'front': 'Q2', 'back': 'A2'}, {'front': 'Q3', 'back': 'A3'},"
        " {'front': 'Q4', 'back': 'A4'}, {'front': 'Q5', 'back': 'A5'},]"
    )
    generator = ScriptedGenerator({"flashcards": flashcards})
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)
    metadata = JobMetadata(user_id="user_1", topic="Endodontics", topic_slug="endodontics", question_count=5)
    reporter = JobStatusReporter(job_store, "job_42", metadata)

    result = await pipeline.run(topic_request(), reporter)

    record = await job_store.get(job_key("job_42"))
    assert record["status"] == "COMPLETED"
    assert record["progress"] == 100
    assert record["resultId"] == result.package_id

    async with session_factory() as session:
        flashcard_set = await session.get(StudyFlashcardSet, result.flashcards_id)
    assert flashcard_set.count == 5
    cards = json.loads(blob_store.blobs[flashcard_set.blob_path][0])
    assert cards[4] == {"front": "Q5", "back": "A5"}


@pytest.mark.asyncio
async def test_quiz_failure_stops_sibling_pool(session_factory, artifact_store, settings):
    async def slow_true_false(system_prompt, user_prompt):
        await asyncio.sleep(0.05)
        return "[]"

    generator = ScriptedGenerator(
        {"quiz-mc": GenerationUnavailableError("quota exhausted"), "quiz-tf": slow_true_false}
    )
    pipeline = StudyGenerationPipeline(session_factory, artifact_store, generator, settings)

    with pytest.raises(GenerationUnavailableError):
        await pipeline.run(topic_request())
    true_false_calls = len(generator.calls_for("quiz-tf"))
    await asyncio.sleep(0.2)

    assert true_false_calls == 1
    assert len(generator.calls_for("quiz-tf")) == true_false_calls
