import pytest

from studygen.schemas.study_job import JobMetadata, JobState, JobStatusUpdate
from studygen.services.job_store import MemoryJobStore, job_key
from studygen.services.status_reporter import JobStatusReporter

METADATA = JobMetadata(user_id="user_1", topic="Periodontics", topic_slug="periodontics", question_count=5)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.mark.asyncio
async def test_every_report_writes_a_complete_record():
    store = MemoryJobStore()
    reporter = JobStatusReporter(store, "job_1", METADATA)

    await reporter.report(JobStatusUpdate(status=JobState.SUMMARIZING, progress=45, message="Generating summary..."))
    await reporter.report({"status": "GENERATING_FLASHCARDS", "progress": 65, "message": "Creating flashcards..."})

    record = await store.get(job_key("job_1"))
    assert record == {
        "jobId": "job_1",
        "status": "GENERATING_FLASHCARDS",
        "progress": 65,
        "message": "Creating flashcards...",
        "metadata": {
            "userId": "user_1",
            "topic": "Periodontics",
            "topicSlug": "periodontics",
            "questionCount": 5,
            "flashcardCount": 15,
        },
    }


@pytest.mark.asyncio
async def test_progress_never_decreases():
    store = MemoryJobStore()
    reporter = JobStatusReporter(store, "job_1", METADATA)

    await reporter.report(JobStatusUpdate(status=JobState.GENERATING_QUIZ, progress=85, message="quiz"))
    await reporter.report(JobStatusUpdate(status=JobState.SUMMARIZING, progress=45, message="late summary update"))

    record = await store.get(job_key("job_1"))
    assert record["progress"] == 85
    assert record["status"] == "SUMMARIZING"


@pytest.mark.asyncio
async def test_result_id_only_kept_for_completed():
    store = MemoryJobStore()
    reporter = JobStatusReporter(store, "job_1", METADATA)

    await reporter.report(
        JobStatusUpdate(status=JobState.SUMMARIZING, progress=45, message="m", result_id="pkg_early")
    )
    assert "resultId" not in await store.get(job_key("job_1"))

    await reporter.report(JobStatusUpdate(status=JobState.COMPLETED, progress=100, message="done", result_id="pkg_1"))
    record = await store.get(job_key("job_1"))
    assert record["resultId"] == "pkg_1"
    assert reporter.is_terminal


@pytest.mark.asyncio
async def test_fail_writes_terminal_record_without_result():
    store = MemoryJobStore()
    reporter = JobStatusReporter(store, "job_1", METADATA, initial_progress=40)

    await reporter.fail("Summary generation returned no content")

    record = await store.get(job_key("job_1"))
    assert record["status"] == "FAILED"
    assert record["progress"] == 100
    assert record["error"] == "Summary generation returned no content"
    assert "resultId" not in record
    assert record["metadata"]["userId"] == "user_1"
    assert reporter.is_terminal


@pytest.mark.asyncio
async def test_reports_after_terminal_record_are_dropped():
    store = MemoryJobStore()
    failed = JobStatusReporter(store, "job_1", METADATA)

    await failed.fail("Generation service unavailable")
    await failed.report(JobStatusUpdate(status=JobState.COMPLETED, progress=100, message="done", result_id="pkg_1"))

    record = await store.get(job_key("job_1"))
    assert record["status"] == "FAILED"
    assert "resultId" not in record

    completed = JobStatusReporter(store, "job_2", METADATA)
    await completed.report(JobStatusUpdate(status=JobState.COMPLETED, progress=100, message="done", result_id="pkg_2"))
    await completed.fail("late failure")

    record = await store.get(job_key("job_2"))
    assert record["status"] == "COMPLETED"
    assert record["resultId"] == "pkg_2"
    assert "error" not in record


@pytest.mark.asyncio
async def test_records_expire_after_ttl():
    clock = FakeClock()
    store = MemoryJobStore(clock=clock)
    reporter = JobStatusReporter(store, "job_1", METADATA, ttl_seconds=60)

    await reporter.report(JobStatusUpdate(status=JobState.PENDING, progress=5, message="queued"))
    clock.now += 59
    assert await store.get(job_key("job_1")) is not None

    clock.now += 2
    assert await store.get(job_key("job_1")) is None


@pytest.mark.asyncio
async def test_memory_store_returns_copies():
    store = MemoryJobStore()
    await store.put("k", {"a": [1]}, 60)

    first = await store.get("k")
    first["a"].append(2)

    assert await store.get("k") == {"a": [1]}
