import asyncio

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from studygen.database import get_db
from studygen.main import app
from studygen.models.study_package import PACKAGE_GENERATING, StudyPackage
from studygen.routes import study
from tests.fakes import NOTES_TEXT

USER = {"X-User-ID": "user_1"}


@pytest_asyncio.fixture
async def client(study_service, artifact_store, session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[study.get_study_service] = lambda: study_service
    app.dependency_overrides[study.get_artifact_store] = lambda: artifact_store
    app.dependency_overrides[get_db] = override_get_db
    study.limiter.enabled = False

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    study.limiter.enabled = True


async def wait_for_terminal(client, job_id, attempts=100):
    for _ in range(attempts):
        response = await client.get(f"/api/study/jobs/{job_id}/status")
        body = response.json()
        if body["status"] in ("COMPLETED", "FAILED"):
            return body
        await asyncio.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


async def init_upload(client, headers=USER):
    response = await client.post(
        "/api/study/upload/init",
        json={"fileName": "notes.txt", "topic": "Local Anesthesia", "questionCount": 5, "flashcardCount": 5},
        headers=headers,
    )
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_user_header_required(client):
    response = await client.post("/api/study/upload/init", json={"fileName": "a.pdf", "topic": "Caries"})
    assert response.status_code == 401

    response = await client.post(
        "/api/study/upload/init", json={"fileName": "a.pdf", "topic": "Caries"}, headers={"X-User-ID": "alice"}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_upload_flow_produces_materials(client):
    created = await init_upload(client)

    response = await client.put(
        created["uploadUrl"],
        content=NOTES_TEXT.encode("utf-8"),
        headers={**USER, "X-Job-ID": created["jobId"], "X-File-Name": "notes.txt"},
    )
    assert response.status_code == 200
    assert response.json()["statusUrl"] == f"/api/study/jobs/{created['jobId']}/status"

    record = await wait_for_terminal(client, created["jobId"])
    assert record["status"] == "COMPLETED"
    assert record["progress"] == 100

    materials = await client.get(f"/api/study/materials/{record['resultId']}", headers=USER)
    assert materials.status_code == 200
    body = materials.json()
    assert body["sourceType"] == "pdf"
    assert body["summary"].startswith("# Endodontics")
    assert len(body["flashcards"]) == 5
    assert len(body["quiz"]["multipleChoice"]) == 4
    assert len(body["quiz"]["trueFalse"]) == 2

    packages = await client.get("/api/study/packages", headers=USER)
    assert packages.json()["packages"][0]["materials"] == {"hasSummary": True, "hasFlashcards": True, "hasQuiz": True}


@pytest.mark.asyncio
async def test_upload_job_id_from_query(client):
    created = await init_upload(client)

    response = await client.put(
        f"{created['uploadUrl']}?jobId={created['jobId']}",
        content=NOTES_TEXT.encode("utf-8"),
        headers={**USER, "X-File-Name": "notes.txt"},
    )

    assert response.status_code == 200
    assert (await wait_for_terminal(client, created["jobId"]))["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_upload_rejections(client):
    created = await init_upload(client)

    missing = await client.put(created["uploadUrl"], content=b"data", headers=USER)
    assert missing.status_code == 400

    foreign = await client.put(
        created["uploadUrl"], content=b"data", headers={"X-User-ID": "user_2", "X-Job-ID": created["jobId"]}
    )
    assert foreign.status_code == 403

    mismatch = await client.put(
        "/api/study/upload/other-doc", content=b"data", headers={**USER, "X-Job-ID": created["jobId"]}
    )
    assert mismatch.status_code == 409

    unknown = await client.put(created["uploadUrl"], content=b"data", headers={**USER, "X-Job-ID": "nope"})
    assert unknown.status_code == 404

    status = await client.get(f"/api/study/jobs/{created['jobId']}/status")
    assert status.json()["status"] == "PENDING"


@pytest.mark.asyncio
async def test_unreadable_upload_returns_422_and_fails_job(client):
    created = await init_upload(client)

    response = await client.put(
        created["uploadUrl"], content=b"not a pdf", headers={**USER, "X-Job-ID": created["jobId"]}
    )

    assert response.status_code == 422
    status = await client.get(f"/api/study/jobs/{created['jobId']}/status")
    assert status.json()["status"] == "FAILED"


@pytest.mark.asyncio
async def test_generate_from_topic(client):
    response = await client.post(
        "/api/study/generate", json={"topic": "Dental Caries", "questionCount": 6}, headers=USER
    )

    assert response.status_code == 202
    record = await wait_for_terminal(client, response.json()["jobId"])
    assert record["status"] == "COMPLETED"
    assert record["metadata"]["topicSlug"] == "dental-caries"


@pytest.mark.asyncio
async def test_unknown_job_status_is_404(client):
    response = await client.get("/api/study/jobs/missing/status")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancel_job_route(client):
    response = await client.post("/api/study/jobs/missing/cancel", headers=USER)
    assert response.status_code == 404

    started = await client.post("/api/study/generate", json={"topic": "Dental Caries"}, headers=USER)
    job_id = started.json()["jobId"]
    await wait_for_terminal(client, job_id)

    response = await client.post(f"/api/study/jobs/{job_id}/cancel", headers={"X-User-ID": "user_2"})
    assert response.status_code == 403

    response = await client.post(f"/api/study/jobs/{job_id}/cancel", headers=USER)
    assert response.status_code == 200
    assert response.json() == {"jobId": job_id, "cancelRequested": False}
    status = await client.get(f"/api/study/jobs/{job_id}/status")
    assert status.json()["status"] == "COMPLETED"


@pytest.mark.asyncio
async def test_materials_require_completed_owned_package(client, session_factory):
    async with session_factory() as session:
        session.add(
            StudyPackage(
                id="pkg_pending",
                user_id="user_1",
                topic="Occlusion",
                topic_slug="occlusion",
                source_type="ai",
                status=PACKAGE_GENERATING,
            )
        )
        await session.commit()

    not_ready = await client.get("/api/study/materials/pkg_pending", headers=USER)
    assert not_ready.status_code == 409

    foreign = await client.get("/api/study/materials/pkg_pending", headers={"X-User-ID": "user_2"})
    assert foreign.status_code == 404
