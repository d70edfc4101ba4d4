"""Shared fixtures: a throwaway SQLite database, in-memory stores and a scripted generator."""

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from studygen.config import Settings
from studygen.database import Base
from studygen.models import study_package  # noqa: F401  registers tables
from studygen.services.artifact_store import ArtifactStore
from studygen.services.ingress import StudyJobService
from studygen.services.job_store import MemoryJobStore
from studygen.services.study_generation import StudyGenerationPipeline
from studygen.utils import metrics
from tests.fakes import FakeBlobStore, ScriptedGenerator


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        test_mode=True,
        database_url=f"sqlite+aiosqlite:///{tmp_path}/settings.db",
        storage_dir=str(tmp_path / "blobs"),
        stage_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/study.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    return FakeBlobStore()


@pytest.fixture
def job_store() -> MemoryJobStore:
    return MemoryJobStore()


@pytest.fixture
def generator() -> ScriptedGenerator:
    return ScriptedGenerator()


@pytest.fixture
def artifact_store(blob_store, session_factory) -> ArtifactStore:
    return ArtifactStore(blob_store, session_factory, "scripted-model")


@pytest.fixture
def pipeline(session_factory, artifact_store, generator, settings) -> StudyGenerationPipeline:
    return StudyGenerationPipeline(session_factory, artifact_store, generator, settings)


@pytest.fixture
def study_service(job_store, blob_store, pipeline, settings) -> StudyJobService:
    return StudyJobService(job_store, blob_store, pipeline, settings)
