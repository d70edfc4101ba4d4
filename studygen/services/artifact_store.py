"""
Artifact persistence: one blob plus one metadata row per generated artifact.

The row is inserted only after the blob write returns, so a metadata row
always points at content that exists. A failed blob write leaves no row.
"""
import base64
import hashlib
import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from studygen.models.study_package import (
    StudyFlashcardSet,
    StudyPackage,
    StudyQuizSet,
    StudySummary,
)
from studygen.services.blob_store import BlobStore
from studygen.utils.logger import logger

MARKDOWN = "text/markdown"
JSON = "application/json"


def new_artifact_id() -> str:
    """URL-safe random id, 21 characters."""
    return secrets.token_urlsafe(16)[:21]


def compute_content_hash(text: str) -> str:
    """Base64-encoded SHA-256 of the UTF-8 text."""
    return base64.b64encode(hashlib.sha256(text.encode("utf-8")).digest()).decode("ascii")


def artifact_path(user_id: str, package_id: str, kind: str, artifact_id: str, ext: str) -> str:
    return f"study/{user_id}/packages/{package_id}/{kind}-{artifact_id}.{ext}"


@dataclass
class StoredArtifact:
    id: str
    path: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ExistingArtifacts:
    summary_id: Optional[str] = None
    flashcards_id: Optional[str] = None
    quiz_id: Optional[str] = None


class ArtifactStore:
    def __init__(self, blob_store: BlobStore, session_factory, model_name: str):
        self.blob_store = blob_store
        self.session_factory = session_factory
        self.model_name = model_name

    async def _insert(self, row) -> None:
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()

    async def store_summary(self, package_id: str, user_id: str, content: str) -> StoredArtifact:
        artifact_id = new_artifact_id()
        path = artifact_path(user_id, package_id, "summary", artifact_id, "md")
        content_hash = compute_content_hash(content)

        await self.blob_store.put(path, content.encode("utf-8"), MARKDOWN)

        await self._insert(
            StudySummary(
                id=artifact_id,
                package_id=package_id,
                user_id=user_id,
                blob_path=path,
                model=self.model_name,
                content_hash=content_hash,
            )
        )
        logger.info(
            "artifact.stored",
            extra={"package_id": package_id, "stage": "summary", "artifact_id": artifact_id, "blob_path": path},
        )
        return StoredArtifact(
            id=artifact_id,
            path=path,
            metadata={"model": self.model_name, "contentHash": content_hash, "length": len(content)},
        )

    async def store_flashcards(self, package_id: str, user_id: str, cards: List[Dict[str, Any]]) -> StoredArtifact:
        artifact_id = new_artifact_id()
        path = artifact_path(user_id, package_id, "flashcards", artifact_id, "json")

        await self.blob_store.put(path, json.dumps(cards).encode("utf-8"), JSON)

        await self._insert(
            StudyFlashcardSet(
                id=artifact_id,
                package_id=package_id,
                user_id=user_id,
                blob_path=path,
                count=len(cards),
                model=self.model_name,
            )
        )
        logger.info(
            "artifact.stored",
            extra={"package_id": package_id, "stage": "flashcards", "artifact_id": artifact_id, "count": len(cards)},
        )
        return StoredArtifact(id=artifact_id, path=path, metadata={"model": self.model_name, "count": len(cards)})

    async def store_quiz(self, package_id: str, user_id: str, quiz: Dict[str, List[Dict[str, Any]]]) -> StoredArtifact:
        """Store a quiz holding `multipleChoice` and `trueFalse` pools."""
        artifact_id = new_artifact_id()
        path = artifact_path(user_id, package_id, "quiz", artifact_id, "json")

        multiple_choice = list(quiz.get("multipleChoice") or [])
        true_false = list(quiz.get("trueFalse") or [])
        payload = {
            "questions": multiple_choice,
            "multipleChoice": multiple_choice,
            "trueFalse": true_false,
        }
        question_count = len(multiple_choice) + len(true_false)

        await self.blob_store.put(path, json.dumps(payload).encode("utf-8"), JSON)

        await self._insert(
            StudyQuizSet(
                id=artifact_id,
                package_id=package_id,
                user_id=user_id,
                blob_path=path,
                question_count=question_count,
                model=self.model_name,
            )
        )
        logger.info(
            "artifact.stored",
            extra={"package_id": package_id, "stage": "quiz", "artifact_id": artifact_id, "count": question_count},
        )
        return StoredArtifact(
            id=artifact_id,
            path=path,
            metadata={
                "model": self.model_name,
                "count": question_count,
                "multipleChoice": len(multiple_choice),
                "trueFalse": len(true_false),
            },
        )

    async def existing_artifacts(self, package_id: str) -> ExistingArtifacts:
        """Which artifact rows a package already has."""
        async with self.session_factory() as session:
            summary_id = await session.scalar(
                select(StudySummary.id).where(StudySummary.package_id == package_id)
            )
            flashcards_id = await session.scalar(
                select(StudyFlashcardSet.id).where(StudyFlashcardSet.package_id == package_id)
            )
            quiz_id = await session.scalar(
                select(StudyQuizSet.id).where(StudyQuizSet.package_id == package_id)
            )
        return ExistingArtifacts(summary_id=summary_id, flashcards_id=flashcards_id, quiz_id=quiz_id)

    async def load_materials(self, package: StudyPackage) -> Dict[str, Any]:
        """Read a package's artifact blobs back. Missing artifacts come back empty."""
        async with self.session_factory() as session:
            summary = await session.scalar(select(StudySummary).where(StudySummary.package_id == package.id))
            flashcard_set = await session.scalar(
                select(StudyFlashcardSet).where(StudyFlashcardSet.package_id == package.id)
            )
            quiz_set = await session.scalar(select(StudyQuizSet).where(StudyQuizSet.package_id == package.id))

        summary_text = None
        if summary:
            data = await self.blob_store.get(summary.blob_path)
            summary_text = data.decode("utf-8") if data is not None else None

        flashcards: List[Any] = []
        if flashcard_set:
            data = await self.blob_store.get(flashcard_set.blob_path)
            flashcards = json.loads(data) if data else []

        quiz: Dict[str, Any] = {"questions": [], "multipleChoice": [], "trueFalse": []}
        if quiz_set:
            data = await self.blob_store.get(quiz_set.blob_path)
            if data:
                quiz.update(json.loads(data))

        return {
            "packageId": package.id,
            "topic": package.topic,
            "topicSlug": package.topic_slug,
            "sourceType": package.source_type,
            "status": package.status,
            "summary": summary_text,
            "flashcards": flashcards,
            "quiz": quiz,
        }
