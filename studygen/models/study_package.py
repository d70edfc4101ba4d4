"""
SQLAlchemy models for generated study packages and their artifact rows.

A package owns at most one row of each artifact kind. Rows are only written
after the artifact blob has been stored, so a package that never reached
"completed" holds exactly the artifacts of the stages that finished.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from studygen.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


PACKAGE_GENERATING = "generating"
PACKAGE_COMPLETED = "completed"


class StudyPackage(Base):
    __tablename__ = "study_packages"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(255), nullable=False, index=True)
    topic = Column(String(500), nullable=False)
    topic_slug = Column(String(500), nullable=False)
    source_type = Column(String(20), nullable=False, default="ai")  # "ai" | "pdf"
    source_path = Column(String(1024), nullable=True)

    # Status: generating → completed (left at generating when a run fails)
    status = Column(String(20), nullable=False, default=PACKAGE_GENERATING, index=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    summary = relationship("StudySummary", back_populates="package", uselist=False, cascade="all, delete-orphan")
    flashcard_set = relationship("StudyFlashcardSet", back_populates="package", uselist=False, cascade="all, delete-orphan")
    quiz_set = relationship("StudyQuizSet", back_populates="package", uselist=False, cascade="all, delete-orphan")


class StudySummary(Base):
    __tablename__ = "study_summaries"

    id = Column(String(32), primary_key=True)
    package_id = Column(String(32), ForeignKey("study_packages.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    blob_path = Column(String(1024), nullable=False)
    model = Column(String(100), nullable=False)
    content_hash = Column(String(64), nullable=True)  # base64 SHA-256 of the summary text
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    package = relationship("StudyPackage", back_populates="summary")


class StudyFlashcardSet(Base):
    __tablename__ = "study_flashcard_sets"

    id = Column(String(32), primary_key=True)
    package_id = Column(String(32), ForeignKey("study_packages.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    blob_path = Column(String(1024), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    model = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    package = relationship("StudyPackage", back_populates="flashcard_set")


class StudyQuizSet(Base):
    __tablename__ = "study_quiz_sets"

    id = Column(String(32), primary_key=True)
    package_id = Column(String(32), ForeignKey("study_packages.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    blob_path = Column(String(1024), nullable=False)
    question_count = Column(Integer, nullable=False, default=0)
    model = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    package = relationship("StudyPackage", back_populates="quiz_set")
