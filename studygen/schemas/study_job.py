"""
Pydantic schemas for study generation jobs.

Job records are stored and served with camelCase keys so polling clients
read exactly what the job store holds.
"""
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):
    PENDING = "PENDING"
    UPLOADED = "UPLOADED"
    PARSING = "PARSING"
    SUMMARIZING = "SUMMARIZING"
    GENERATING_FLASHCARDS = "GENERATING_FLASHCARDS"
    GENERATING_QUIZ = "GENERATING_QUIZ"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset({JobState.COMPLETED, JobState.FAILED})

# Progress floor reported when each state is entered
STATE_PROGRESS: Dict[JobState, int] = {
    JobState.PENDING: 5,
    JobState.UPLOADED: 30,
    JobState.PARSING: 40,
    JobState.SUMMARIZING: 45,
    JobState.GENERATING_FLASHCARDS: 65,
    JobState.GENERATING_QUIZ: 85,
    JobState.COMPLETED: 100,
    JobState.FAILED: 100,
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class SourceDescriptor(_CamelModel):
    """Where the study content comes from: "topic" (model knowledge) or "pdf"."""
    type: str = "topic"
    content: Optional[str] = None
    path: Optional[str] = None


class JobMetadata(_CamelModel):
    """Immutable snapshot captured when the job is created"""
    user_id: str = Field(..., alias="userId")
    topic: str
    topic_slug: str = Field(..., alias="topicSlug")
    question_count: int = Field(10, alias="questionCount", ge=1, le=100)
    flashcard_count: int = Field(15, alias="flashcardCount", ge=1, le=100)
    document_id: Optional[str] = Field(None, alias="documentId")
    source_key: Optional[str] = Field(None, alias="r2Key")
    source: Optional[SourceDescriptor] = None


class JobStatusUpdate(_CamelModel):
    """One status transition, as passed to a status reporter"""
    status: JobState
    progress: int = Field(..., ge=0, le=100)
    message: str
    result_id: Optional[str] = Field(None, alias="resultId")
    error: Optional[str] = None


class JobRecord(JobStatusUpdate):
    """The complete record held in the job store and returned to pollers"""
    job_id: str = Field(..., alias="jobId")
    metadata: Optional[JobMetadata] = None


# ========== Request Schemas ==========
class UploadInitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName", min_length=1, max_length=500)
    topic: str = Field(..., min_length=1, max_length=500)
    question_count: int = Field(10, alias="questionCount", ge=1, le=100)
    flashcard_count: int = Field(15, alias="flashcardCount", ge=1, le=100)


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    topic: str = Field(..., min_length=1, max_length=500)
    question_count: int = Field(10, alias="questionCount", ge=1, le=100)
    flashcard_count: int = Field(15, alias="flashcardCount", ge=1, le=100)
    source: Optional[SourceDescriptor] = None
