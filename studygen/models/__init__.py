# Database models package
from studygen.models.study_package import (
    StudyPackage,
    StudySummary,
    StudyFlashcardSet,
    StudyQuizSet,
    PACKAGE_GENERATING,
    PACKAGE_COMPLETED,
)

__all__ = [
    "StudyPackage",
    "StudySummary",
    "StudyFlashcardSet",
    "StudyQuizSet",
    "PACKAGE_GENERATING",
    "PACKAGE_COMPLETED",
]
