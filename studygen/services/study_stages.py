"""
The three generation stages: summary, flashcards and quiz.

Each stage builds its prompt, calls the generator, parses and normalizes the
output, and persists one artifact. Flashcard and quiz prompts are built from
the original source content and topic, never from the summary text.
"""
import asyncio
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from studygen.config import Settings
from studygen.exceptions import GenerationUnavailableError
from studygen.services import study_prompts
from studygen.services.artifact_store import ArtifactStore, StoredArtifact
from studygen.services.generation_client import GenerationClient
from studygen.services.json_sanitizer import parse_generated_array
from studygen.services.normalizers import (
    normalize_flashcards,
    normalize_multiple_choice,
    normalize_true_false,
)
from studygen.utils.logger import logger

MIN_FLASHCARDS = 10
MIN_QUIZ_QUESTIONS = 6
DEFAULT_QUIZ_QUESTIONS = 12
MULTIPLE_CHOICE_SHARE = 0.65
MIN_MULTIPLE_CHOICE = 4
MIN_TRUE_FALSE = 2
MULTIPLE_CHOICE_ATTEMPTS = 3
TRUE_FALSE_ATTEMPTS = 2


@dataclass(frozen=True)
class QuizTargets:
    base: int
    multiple_choice: int
    true_false: int


def flashcard_target(flashcard_count: Optional[int]) -> int:
    return max(MIN_FLASHCARDS, flashcard_count or 0)


def quiz_targets(question_count: Optional[int]) -> QuizTargets:
    base = max(MIN_QUIZ_QUESTIONS, question_count or DEFAULT_QUIZ_QUESTIONS)
    multiple_choice = max(MIN_MULTIPLE_CHOICE, math.ceil(base * MULTIPLE_CHOICE_SHARE))
    true_false = max(MIN_TRUE_FALSE, base - multiple_choice)
    if multiple_choice + true_false < base:
        multiple_choice += base - (multiple_choice + true_false)
    return QuizTargets(base=base, multiple_choice=multiple_choice, true_false=true_false)


class StudyStages:
    def __init__(self, generator: GenerationClient, artifact_store: ArtifactStore, settings: Settings):
        self.generator = generator
        self.artifact_store = artifact_store
        self.settings = settings

    async def summary(self, package_id: str, user_id: str, topic: str, source: Optional[str]) -> StoredArtifact:
        system_prompt, user_prompt = study_prompts.summary_prompt(topic, source, self.settings.summary_source_chars)

        content = await self.generator.generate(system_prompt, user_prompt, self.settings.generation_max_tokens)
        if not content or not content.strip():
            raise GenerationUnavailableError("Summary generation returned no content")

        if len(content) < self.settings.summary_min_length:
            logger.info(
                "study.summary_expansion",
                extra={"package_id": package_id, "length": len(content), "target": self.settings.summary_min_length},
            )
            expanded = await self.generator.generate(
                system_prompt,
                study_prompts.summary_expansion_prompt(user_prompt),
                self.settings.summary_expansion_max_tokens,
            )
            if expanded and expanded.strip():
                content = expanded

        return await self.artifact_store.store_summary(package_id, user_id, content.strip())

    async def flashcards(
        self, package_id: str, user_id: str, topic: str, source: Optional[str], flashcard_count: Optional[int]
    ) -> StoredArtifact:
        target = flashcard_target(flashcard_count)
        system_prompt, user_prompt = study_prompts.flashcards_prompt(
            topic, source, target, self.settings.stage_source_chars
        )

        raw = await self.generator.generate(system_prompt, user_prompt)
        cards = normalize_flashcards(parse_generated_array(raw or "[]", [], "flashcards"), target)
        logger.info(
            "study.flashcards_normalized",
            extra={"package_id": package_id, "count": len(cards), "target": target},
        )

        return await self.artifact_store.store_flashcards(package_id, user_id, cards)

    async def quiz(
        self, package_id: str, user_id: str, topic: str, source: Optional[str], question_count: Optional[int]
    ) -> StoredArtifact:
        targets = quiz_targets(question_count)
        logger.info(
            "study.quiz_targets",
            extra={"package_id": package_id, "target": targets.base, "count": targets.multiple_choice + targets.true_false},
        )

        pools = [
            asyncio.create_task(self._multiple_choice_pool(topic, source, targets.multiple_choice)),
            asyncio.create_task(self._true_false_pool(topic, source, targets.true_false)),
        ]
        try:
            multiple_choice, true_false = await asyncio.gather(*pools)
        except BaseException:
            # A failed pool stops its sibling before the stage error propagates
            for pool in pools:
                pool.cancel()
            await asyncio.gather(*pools, return_exceptions=True)
            raise

        return await self.artifact_store.store_quiz(
            package_id, user_id, {"multipleChoice": multiple_choice, "trueFalse": true_false}
        )

    async def _multiple_choice_pool(self, topic: str, source: Optional[str], target: int) -> List[Dict[str, Any]]:
        system_prompt, user_prompt = study_prompts.multiple_choice_prompt(
            topic, source, target, self.settings.stage_source_chars
        )
        last_set: List[Dict[str, Any]] = []

        for attempt in range(1, MULTIPLE_CHOICE_ATTEMPTS + 1):
            raw = await self.generator.generate(system_prompt, user_prompt)
            normalized = normalize_multiple_choice(parse_generated_array(raw or "[]", [], "quiz-mc"), target)
            logger.info(
                "study.quiz_pool",
                extra={"label": "quiz-mc", "attempt": attempt, "count": len(normalized), "target": target},
            )
            if len(normalized) >= target:
                return normalized
            last_set = normalized

        return last_set

    async def _true_false_pool(self, topic: str, source: Optional[str], target: int) -> List[Dict[str, Any]]:
        system_prompt, user_prompt = study_prompts.true_false_prompt(
            topic, source, target, self.settings.stage_source_chars
        )
        last_set: List[Dict[str, Any]] = []

        for attempt in range(1, TRUE_FALSE_ATTEMPTS + 1):
            raw = await self.generator.generate(system_prompt, user_prompt)
            normalized = normalize_true_false(parse_generated_array(raw or "[]", [], "quiz-tf"), target)
            logger.info(
                "study.quiz_pool",
                extra={"label": "quiz-tf", "attempt": attempt, "count": len(normalized), "target": target},
            )
            if len(normalized) >= target:
                return normalized
            last_set = normalized

        return last_set
