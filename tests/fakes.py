"""In-memory stand-ins for the generator, blob store and status reporter."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, select

from studygen.exceptions import StorageError

LONG_SUMMARY = "# Endodontics\n\n" + "Pulp and periapical tissue diagnosis guides treatment. " * 40

FLASHCARDS_JSON = (
    '[{"front": "What is a pulpotomy?", "back": "Removal of coronal pulp."},'
    ' {"front": "Define apexification", "back": "Inducing a calcific barrier at an open apex."},'
    ' {"front": "What irrigant dissolves organic tissue?", "back": "Sodium hypochlorite."},'
    ' {"front": "Name the working length landmark", "back": "The apical constriction."},'
    ' {"front": "What is a sinus tract?", "back": "A drainage path from a periapical lesion."}]'
)

MULTIPLE_CHOICE_JSON = (
    "["
    + ",".join(
        '{"question": "Question %d?", "options": ["A%d", "B%d", "C%d", "D%d"], "correctAnswer": %d, "explanation": "Because."}'
        % (i, i, i, i, i, i % 4)
        for i in range(20)
    )
    + "]"
)

TRUE_FALSE_JSON = (
    "["
    + ",".join(
        '{"question": "Statement %d is correct.", "answer": %s, "explanation": "Because."}'
        % (i, "true" if i % 2 == 0 else "false")
        for i in range(20)
    )
    + "]"
)

Response = Union[str, Exception, Callable[[str, str], Any]]


def classify_prompt(user_prompt: str) -> str:
    prompt = user_prompt.lower()
    if "previous attempt was shorter" in prompt:
        return "summary-expansion"
    if "true/false" in prompt:
        return "quiz-tf"
    if "multiple-choice" in prompt:
        return "quiz-mc"
    if "flashcards" in prompt:
        return "flashcards"
    return "summary"


class ScriptedGenerator:
    """Generator fake that answers by prompt kind and records every call."""

    model_name = "scripted-model"

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses: Dict[str, Response] = {
            "summary": LONG_SUMMARY,
            "summary-expansion": LONG_SUMMARY,
            "flashcards": FLASHCARDS_JSON,
            "quiz-mc": MULTIPLE_CHOICE_JSON,
            "quiz-tf": TRUE_FALSE_JSON,
        }
        self.responses.update(responses or {})
        self.calls: List[Tuple[str, str, str]] = []

    def calls_for(self, kind: str) -> List[Tuple[str, str, str]]:
        return [call for call in self.calls if call[0] == kind]

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: Optional[int] = None) -> str:
        kind = classify_prompt(user_prompt)
        self.calls.append((kind, system_prompt, user_prompt))
        response = self.responses[kind]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            result = response(system_prompt, user_prompt)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return response


class FakeBlobStore:
    """Dict-backed blob store; `fail_on` path fragments make put() fail."""

    def __init__(self, fail_on: Tuple[str, ...] = ()):
        self.blobs: Dict[str, Tuple[bytes, str]] = {}
        self.fail_on = fail_on

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        if any(fragment in path for fragment in self.fail_on):
            raise StorageError(f"Failed to store {path}: injected failure")
        self.blobs[path] = (data, content_type)

    async def get(self, path: str) -> Optional[bytes]:
        item = self.blobs.get(path)
        return item[0] if item else None

    async def delete(self, path: str) -> bool:
        return self.blobs.pop(path, None) is not None


class RecordingReporter:
    def __init__(self):
        self.updates = []

    async def report(self, update) -> None:
        self.updates.append(update)


async def count_rows(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


NOTES_TEXT = "Inferior alveolar nerve block: aspirate before injecting to avoid intravascular deposition.\n" * 20
