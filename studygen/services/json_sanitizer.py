"""Lenient parsing of JSON arrays out of generated text.

The generation service gives no output schema guarantee, so "valid JSON" is
treated as best effort. Parsing never raises: when no candidate can be
coerced into a list, the caller's fallback is returned and the stage
persists a degraded (possibly empty) artifact instead of failing the job.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

import json_repair

from studygen.utils.logger import logger
from studygen.utils.metrics import inc

PREVIEW_CHARS = 320

# Object keys that commonly wrap the array we asked for
CONTAINER_KEYS = ("questions", "items", "data", "results")

_ARRAY_SPAN_RE = re.compile(r"\[[\s\S]*\]")
_CODE_FENCE_RE = re.compile(r"```json|```", re.IGNORECASE)
_SINGLE_QUOTED_KEY_RE = re.compile(r"'([\w-]+)'\s*:")
_SINGLE_QUOTED_VALUE_RE = re.compile(r":'([^']*)'")
_MISSING_COLON_RE = re.compile(r"\"([\w-]+)\"\s*(\{|\[|\"|'|-?\d)")
_WHITESPACE_RUN_RE = re.compile(r"\s+")
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")


@dataclass(frozen=True)
class ParseOk:
    items: List[Any]
    candidate_index: int
    repaired: bool


@dataclass(frozen=True)
class ParseFallback:
    items: List[Any]
    attempts: List[str] = field(default_factory=list)


ParseOutcome = Union[ParseOk, ParseFallback]


def extract_array_span(raw: str) -> str:
    """Return the first-`[`-to-last-`]` span, or the trimmed input when there is none."""
    trimmed = raw.strip()
    match = _ARRAY_SPAN_RE.search(trimmed)
    return match.group(0) if match else trimmed


def sanitize_model_json(raw: str) -> str:
    """Syntactic clean-up for near-JSON produced by a text model."""
    cleaned = raw.strip()

    cleaned = _CODE_FENCE_RE.sub("", cleaned)
    cleaned = cleaned.replace(" ", " ")
    cleaned = re.sub("[“”]", '"', cleaned)
    cleaned = re.sub("[‘’]", "'", cleaned)

    # Single-quoted keys and string values become double-quoted
    cleaned = _SINGLE_QUOTED_KEY_RE.sub(r'"\1":', cleaned)
    cleaned = _SINGLE_QUOTED_VALUE_RE.sub(r':"\1"', cleaned)

    # A quoted key directly followed by a value is missing its colon
    cleaned = _MISSING_COLON_RE.sub(r'"\1": \2', cleaned)

    cleaned = _WHITESPACE_RUN_RE.sub(lambda m: "\n" if "\n" in m.group(0) else " ", cleaned)

    return _TRAILING_COMMA_RE.sub(r"\1", cleaned)


def build_candidates(raw: str) -> List[str]:
    """Candidate strings in order of increasing aggressiveness."""
    extracted = extract_array_span(raw)
    sanitized = sanitize_model_json(extracted)
    normalized_quotes = sanitized.replace("'", '"')
    return [extracted, sanitized, normalized_quotes]


def coerce_array(value: Any) -> Optional[List[Any]]:
    if isinstance(value, list):
        return value

    if isinstance(value, dict):
        for key in CONTAINER_KEYS:
            nested = value.get(key)
            if isinstance(nested, list):
                return nested

    return None


def _try_strict(candidate: str) -> Optional[List[Any]]:
    try:
        return coerce_array(json.loads(candidate))
    except (json.JSONDecodeError, RecursionError):
        return None


def _try_repair(candidate: str) -> Optional[List[Any]]:
    try:
        return coerce_array(json_repair.loads(candidate))
    except Exception:  # json_repair raises assorted internal errors on hopeless input
        return None


def parse_generated_array_outcome(raw: Optional[str], fallback: List[Any], label: str) -> ParseOutcome:
    """Parse `raw` into a list, reporting which strategy succeeded."""
    if not isinstance(raw, str) or not raw.strip():
        inc("parser.fallback")
        return ParseFallback(items=fallback)

    candidates = build_candidates(raw)
    attempted: List[str] = []

    for index, candidate in enumerate(candidates):
        if not candidate:
            continue

        items = _try_strict(candidate)
        if items is not None:
            inc("parser.ok")
            return ParseOk(items=items, candidate_index=index, repaired=False)

        items = _try_repair(candidate)
        if items is not None:
            inc("parser.repaired")
            return ParseOk(items=items, candidate_index=index, repaired=True)

        attempted.append(candidate)
        logger.warning(
            "parser.candidate_failed",
            extra={"label": label, "length": len(candidate), "preview": candidate[:PREVIEW_CHARS]},
        )

    inc("parser.fallback")
    logger.warning("parser.fallback", extra={"label": label, "count": len(attempted)})
    return ParseFallback(items=fallback, attempts=attempted)


def parse_generated_array(raw: Optional[str], fallback: List[Any], label: str) -> List[Any]:
    """Best-effort JSON array from generated text. Never raises."""
    try:
        return parse_generated_array_outcome(raw, fallback, label).items
    except Exception as exc:  # parsing is best effort; fallback keeps the stage alive
        logger.error("parser.unexpected_error", extra={"label": label, "error": str(exc)[:200]})
        return fallback
