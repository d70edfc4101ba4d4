"""
Normalize loosely shaped generated records into flashcards and quiz questions.

Generated items use whatever key names the model chose, so each field is read
from a list of aliases. Items that lack a required field are dropped rather
than repaired.
"""
import math
import re
from typing import Any, Dict, Iterable, List, Optional

FRONT_KEYS = ("question", "prompt", "front", "cardFront", "term", "concept", "topic")
BACK_KEYS = ("answer", "response", "back", "cardBack", "definition", "explanation", "details", "summary")
HINT_KEYS = ("hint", "mnemonic", "keyPoint")

QUESTION_KEYS = ("question", "prompt", "stem", "statement")
OPTION_KEYS = ("options", "choices", "answerChoices")
EXPLANATION_KEYS = ("explanation", "rationale", "reasoning")

TRUE_WORDS = ("true", "t", "yes")
FALSE_WORDS = ("false", "f", "no")

_ANSWER_TOKEN_RE = re.compile(r"^(?:option\s*)?([a-d]|\d+)\b")


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _first_text(raw: Dict[str, Any], keys: Iterable[str]) -> str:
    for key in keys:
        text = _text(raw.get(key))
        if text:
            return text
    return ""


def _first_present(raw: Dict[str, Any], keys: Iterable[str]) -> Any:
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return None


def _option_index(options: List[str], answer: str) -> Optional[int]:
    wanted = answer.strip().lower()
    for index, option in enumerate(options):
        if option.strip().lower() == wanted:
            return index
    return None


def normalize_flashcards(raw_cards: List[Any], desired_count: int) -> List[Dict[str, str]]:
    cards = []
    for raw in raw_cards:
        if not isinstance(raw, dict):
            continue

        front = _first_text(raw, FRONT_KEYS)
        back = _first_text(raw, BACK_KEYS)
        if not front or not back:
            continue

        card = {"front": front, "back": back}
        hint = _first_text(raw, HINT_KEYS)
        if hint:
            card["hint"] = hint
        cards.append(card)

    return cards[:desired_count]


def normalize_options(raw: Dict[str, Any]) -> List[str]:
    for key in OPTION_KEYS:
        option_set = raw.get(key)
        if isinstance(option_set, list) and option_set:
            return [text for text in (_text(option) for option in option_set) if text]
    return []


def interpret_correct_index(raw: Dict[str, Any], options: List[str]) -> Optional[int]:
    """
    Work out which option is correct.

    Accepts a zero-based index, a letter (a-d), a 1-based number string,
    the option text itself, or a boolean (True -> 0, False -> 1).
    """
    answer = _first_present(raw, ("correctAnswer", "correctOption", "answer"))

    if isinstance(answer, bool):
        return 0 if answer else 1

    if isinstance(answer, (int, float)):
        return int(answer) if math.isfinite(answer) else None

    if isinstance(answer, list) and answer:
        first = answer[0]
        if isinstance(first, (int, float)) and not isinstance(first, bool):
            return int(first) if math.isfinite(first) else None
        if isinstance(first, str):
            return _option_index(options, first)
        return None

    if isinstance(answer, str):
        normalized = answer.strip().lower()
        # Exact option text wins over letter/number tokens ("20" among numeric options)
        by_text = _option_index(options, normalized)
        if by_text is not None:
            return by_text
        match = _ANSWER_TOKEN_RE.match(normalized)
        if match:
            token = match.group(1)
            if token.isalpha():
                return ord(token) - ord("a")
            number = int(token)
            return number - 1 if 0 < number <= len(options) else number
        return None

    return None


def normalize_multiple_choice(raw_questions: List[Any], desired_count: int) -> List[Dict[str, Any]]:
    questions = []
    for raw in raw_questions:
        if not isinstance(raw, dict):
            continue

        question = _first_text(raw, QUESTION_KEYS)
        options = normalize_options(raw)
        correct_index = interpret_correct_index(raw, options)
        if not question or len(options) < 2 or correct_index is None:
            continue

        questions.append({
            "question": question,
            "options": options,
            "correctAnswer": max(0, min(correct_index, len(options) - 1)),
            "explanation": _first_text(raw, EXPLANATION_KEYS),
        })

    return questions[:desired_count]


def interpret_true_false(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in TRUE_WORDS:
            return True
        if normalized in FALSE_WORDS:
            return False
    return None


def normalize_true_false(raw_questions: List[Any], desired_count: int) -> List[Dict[str, Any]]:
    questions = []
    for raw in raw_questions:
        if not isinstance(raw, dict):
            continue

        question = _first_text(raw, QUESTION_KEYS)
        if not question:
            continue

        is_true = interpret_true_false(_first_present(raw, ("answer", "correctAnswer", "correctOption")))
        if is_true is None:
            continue

        questions.append({
            "question": question,
            "options": ["True", "False"],
            "correctAnswer": 0 if is_true else 1,
            "explanation": _first_text(raw, EXPLANATION_KEYS),
        })

    return questions[:desired_count]
