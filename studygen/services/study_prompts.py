"""
Prompt builders for the three generation stages.

When source content is present each prompt embeds a bounded prefix of it plus
the topic, so prompt size never depends on document length. Without source
content the prompt is built from the topic alone.
"""
from typing import Optional, Tuple

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert dental educator. Produce comprehensive, well structured study "
    "summaries in Markdown using headings, nested lists, bold key terms and tables where "
    "useful. Ensure content is complete and never wrap the output in code fences."
)

FLASHCARD_SYSTEM_PROMPT = (
    "You are an expert dental educator. Respond strictly with valid JSON adhering to the "
    "requested flashcard schema."
)

QUIZ_SYSTEM_PROMPT = (
    "You are an expert dental educator. Respond strictly with valid JSON adhering to the "
    "requested schema."
)


def truncate_source(content: Optional[str], limit: int) -> Optional[str]:
    if not content:
        return None
    return content[:limit]


def summary_prompt(topic: str, source: Optional[str], limit: int = 12000) -> Tuple[str, str]:
    source = truncate_source(source, limit)
    if source:
        user = f"""You are preparing a full-length study summary for dental students about "{topic}" using the provided source material. Incorporate every major concept, short definitions, clinical applications, communication tips, and exam strategies. Ensure the summary contains:

1. An engaging introduction setting the context.
2. A numbered outline of core sections with `##` headings and nested `###` subsections where appropriate.
3. Bulleted key takeaways, clinical pearls, and patient communication notes under each section.
4. A Markdown table when listing classification or comparison data.
5. A "Checklist for Revision" section using an ordered list and a concise conclusion summarizing action points.
6. Proper sentence case, medical accuracy, and no truncated thoughts.

Return ONLY Markdown (no code fences). The content should be at least 600 words long and free of placeholder text.

Source material (truncated to {limit} characters):

{source}"""
    else:
        user = f"""Create a comprehensive, fully formatted Markdown study summary for dental students covering "{topic}". Follow these requirements:

1. Begin with an introduction that frames why the topic matters clinically.
2. Provide numbered `##` sections for pathophysiology, diagnosis, management, patient communication, clinical decision-making, and exam preparation tips.
3. Within each section include bulleted lists, short highlighted definitions, and practical examples in full sentences.
4. Add an evidence or guidelines callout, a risk-factor matrix (as a Markdown table), and a revision checklist.
5. Conclude with a succinct recap and suggested next steps.
6. Output must be Markdown (no code fences) and at least 600 words."""
    return SUMMARY_SYSTEM_PROMPT, user


def summary_expansion_prompt(base_prompt: str) -> str:
    return (
        f"{base_prompt}\n\nThe previous attempt was shorter than required. Expand the content "
        "with additional clinically relevant sections, ensuring at least 900 words and no truncation."
    )


def flashcards_prompt(topic: str, source: Optional[str], target: int, limit: int = 8000) -> Tuple[str, str]:
    source = truncate_source(source, limit)
    if source:
        user = f"""Create {target} high-yield flashcards for dental students studying "{topic}". Each item must include:
- "front": a prompt, clinical question, or scenario
- "back": a complete answer referencing the rationale
- Optional "hint" value with mnemonic or memory aid

Use the trimmed source below:

{source}

Respond ONLY with valid JSON array matching [{{"front": "...", "back": "...", "hint": "..."}}] and ensure there are exactly {target} cards."""
    else:
        user = (
            f'Create {target} high-yield flashcards for dental students on "{topic}". Each card must include '
            '"front" and "back" fields with an optional "hint". Respond ONLY with JSON array matching '
            f'[{{"front": "...", "back": "...", "hint": "..."}}] and ensure the array length equals {target}.'
        )
    return FLASHCARD_SYSTEM_PROMPT, user


def multiple_choice_prompt(topic: str, source: Optional[str], target: int, limit: int = 8000) -> Tuple[str, str]:
    source = truncate_source(source, limit)
    if source:
        user = f"""Create {target} high-quality multiple-choice questions for dental students based on the content below about "{topic}". Each item must include:
- A clear question stem in full sentences.
- Four answer options labeled implicitly A-D.
- The zero-indexed correctAnswer pointing to the correct option.
- A concise explanation referencing the source material.

Return ONLY valid JSON in the shape [{{"question": "...", "options": ["..."], "correctAnswer": 0, "explanation": "..."}}]. Ensure the array length matches {target} exactly.

Source (trimmed to {limit} chars):

{source}"""
    else:
        user = (
            f'Create {target} detailed multiple-choice questions for dental students studying "{topic}". '
            "For each include a question, exactly four answer options, the zero-indexed correctAnswer value, "
            "and a short explanation. Respond ONLY with valid JSON array matching the schema "
            '[{"question": "...", "options": ["..."], "correctAnswer": 0, "explanation": "..."}] '
            f"and ensure there are {target} items."
        )
    return QUIZ_SYSTEM_PROMPT, user


def true_false_prompt(topic: str, source: Optional[str], target: int, limit: int = 8000) -> Tuple[str, str]:
    source = truncate_source(source, limit)
    if source:
        user = f"""Generate {target} clinically accurate true/false statements for dental students covering "{topic}" based on the content below. Each item must include:
- A full-sentence statement under the key "question".
- A boolean "answer" value indicating if the statement is true.
- A short "explanation" referencing the rationale.

Respond ONLY with valid JSON array in the schema [{{"question": "...", "answer": true, "explanation": "..."}}] and ensure exactly {target} items.

Source (trimmed to {limit} chars):

{source}"""
    else:
        user = (
            f'Generate {target} true/false questions for dental students on "{topic}". Each object should have '
            '"question", boolean "answer", and an "explanation". '
            f"Respond ONLY with a JSON array containing exactly {target} items."
        )
    return QUIZ_SYSTEM_PROMPT, user
