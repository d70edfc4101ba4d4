"""
Generation capability: prompt in, raw text out.

OpenAIGenerationClient routes chat completions through the service gateway
so calls get a timeout, retries on transient errors, and a circuit breaker.
TestModeGenerationClient returns canned output without network calls.
"""
import json
from typing import Optional, Protocol

from openai import AsyncOpenAI

from studygen.config import get_settings
from studygen.exceptions import GenerationUnavailableError
from studygen.services.gateway import get_gateway
from studygen.utils.logger import logger


class GenerationClient(Protocol):
    model_name: str

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: Optional[int] = None) -> str: ...


class OpenAIGenerationClient:
    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, max_tokens: Optional[int] = None):
        settings = get_settings()
        api_key = api_key or settings.openai_api_key
        if not api_key:
            raise ValueError(
                "OPENAI_API_KEY not found. Set it in the environment, "
                "or set TEST_MODE=true to use canned study materials."
            )
        self.client = AsyncOpenAI(api_key=api_key)
        self.model_name = model or settings.generation_model
        self.max_tokens = max_tokens or settings.generation_max_tokens

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: Optional[int] = None) -> str:
        try:
            response = await get_gateway().execute(
                "generation",
                self.client.chat.completions.create,
                model=self.model_name,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.7,
                max_tokens=max_tokens or self.max_tokens,
            )
        except Exception as e:
            raise GenerationUnavailableError(f"Generation request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        return (content or "").strip()


class TestModeGenerationClient:
    """Deterministic canned output keyed on what the prompt asks for."""

    model_name = "test-mode"

    def __init__(self, item_count: int = 20):
        self.item_count = item_count

    async def generate(self, system_prompt: str, user_prompt: str, max_tokens: Optional[int] = None) -> str:
        prompt = user_prompt.lower()
        logger.info("generation.test_mode", extra={"length": len(user_prompt)})

        if "true/false" in prompt:
            return json.dumps([
                {
                    "question": f"Statement {i + 1} about the topic is accurate.",
                    "answer": i % 2 == 0,
                    "explanation": "Canned explanation for test mode.",
                }
                for i in range(self.item_count)
            ])

        if "multiple-choice" in prompt:
            return json.dumps([
                {
                    "question": f"Sample question {i + 1}?",
                    "options": ["Option A", "Option B", "Option C", "Option D"],
                    "correctAnswer": i % 4,
                    "explanation": "Canned explanation for test mode.",
                }
                for i in range(self.item_count)
            ])

        if "flashcards" in prompt:
            return json.dumps([
                {"front": f"Key concept {i + 1}", "back": f"Definition of key concept {i + 1}.", "hint": "Think clinically."}
                for i in range(self.item_count)
            ])

        sections = "\n\n".join(
            f"## Section {i + 1}\n\n- Key takeaway for section {i + 1} with clinical relevance and exam tips."
            for i in range(20)
        )
        return f"# Study Summary\n\nThis canned summary is produced in test mode.\n\n{sections}"


def get_generation_client() -> GenerationClient:
    if get_settings().test_mode:
        return TestModeGenerationClient()
    return OpenAIGenerationClient()
