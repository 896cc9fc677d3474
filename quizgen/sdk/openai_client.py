"""
Metered quiz generation client.

Wraps OpenAI chat completions behind the monthly quota: the quota is checked
before the call and usage is recorded only after a quiz was produced.
"""

import json
import re
from typing import Any, Dict, List, Mapping, Optional

from openai import OpenAI

from ..config.loader import DEFAULT_COST_ESTIMATES, DEFAULT_MODEL, GenerationConfig
from ..core.quizzes import validate_questions
from ..core.usage import GENERATE_QUIZ, UPLOAD_PDF, UsageMeter

QUIZ_FORMAT = """Respond with ONLY a JSON object of this shape:
{"title": "Quiz title", "description": "Brief description", "questions": [
  {"id": 1, "type": "multiple_choice", "question": "...", "options": ["...", "..."],
   "correct_answer": 0, "explanation": "..."},
  {"id": 2, "type": "text", "question": "...", "correct_answer": "...",
   "explanation": "..."}
]}
Create 5-10 questions."""

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


def parse_quiz(text: str) -> Dict[str, Any]:
    """Extract and validate the quiz object from model output.

    Args:
        text: Raw completion text, possibly with prose around the JSON

    Returns:
        Dictionary with ``title``, ``description`` and ``questions``

    Raises:
        ValueError: If no valid quiz object can be read
    """
    match = _JSON_OBJECT.search(text)
    try:
        data = json.loads(match.group(0) if match else text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Model returned invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Model output must be a JSON object")
    if not isinstance(data.get("title"), str) or not data["title"].strip():
        raise ValueError("Model output is missing a title")
    questions = data.get("questions")
    if not isinstance(questions, list) or not questions:
        raise ValueError("Model output has no questions")
    validate_questions(questions)

    return {
        "title": data["title"],
        "description": data.get("description") or "",
        "questions": questions,
    }


class MeteredQuizGenerator:
    """OpenAI-backed quiz generator that consumes monthly quota.

    Failures of the model call or of parsing propagate and consume nothing.
    """

    def __init__(
        self,
        meter: UsageMeter,
        model: str = DEFAULT_MODEL,
        cost_estimates: Optional[Mapping[str, float]] = None
    ):
        """Initialize the generator.

        Args:
            meter: Usage meter gating and recording each generation
            model: OpenAI model name
            cost_estimates: Estimated cost per action name

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.meter = meter
        self.model = model
        self.cost_estimates = dict(cost_estimates or DEFAULT_COST_ESTIMATES)
        self.client = OpenAI()

    @classmethod
    def from_config(cls, meter: UsageMeter, config: GenerationConfig) -> "MeteredQuizGenerator":
        """Build a generator from the ``generation`` configuration section."""
        return cls(
            meter,
            model=config.model,
            cost_estimates={action: config.cost_for(action) for action in (GENERATE_QUIZ, UPLOAD_PDF)},
        )

    def generate_from_prompt(self, user_id: str, prompt: str) -> Dict[str, Any]:
        """Generate a quiz from a free-text prompt.

        Raises:
            ValueError: If the prompt is empty or the output is unusable
            QuotaExceededError: If the user has no quota left this month
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt is required and cannot be empty")

        messages = [
            {"role": "system", "content": QUIZ_FORMAT},
            {"role": "user", "content": f"Generate a quiz based on this prompt: {prompt}"},
        ]
        return self.meter.run_metered(
            user_id,
            GENERATE_QUIZ,
            lambda: self._complete(messages),
            prompt_text=prompt,
            cost_estimate=self.cost_estimates.get(GENERATE_QUIZ, 0.0),
        )

    def generate_from_document(
        self,
        user_id: str,
        text: str,
        file_name: str,
        custom_prompt: Optional[str] = None
    ) -> Dict[str, Any]:
        """Generate a quiz from text extracted from an uploaded document.

        Raises:
            ValueError: If the text is empty or the output is unusable
            QuotaExceededError: If the user has no quota left this month
        """
        if not text or not text.strip():
            raise ValueError("document text is required and cannot be empty")

        instructions = "Generate a quiz from the following document."
        if custom_prompt:
            instructions += f" Additional instructions: {custom_prompt}"
        messages = [
            {"role": "system", "content": QUIZ_FORMAT},
            {"role": "user", "content": f"{instructions}\n\n{text}"},
        ]
        prompt_text = f"PDF: {file_name}"
        if custom_prompt:
            prompt_text += f" | Prompt: {custom_prompt}"
        return self.meter.run_metered(
            user_id,
            UPLOAD_PDF,
            lambda: self._complete(messages),
            prompt_text=prompt_text,
            cost_estimate=self.cost_estimates.get(UPLOAD_PDF, 0.0),
        )

    def _complete(self, messages: List[Dict[str, str]]) -> Dict[str, Any]:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=0.7,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ValueError("Model returned no content")
        return parse_quiz(content)
