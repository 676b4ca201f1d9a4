"""Question generation through an external text-generation model.

The model is untrusted: its output is parsed and validated in full, and any
problem surfaces as ``GenerationFailed`` so the host can simply retry. A
response is accepted whole or rejected whole; there is no partial use of a
batch with a bad item in it.
"""
import json
from typing import Iterable, Optional

from flask import current_app
import openai

from trivia_live.errors import GenerationFailed, ValidationFailed
from trivia_live.models import FINAL_INDEX, QUESTION_COUNT

# Replacement requests for this slot produce the sudden death tiebreaker
SUDDEN_DEATH_SLOT = 10

REQUIRED_FIELDS = ('question', 'answer', 'category')

BULK_PROMPT = """Generate 10 trivia questions with answers.

Constraints:
- Questions 1-9 are medium difficulty. Question 10 is the Final Jeopardy question and must be noticeably harder.
- Diverse categories: history, geography, sports, pop culture, science, literature, movies/TV, music.
- Each answer should be short (ideally 1-5 words). No essays.
- No trick questions, no ambiguity.
- Do NOT repeat the same category more than 2 times.

Return ONLY valid JSON with this exact shape:
{
  "questions": [
    { "question": "...", "answer": "...", "category": "..." },
    ... (10 total)
  ]
}
"""

SINGLE_PROMPT = """Generate ONE {difficulty} trivia question with a short answer.

Avoid these questions (do not repeat them):
{avoid}

Return ONLY valid JSON with this exact shape:
{{ "question": {{ "question": "...", "answer": "...", "category": "..." }} }}
"""


def extract_json(text: str):
    """Parse the JSON object spanning the first ``{`` to the last ``}``."""
    text = text or ''
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end <= start:
        raise ValidationFailed('No JSON object found in model output')
    try:
        return json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        raise ValidationFailed(f'Model output is not valid JSON: {exc.msg}') from exc


def validate_question(item, position: int) -> dict:
    if not isinstance(item, dict):
        raise ValidationFailed(f'Question {position} is not an object')
    cleaned = {}
    for field in REQUIRED_FIELDS:
        value = item.get(field)
        if not isinstance(value, str) or not value.strip():
            raise ValidationFailed(f'Question {position} is missing {field}')
        cleaned[field] = value.strip()
    return cleaned


def validate_bulk(payload) -> list:
    questions = payload.get('questions') if isinstance(payload, dict) else None
    if not isinstance(questions, list) or len(questions) != QUESTION_COUNT:
        raise ValidationFailed(f'Expected exactly {QUESTION_COUNT} questions')
    return [validate_question(item, i + 1) for i, item in enumerate(questions)]


def validate_single(payload) -> dict:
    item = payload.get('question') if isinstance(payload, dict) else None
    return validate_question(item, 1)


def build_replacement_prompt(index: int, avoid: Iterable[str]) -> str:
    if index == FINAL_INDEX:
        difficulty = 'hard, Final Jeopardy level'
    elif index == SUDDEN_DEATH_SLOT:
        difficulty = 'hard tiebreaker'
    else:
        difficulty = 'medium-difficulty'
    avoid_lines = '\n'.join(f'- {q}' for q in avoid if q) or '- (none)'
    return SINGLE_PROMPT.format(difficulty=difficulty, avoid=avoid_lines)


class QuestionGenerator:
    """Thin client around the OpenAI Responses API."""

    def __init__(self, api_key: Optional[str], model: str = 'gpt-4.1-mini', client=None):
        self.model = model
        self._api_key = api_key
        self._client = client

    @classmethod
    def from_config(cls, config) -> 'QuestionGenerator':
        return cls(config.get('OPENAI_API_KEY'), config.get('OPENAI_MODEL') or 'gpt-4.1-mini')

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise GenerationFailed('OPENAI_API_KEY not set')
            self._client = openai.OpenAI(api_key=self._api_key)
        return self._client

    def _complete(self, prompt: str, max_output_tokens: int) -> str:
        client = self._get_client()
        try:
            resp = client.responses.create(model=self.model, input=prompt, max_output_tokens=max_output_tokens)
        except openai.OpenAIError as exc:
            current_app.logger.warning(f"[generate-failed] model={self.model} request failed: {exc}")
            raise GenerationFailed(f'Question service unavailable: {exc}') from exc
        return (resp.output_text or '').strip()

    def generate_game(self) -> list:
        text = self._complete(BULK_PROMPT, 1200)
        try:
            return validate_bulk(extract_json(text))
        except ValidationFailed as exc:
            current_app.logger.warning(f"[generate-failed] model={self.model} game rejected: {exc.message} raw={text[:200]!r}")
            raise GenerationFailed(f'Generation failed: {exc.message}') from exc

    def generate_replacement(self, index: int, avoid: Iterable[str] = ()) -> dict:
        text = self._complete(build_replacement_prompt(index, avoid), 250)
        try:
            return validate_single(extract_json(text))
        except ValidationFailed as exc:
            current_app.logger.warning(
                f"[generate-failed] model={self.model} slot={index} rejected: {exc.message} raw={text[:200]!r}"
            )
            raise GenerationFailed(f'Generation failed: {exc.message}') from exc


def get_generator(flask_app) -> QuestionGenerator:
    generator = flask_app.extensions.get('question_generator')
    if generator is None:
        generator = QuestionGenerator.from_config(flask_app.config)
        flask_app.extensions['question_generator'] = generator
    return generator
