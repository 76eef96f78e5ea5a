"""Client and validation for the external quiz-generation service.

The service is an outside collaborator; nothing it returns is trusted. A
response is accepted only if every question has exactly four choices with
exactly one marked correct, a time limit of 10-30 seconds and 500-2000
points. One bad question rejects the whole batch.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests

from quizlive.services.errors import GenerationValidationError, QuizGenerationError

logger = logging.getLogger(__name__)

SOURCE_TYPES = ('topic', 'text', 'url', 'pdf')
DIFFICULTIES = ('easy', 'medium', 'hard')
MAX_QUESTIONS = 10
DEFAULT_QUESTIONS = 5
CHOICES_PER_QUESTION = 4
TIME_LIMIT_RANGE = (10, 30)
POINTS_RANGE = (500, 2000)


@dataclass(frozen=True)
class GeneratedChoice:
    body: str
    is_correct: bool


@dataclass(frozen=True)
class GeneratedQuestion:
    body: str
    choices: List[GeneratedChoice] = field(default_factory=list)
    time_limit: int = 20
    points: int = 1000
    explanation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'body': self.body,
            'choices': [{'body': c.body, 'is_correct': c.is_correct} for c in self.choices],
            'time_limit': self.time_limit,
            'points': self.points,
            'explanation': self.explanation,
        }


def validate_generation_request(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    payload = payload or {}
    source_type = payload.get('type')
    content = payload.get('content')
    if source_type not in SOURCE_TYPES:
        raise GenerationValidationError(f"type must be one of {', '.join(SOURCE_TYPES)}")
    if not isinstance(content, str) or not content.strip():
        raise GenerationValidationError('content is required')
    count = payload.get('numberOfQuestions', DEFAULT_QUESTIONS)
    try:
        count = int(count)
    except (TypeError, ValueError):
        raise GenerationValidationError('numberOfQuestions must be an integer')
    difficulty = payload.get('difficulty') or 'medium'
    if difficulty not in DIFFICULTIES:
        raise GenerationValidationError(f"difficulty must be one of {', '.join(DIFFICULTIES)}")
    return {
        'type': source_type,
        'content': content,
        'numberOfQuestions': max(1, min(count, MAX_QUESTIONS)),
        'difficulty': difficulty,
    }


def validate_question_shape(raw: Any, index: int) -> GeneratedQuestion:
    """Four choices, exactly one correct. Shared with quiz import."""
    label = f"Question {index + 1}"
    if not isinstance(raw, dict):
        raise GenerationValidationError(f"{label} is not an object")
    body = raw.get('body')
    if not isinstance(body, str) or not body.strip():
        raise GenerationValidationError(f"{label} has no body")
    choices = raw.get('choices')
    if not isinstance(choices, list) or len(choices) != CHOICES_PER_QUESTION:
        raise GenerationValidationError(f"{label} must have exactly {CHOICES_PER_QUESTION} choices")
    parsed = []
    for c in choices:
        if not isinstance(c, dict) or not isinstance(c.get('body'), str) or not c['body'].strip():
            raise GenerationValidationError(f"{label} has a choice without a body")
        parsed.append(GeneratedChoice(body=c['body'], is_correct=c.get('is_correct') is True))
    correct = sum(1 for c in parsed if c.is_correct)
    if correct != 1:
        raise GenerationValidationError(f"{label} must have exactly one correct answer")

    time_limit = raw.get('time_limit', 20)
    points = raw.get('points', 1000)
    if isinstance(time_limit, bool) or not isinstance(time_limit, int):
        raise GenerationValidationError(f"{label} time_limit must be an integer")
    if isinstance(points, bool) or not isinstance(points, int):
        raise GenerationValidationError(f"{label} points must be an integer")
    if time_limit <= 0:
        raise GenerationValidationError(f"{label} time_limit must be positive")
    if points <= 0:
        raise GenerationValidationError(f"{label} points must be positive")
    return GeneratedQuestion(body=body, choices=parsed, time_limit=time_limit, points=points,
                             explanation=raw.get('explanation'))


def validate_generated_questions(payload: Any) -> List[GeneratedQuestion]:
    raw_questions = payload.get('questions') if isinstance(payload, dict) else payload
    if not isinstance(raw_questions, list) or not raw_questions:
        raise GenerationValidationError('Invalid response format from generator')
    if len(raw_questions) > MAX_QUESTIONS:
        raise GenerationValidationError(f"At most {MAX_QUESTIONS} questions may be generated")
    questions = []
    for index, raw in enumerate(raw_questions):
        q = validate_question_shape(raw, index)
        low, high = TIME_LIMIT_RANGE
        if not low <= q.time_limit <= high:
            raise GenerationValidationError(f"Question {index + 1} time_limit must be {low}-{high} seconds")
        low, high = POINTS_RANGE
        if not low <= q.points <= high:
            raise GenerationValidationError(f"Question {index + 1} points must be {low}-{high}")
        questions.append(q)
    return questions


class QuizGenerationClient:
    def __init__(self, base_url: str, timeout: float = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.http = session or requests.Session()

    def generate(self, source_type: str, content: str, number_of_questions: int = DEFAULT_QUESTIONS,
                 difficulty: str = 'medium') -> List[GeneratedQuestion]:
        body = validate_generation_request({
            'type': source_type,
            'content': content,
            'numberOfQuestions': number_of_questions,
            'difficulty': difficulty,
        })
        logger.info("[quizgen] type=%s questions=%s difficulty=%s",
                    body['type'], body['numberOfQuestions'], body['difficulty'])
        try:
            response = self.http.post(self.base_url, json=body, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            logger.error("[quizgen-failed] %s", exc)
            raise QuizGenerationError(f"Quiz generation failed: {exc}") from exc
        except ValueError as exc:
            raise QuizGenerationError('Quiz generation returned invalid JSON') from exc

        if isinstance(data, dict) and data.get('success') is False:
            raise QuizGenerationError(data.get('error') or 'Quiz generation failed')
        return validate_generated_questions(data)
