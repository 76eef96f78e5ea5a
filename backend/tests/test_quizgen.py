import pytest
import requests

from quizlive.services.errors import GenerationValidationError, QuizGenerationError
from quizlive.services.quizgen import (
    QuizGenerationClient, validate_generated_questions, validate_generation_request, validate_question_shape,
)


def generated(count=2, **overrides):
    questions = []
    for i in range(count):
        q = {
            'body': f'Generated {i}?',
            'choices': [{'body': f'c{c}', 'is_correct': c == 1} for c in range(4)],
            'time_limit': 20,
            'points': 1000,
        }
        q.update(overrides)
        questions.append(q)
    return questions


class FakeResponse:
    def __init__(self, payload=None, status=200, bad_json=False):
        self.payload = payload
        self.status_code = status
        self.bad_json = bad_json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')

    def json(self):
        if self.bad_json:
            raise ValueError('no json')
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({'url': url, 'json': json, 'timeout': timeout})
        if self.error:
            raise self.error
        return self.response


def test_request_validation():
    body = validate_generation_request({'type': 'topic', 'content': 'Rivers', 'numberOfQuestions': 50})
    assert body == {'type': 'topic', 'content': 'Rivers', 'numberOfQuestions': 10, 'difficulty': 'medium'}
    assert validate_generation_request({'type': 'text', 'content': 'x', 'numberOfQuestions': 0})['numberOfQuestions'] == 1


@pytest.mark.parametrize('payload', [
    None,
    {'type': 'video', 'content': 'x'},
    {'type': 'topic', 'content': '   '},
    {'type': 'topic', 'content': 'x', 'numberOfQuestions': 'many'},
    {'type': 'topic', 'content': 'x', 'difficulty': 'brutal'},
])
def test_bad_requests(payload):
    with pytest.raises(GenerationValidationError):
        validate_generation_request(payload)


def test_valid_batch():
    questions = validate_generated_questions({'success': True, 'questions': generated(3)})
    assert len(questions) == 3
    assert [c.is_correct for c in questions[0].choices] == [False, True, False, False]


@pytest.mark.parametrize('bad', [
    {'choices': [{'body': 'a', 'is_correct': True}] * 3},
    {'choices': [{'body': f'c{c}', 'is_correct': True} for c in range(4)]},
    {'choices': [{'body': f'c{c}', 'is_correct': False} for c in range(4)]},
    {'time_limit': 5},
    {'time_limit': 31},
    {'points': 100},
    {'points': 2500},
    {'body': ''},
])
def test_one_bad_question_rejects_the_batch(bad):
    questions = generated(3)
    questions[2].update(bad)
    with pytest.raises(GenerationValidationError):
        validate_generated_questions({'questions': questions})


def test_batch_limits():
    with pytest.raises(GenerationValidationError):
        validate_generated_questions({'questions': []})
    with pytest.raises(GenerationValidationError):
        validate_generated_questions({'questions': generated(11)})
    assert len(validate_generated_questions(generated(10))) == 10


def test_import_shape_skips_range_checks():
    q = validate_question_shape(generated(1, points=100, time_limit=60)[0], 0)
    assert q.points == 100
    assert q.time_limit == 60


def test_client_posts_and_validates():
    http = FakeSession(FakeResponse({'success': True, 'questions': generated(2)}))
    client = QuizGenerationClient('http://quizgen.test/api', timeout=7, session=http)
    questions = client.generate('topic', 'Volcanoes', number_of_questions=2, difficulty='hard')
    assert len(questions) == 2
    call = http.calls[0]
    assert call['url'] == 'http://quizgen.test/api'
    assert call['timeout'] == 7
    assert call['json']['difficulty'] == 'hard'


@pytest.mark.parametrize('http', [
    FakeSession(error=requests.ConnectionError('refused')),
    FakeSession(FakeResponse(status=500)),
    FakeSession(FakeResponse(bad_json=True)),
    FakeSession(FakeResponse({'success': False, 'error': 'model overloaded'})),
])
def test_client_failures(http):
    client = QuizGenerationClient('http://quizgen.test/api', session=http)
    with pytest.raises(QuizGenerationError):
        client.generate('topic', 'Volcanoes')


def test_client_rejects_invalid_output():
    http = FakeSession(FakeResponse({'success': True, 'questions': generated(2, points=50)}))
    client = QuizGenerationClient('http://quizgen.test/api', session=http)
    with pytest.raises(GenerationValidationError):
        client.generate('topic', 'Volcanoes')


@pytest.mark.parametrize('bad', [{'points': -5}, {'points': 0}, {'time_limit': 0}, {'time_limit': -10}])
def test_import_shape_needs_positive_points_and_time(bad):
    with pytest.raises(GenerationValidationError):
        validate_question_shape(generated(1, **bad)[0], 0)
