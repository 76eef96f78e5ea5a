import os
import sys
import pytest

# Ensure the backend root (containing the `quizlive` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from quizlive import create_app, db, socketio
from quizlive.services.feed import ChangeFeed
from quizlive.services.store import GameStore


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_ENABLED = False
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
    ANSWER_WINDOW_MS = 20000
    CHOICE_REVEAL_DELAY_MS = 4000
    REVEAL_HOLD_SEC = 0
    AUTO_ADVANCE = False
    SCORING_MODE = 'client'
    TRANSITION_MAX_ATTEMPTS = 3
    QUESTION_FETCH_ATTEMPTS = 3
    QUESTION_FETCH_BACKOFF_SEC = 0
    CONTROLLER_DEBOUNCE_MS = 0
    TIMER_HEARTBEAT_SEC = 0
    QUIZGEN_URL = 'http://quizgen.test/api/generate-quiz'
    QUIZGEN_TIMEOUT_SEC = 5


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)

    # Requests reuse the fixture's long-lived app context, so drop
    # Flask-Login's cached user after each one to keep clients isolated.
    @application.teardown_request
    def _forget_login_user(exc):
        from flask import g
        g.pop('_login_user', None)

    with application.app_context():
        import quizlive.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()
    from quizlive.api.games import _last_controller_action
    from quizlive.services.games.scheduler import reset_timers
    _last_controller_action.clear()
    reset_timers()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


@pytest.fixture()
def feed():
    return ChangeFeed()


@pytest.fixture()
def store(flask_app, feed):
    return GameStore(db.session, feed)


def question_payload(index, correct=0, points=1000, time_limit=20):
    return {
        'body': f'Question {index + 1}?',
        'choices': [{'body': f'Option {c}', 'is_correct': c == correct} for c in range(4)],
        'time_limit': time_limit,
        'points': points,
    }


@pytest.fixture()
def make_quiz(store):
    def _make(count=3, points=1000):
        quiz = store.create_quiz_set('Test quiz')
        store.insert_questions(quiz.id, [question_payload(i, correct=i % 4, points=points) for i in range(count)])
        return quiz
    return _make


@pytest.fixture()
def make_game(store, make_quiz):
    """Game in the lobby with ``players`` participants joined."""
    def _make(questions=3, players=2, team_mode=False, max_teams=2):
        quiz = make_quiz(questions)
        game = store.create_game(quiz.id, team_mode=team_mode, max_teams=max_teams)
        participants = [
            store.add_participant(game.id, f'device-{i}', f'Player{i}', 'cat')
            for i in range(players)
        ]
        return game, participants
    return _make


@pytest.fixture()
def host_client(flask_app):
    c = flask_app.test_client()
    res = c.post('/api/register', json={'username': 'host', 'password': 'password'})
    assert res.status_code == 201
    return c


@pytest.fixture()
def table_outage(flask_app):
    """Context manager that hides one table, as a dropped database would."""
    from contextlib import contextmanager
    from sqlalchemy import text

    @contextmanager
    def _outage(table):
        db.session.execute(text(f'ALTER TABLE {table} RENAME TO {table}_offline'))
        db.session.commit()
        try:
            yield
        finally:
            db.session.rollback()
            db.session.execute(text(f'ALTER TABLE {table}_offline RENAME TO {table}'))
            db.session.commit()
    return _outage
