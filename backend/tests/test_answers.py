import pytest

from quizlive.models import Answer
from quizlive.services.errors import AnswerRejected, DuplicateAnswer
from quizlive.services.games.answers import ACCEPTED, ALREADY_ANSWERED, submit_answer
from quizlive.services.games.controller import GamePhaseController
from quizlive.services.store import ANSWERS


@pytest.fixture()
def live_game(store, make_game):
    game, participants = make_game(questions=3, players=2)
    GamePhaseController(store, clock=lambda: 500.0).start_game(game.id)
    questions = store.list_questions(game.quiz_set_id)
    return game, participants, questions


def test_first_answer_is_accepted(store, feed, live_game):
    game, (alice, _), questions = live_game
    q = questions[0]
    sub = feed.subscribe(ANSWERS)
    result = submit_answer(store, alice['id'], q.id, q.correct_choice.id, 800)
    assert result.status == ACCEPTED
    assert result.answer['score'] == 800
    events = sub.drain()
    assert [e.event_type for e in events] == ['insert']
    assert events[0].row['participant_id'] == alice['id']


def test_second_submission_is_already_answered(store, live_game):
    game, (alice, _), questions = live_game
    q = questions[0]
    wrong = next(c for c in q.choices if not c.is_correct)
    first = submit_answer(store, alice['id'], q.id, q.correct_choice.id, 900)
    second = submit_answer(store, alice['id'], q.id, wrong.id, 0)
    assert first.status == ACCEPTED
    assert second.status == ALREADY_ANSWERED
    # The stored answer is the first one, never overwritten
    assert second.answer['choice_id'] == q.correct_choice.id
    assert second.answer['score'] == 900
    assert Answer.query.filter_by(participant_id=alice['id'], question_id=q.id).count() == 1


def test_store_rejects_duplicate_rows(store, live_game):
    game, (alice, _), questions = live_game
    q = questions[0]
    store.insert_answer(alice['id'], q.id, q.correct_choice.id, 100)
    with pytest.raises(DuplicateAnswer):
        store.insert_answer(alice['id'], q.id, q.correct_choice.id, 100)


def test_each_participant_answers_independently(store, live_game):
    game, (alice, bob), questions = live_game
    q = questions[0]
    assert submit_answer(store, alice['id'], q.id, q.correct_choice.id, 900).accepted
    assert submit_answer(store, bob['id'], q.id, q.correct_choice.id, 400).accepted


def test_rejects_answers_in_lobby(store, make_game):
    game, (alice, _) = make_game()
    q = store.list_questions(game.quiz_set_id)[0]
    with pytest.raises(AnswerRejected):
        submit_answer(store, alice['id'], q.id, q.correct_choice.id, 100)


def test_rejects_questions_not_yet_open(store, live_game):
    game, (alice, _), questions = live_game
    q = questions[1]
    with pytest.raises(AnswerRejected):
        submit_answer(store, alice['id'], q.id, q.correct_choice.id, 100)


def test_rejects_choice_from_another_question(store, live_game):
    game, (alice, _), questions = live_game
    with pytest.raises(AnswerRejected):
        submit_answer(store, alice['id'], questions[0].id, questions[1].choices[0].id, 0)


@pytest.mark.parametrize('score', [-1, 1001, 12.5, '900', True, None])
def test_rejects_bad_scores(store, live_game, score):
    game, (alice, _), questions = live_game
    q = questions[0]
    with pytest.raises(AnswerRejected):
        submit_answer(store, alice['id'], q.id, q.correct_choice.id, score)


def test_rejects_unknown_participant(store, live_game):
    game, _, questions = live_game
    q = questions[0]
    with pytest.raises(AnswerRejected):
        submit_answer(store, 9999, q.id, q.correct_choice.id, 0)


def test_late_answer_is_still_recorded(store, live_game):
    game, (alice, _), questions = live_game
    controller = GamePhaseController(store)
    controller.reveal_answer(game.id)
    controller.advance_question(game.id)
    q = questions[0]
    result = submit_answer(store, alice['id'], q.id, q.correct_choice.id, 0)
    assert result.accepted


def test_server_scoring_ignores_client_score(store, live_game):
    game, (alice, bob), questions = live_game
    q = questions[0]
    # question_started_at=500, choices visible 4s later, answered 2s after that
    result = submit_answer(store, alice['id'], q.id, q.correct_choice.id, 1000,
                           scoring_mode='server', answer_window_ms=20000,
                           reveal_delay_ms=4000, now=506.0)
    assert result.answer['score'] == 900

    wrong = next(c for c in q.choices if not c.is_correct)
    result = submit_answer(store, bob['id'], q.id, wrong.id, 1000,
                           scoring_mode='server', answer_window_ms=20000,
                           reveal_delay_ms=4000, now=504.0)
    assert result.answer['score'] == 0
