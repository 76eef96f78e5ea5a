import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from quizlive.services.errors import AnswerRejected, DuplicateAnswer
from quizlive.services.games.phases import Phase
from quizlive.services.games.scoring import elapsed_since, score_of

logger = logging.getLogger(__name__)

ACCEPTED = 'accepted'
ALREADY_ANSWERED = 'already_answered'
# Store outage; nothing was recorded
UNAVAILABLE = 'unavailable'


@dataclass(frozen=True)
class SubmitResult:
    status: str
    answer: Optional[Dict[str, Any]] = None

    @property
    def accepted(self) -> bool:
        return self.status == ACCEPTED


def _validated_context(store, participant_id, question_id, choice_id):
    participant = store.get_participant(participant_id)
    if participant is None:
        raise AnswerRejected('Unknown participant')
    game = store.get_game(participant['game_id'])
    if game is None:
        raise AnswerRejected('Unknown game')
    question = store.get_question(question_id)
    if question is None or question.quiz_set_id != game.quiz_set_id:
        raise AnswerRejected('Question does not belong to this game')
    choice = question.choice(choice_id)
    if choice is None:
        raise AnswerRejected('Choice does not belong to this question')
    if game.phase == Phase.LOBBY:
        raise AnswerRejected('Game has not started')
    if game.phase == Phase.QUIZ and question.order > game.current_question_sequence:
        raise AnswerRejected('Question is not open yet')
    return participant, game, question, choice


def server_score(game, question, choice, answer_window_ms: float, reveal_delay_ms: float,
                 now: Optional[float] = None) -> int:
    """Score from the server clock instead of the client payload.

    Only the live question can earn points; anything else is past its window.
    """
    now = time.time() if now is None else now
    live = (game.phase == Phase.QUIZ
            and question.order == game.current_question_sequence
            and game.question_started_at is not None)
    if not live:
        return 0
    shown_at = game.question_started_at + reveal_delay_ms / 1000.0
    return score_of(choice.is_correct, elapsed_since(shown_at, now), answer_window_ms, question.points)


def submit_answer(store, participant_id: int, question_id: int, choice_id: int, score=None,
                  scoring_mode: str = 'client', answer_window_ms: float = 20000,
                  reveal_delay_ms: float = 0, now: Optional[float] = None) -> SubmitResult:
    """Record one answer; a second attempt for the same question is not an error.

    The store's unique constraint on (participant, question) decides which
    attempt wins; the loser gets the existing row back as ``already_answered``.
    """
    participant, game, question, choice = _validated_context(store, participant_id, question_id, choice_id)

    if scoring_mode == 'server':
        score = server_score(game, question, choice, answer_window_ms, reveal_delay_ms, now)
    else:
        if isinstance(score, bool) or not isinstance(score, int):
            raise AnswerRejected('Score must be an integer')
        if score < 0 or score > question.points:
            raise AnswerRejected(f'Score must be between 0 and {question.points}')

    try:
        row = store.insert_answer(participant_id, question_id, choice_id, score)
    except DuplicateAnswer:
        logger.info("[answer-duplicate] participant=%s question=%s", participant_id, question_id)
        return SubmitResult(ALREADY_ANSWERED, store.get_answer(participant_id, question_id))
    logger.info("[answer] game=%s participant=%s question=%s score=%s",
                game.id, participant_id, question_id, score)
    return SubmitResult(ACCEPTED, row)
