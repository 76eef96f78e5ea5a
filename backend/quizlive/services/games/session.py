"""Player-side reactive loop.

A session is a deterministic function of two inputs: the newest Game
snapshot it has seen and the participant's own answers. Events only ever
replace the snapshot (older versions are dropped), so missed, duplicated
or reordered feed events cannot make two sessions disagree once they have
seen the same latest version.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from quizlive.services.errors import AnswerRejected, GameNotFound, StoreUnavailable
from quizlive.services.feed import ChangeEvent, field_equals
from quizlive.services.games.answers import ALREADY_ANSWERED, UNAVAILABLE, SubmitResult, submit_answer
from quizlive.services.games.phases import GameSnapshot, Phase
from quizlive.services.games.scoring import elapsed_since, score_of
from quizlive.services.store import GAMES, QuestionData

logger = logging.getLogger(__name__)

SUBMIT_FAILED_NOTICE = 'Could not submit your answer, please try again'


class Screen(str, Enum):
    LOADING = 'loading'
    FAILED = 'failed'
    LOBBY = 'lobby'
    QUESTION = 'question'
    RESULTS = 'results'


class QuestionState(str, Enum):
    UNANSWERED = 'unanswered'
    ANSWERED = 'answered'
    REVEALED = 'revealed'


@dataclass(frozen=True)
class PlayerView:
    screen: Screen
    sequence: Optional[int] = None
    question_id: Optional[int] = None
    question_state: Optional[QuestionState] = None
    chosen_choice_id: Optional[int] = None
    is_correct: Optional[bool] = None
    question_count: int = 0
    error: Optional[str] = None


def derive_view(game: Optional[GameSnapshot], questions: Optional[Sequence[QuestionData]],
                answers: Mapping[int, int], load_error: Optional[str] = None) -> PlayerView:
    """Screen to show for (latest game snapshot, question set, own answers)."""
    if load_error:
        return PlayerView(Screen.FAILED, error=load_error)
    if game is None:
        return PlayerView(Screen.LOADING)
    count = len(questions) if questions is not None else 0
    if game.phase == Phase.LOBBY:
        return PlayerView(Screen.LOBBY, question_count=count)
    if game.phase == Phase.RESULTS:
        return PlayerView(Screen.RESULTS, question_count=count)

    seq = game.current_question_sequence
    if questions is None or seq >= len(questions):
        return PlayerView(Screen.LOADING, sequence=seq, question_count=count)
    question = questions[seq]
    chosen = answers.get(question.id)
    if game.is_answer_revealed:
        choice = question.choice(chosen) if chosen is not None else None
        return PlayerView(
            Screen.QUESTION, sequence=seq, question_id=question.id,
            question_state=QuestionState.REVEALED, chosen_choice_id=chosen,
            is_correct=choice.is_correct if choice else None, question_count=count,
        )
    state = QuestionState.ANSWERED if chosen is not None else QuestionState.UNANSWERED
    return PlayerView(Screen.QUESTION, sequence=seq, question_id=question.id,
                      question_state=state, chosen_choice_id=chosen, question_count=count)


@dataclass(frozen=True)
class LoadResult:
    ok: bool
    questions: Tuple[QuestionData, ...] = ()
    attempts: int = 0
    error: Optional[str] = None


def fetch_questions(store, quiz_set_id: int, attempts: int = 5, backoff_sec: float = 0.5,
                    max_backoff_sec: float = 8.0, sleep: Callable[[float], None] = time.sleep) -> LoadResult:
    """Load the ordered question set, retrying transient failures with backoff."""
    made = 0
    retrying = Retrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=backoff_sec, max=max_backoff_sec),
        retry=retry_if_exception_type(StoreUnavailable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        sleep=sleep,
        reraise=True,
    )
    try:
        for attempt in retrying:
            with attempt:
                made += 1
                questions = store.list_questions(quiz_set_id)
    except StoreUnavailable as exc:
        logger.error("[questions-failed] quiz_set=%s attempts=%s error=%s", quiz_set_id, made, exc)
        return LoadResult(False, attempts=made, error='Failed to load questions')
    return LoadResult(True, tuple(questions), attempts=made)


class PlayerSession:
    def __init__(self, store, feed, game_id: int, participant_id: int,
                 answer_window_ms: float = 20000, fetch_attempts: int = 5,
                 fetch_backoff_sec: float = 0.5, clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.feed = feed
        self.game_id = game_id
        self.participant_id = participant_id
        self.answer_window_ms = answer_window_ms
        self.fetch_attempts = fetch_attempts
        self.fetch_backoff_sec = fetch_backoff_sec
        self.clock = clock
        self.sleep = sleep
        self._reset()

    def _reset(self) -> None:
        self.game: Optional[GameSnapshot] = None
        self.questions: Optional[Tuple[QuestionData, ...]] = None
        self.answers: Dict[int, int] = {}
        self.scores: Dict[int, int] = {}
        self.load_error: Optional[str] = None
        # Inline message for a failed mutation; the view is left as it was
        self.notice: Optional[str] = None
        self.last_load: Optional[LoadResult] = None
        self.phases_seen: List[Phase] = []
        self.view = PlayerView(Screen.LOADING)
        self._shown_at: Dict[int, float] = {}
        self._subscription = None

    # ---- lifecycle ----

    def connect(self) -> PlayerView:
        # Subscribe before reading so no update between the read and the
        # subscription can be lost.
        self._subscription = self.feed.subscribe(GAMES, field_equals('id', self.game_id))
        snap = self.store.get_game(self.game_id)
        if snap is None:
            self.close()
            raise GameNotFound(f"game {self.game_id} not found")
        self._accept(snap)
        for a in self.store.answers_for_participant(self.participant_id):
            self.answers[a['question_id']] = a['choice_id']
            self.scores[a['question_id']] = a['score']
        self.load_questions()
        return self.view

    def load_questions(self) -> LoadResult:
        result = fetch_questions(self.store, self.game.quiz_set_id, attempts=self.fetch_attempts,
                                 backoff_sec=self.fetch_backoff_sec, sleep=self.sleep)
        self.last_load = result
        if result.ok:
            self.questions = result.questions
            self.load_error = None
        else:
            self.load_error = result.error
        self._rederive()
        return result

    def reconnect(self) -> PlayerView:
        """Drop everything local and resume from the current record."""
        self.close()
        self._reset()
        return self.connect()

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    # ---- events ----

    def handle_event(self, event: ChangeEvent) -> PlayerView:
        if event.table != GAMES or event.row.get('id') != self.game_id:
            return self.view
        if self._accept(GameSnapshot.from_row(event.row)):
            self._rederive()
        return self.view

    def pump(self, timeout: Optional[float] = None) -> PlayerView:
        """Apply every pending feed event; optionally wait for the first one."""
        if self._subscription is None:
            return self.view
        first = self._subscription.get(timeout)
        if first is None:
            return self.view
        self.handle_event(first)
        for event in self._subscription.drain():
            self.handle_event(event)
        return self.view

    def _accept(self, snap: GameSnapshot) -> bool:
        if self.game is not None and snap.version <= self.game.version:
            return False
        self.game = snap
        if not self.phases_seen or self.phases_seen[-1] != snap.phase:
            self.phases_seen.append(snap.phase)
        return True

    def _rederive(self) -> PlayerView:
        self.view = derive_view(self.game, self.questions, self.answers, self.load_error)
        return self.view

    # ---- answering ----

    def current_question(self) -> Optional[QuestionData]:
        if self.view.screen != Screen.QUESTION or self.questions is None:
            return None
        return self.questions[self.view.sequence]

    def mark_choices_shown(self, now: Optional[float] = None) -> Optional[float]:
        """Start this participant's answer window for the current question."""
        question = self.current_question()
        if question is None:
            return None
        return self._shown_at.setdefault(question.id, self.clock() if now is None else now)

    def submit(self, choice_id: int, now: Optional[float] = None) -> SubmitResult:
        question = self.current_question()
        if question is None:
            raise AnswerRejected('No question is open')
        if question.id in self.answers:
            return SubmitResult(ALREADY_ANSWERED, {'question_id': question.id,
                                                   'choice_id': self.answers[question.id]})
        choice = question.choice(choice_id)
        if choice is None:
            raise AnswerRejected('Choice does not belong to this question')

        now = self.clock() if now is None else now
        shown_at = self._shown_at.setdefault(question.id, now)
        score = score_of(choice.is_correct, elapsed_since(shown_at, now), self.answer_window_ms, question.points)
        try:
            result = submit_answer(self.store, self.participant_id, question.id, choice_id, score)
        except StoreUnavailable as exc:
            # Answers and view stay as they were; the same choice can be submitted again
            logger.warning("[submit-failed] participant=%s question=%s error=%s",
                           self.participant_id, question.id, exc)
            self.notice = SUBMIT_FAILED_NOTICE
            return SubmitResult(UNAVAILABLE)
        self.notice = None
        stored = result.answer or {'choice_id': choice_id, 'score': score}
        self.answers[question.id] = stored['choice_id']
        self.scores[question.id] = stored.get('score', score)
        self._rederive()
        return result
