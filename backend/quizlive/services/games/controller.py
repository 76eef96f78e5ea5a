"""Host-side phase controller.

The controller is the only writer of ``phase``, ``current_question_sequence``
and ``is_answer_revealed``. Each operation reads the latest snapshot, checks
its preconditions and writes with a compare-and-set on ``version``. When the
preconditions no longer hold the call is a no-op, so redundant triggers
(double clicks, timers racing the host) never move the game twice.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from quizlive.services.errors import GameNotFound
from quizlive.services.games.phases import GameSnapshot, Phase, check_transition

logger = logging.getLogger(__name__)

# Reasons a transition did not apply
NOT_IN_LOBBY = 'not_in_lobby'
NOT_IN_QUIZ = 'not_in_quiz'
ALREADY_REVEALED = 'already_revealed'
NOT_REVEALED = 'not_revealed'
STALE_SEQUENCE = 'stale_sequence'
NO_PARTICIPANTS = 'no_participants'
NO_QUESTIONS = 'no_questions'
CONFLICT = 'conflict'

# Reasons that are a host error rather than a redundant call
BLOCKING_REASONS = frozenset({NO_PARTICIPANTS, NO_QUESTIONS})

Plan = Tuple[Optional[Dict[str, Any]], Optional[str]]


@dataclass(frozen=True)
class TransitionResult:
    applied: bool
    snapshot: GameSnapshot
    reason: Optional[str] = None

    @property
    def blocked(self) -> bool:
        return self.reason in BLOCKING_REASONS


class GamePhaseController:
    def __init__(self, store, max_attempts: int = 3, clock: Callable[[], float] = time.time):
        self.store = store
        self.max_attempts = max(1, int(max_attempts))
        self.clock = clock

    def start_game(self, game_id: int) -> TransitionResult:
        def plan(snap: GameSnapshot) -> Plan:
            if snap.phase != Phase.LOBBY:
                return None, NOT_IN_LOBBY
            if self.store.count_participants(snap.id) < 1:
                return None, NO_PARTICIPANTS
            if self.store.count_questions(snap.quiz_set_id) < 1:
                return None, NO_QUESTIONS
            return {
                'phase': Phase.QUIZ,
                'current_question_sequence': 0,
                'is_answer_revealed': False,
                'question_started_at': self.clock(),
            }, None

        return self._transition('start', game_id, plan)

    def reveal_answer(self, game_id: int, expected_sequence: Optional[int] = None) -> TransitionResult:
        def plan(snap: GameSnapshot) -> Plan:
            if snap.phase != Phase.QUIZ:
                return None, NOT_IN_QUIZ
            if expected_sequence is not None and snap.current_question_sequence != expected_sequence:
                return None, STALE_SEQUENCE
            if snap.is_answer_revealed:
                return None, ALREADY_REVEALED
            return {'is_answer_revealed': True}, None

        return self._transition('reveal', game_id, plan)

    def advance_question(self, game_id: int, expected_sequence: Optional[int] = None) -> TransitionResult:
        def plan(snap: GameSnapshot) -> Plan:
            if snap.phase != Phase.QUIZ:
                return None, NOT_IN_QUIZ
            if expected_sequence is not None and snap.current_question_sequence != expected_sequence:
                return None, STALE_SEQUENCE
            if not snap.is_answer_revealed:
                return None, NOT_REVEALED
            total = self.store.count_questions(snap.quiz_set_id)
            if snap.current_question_sequence + 1 < total:
                return {
                    'current_question_sequence': snap.current_question_sequence + 1,
                    'is_answer_revealed': False,
                    'question_started_at': self.clock(),
                }, None
            return {'phase': Phase.RESULTS}, None

        return self._transition('advance', game_id, plan)

    def _transition(self, name: str, game_id: int, plan: Callable[[GameSnapshot], Plan]) -> TransitionResult:
        snap = None
        for attempt in range(1, self.max_attempts + 1):
            snap = self.store.get_game(game_id)
            if snap is None:
                raise GameNotFound(f"game {game_id} not found")
            changes, reason = plan(snap)
            if changes is None:
                logger.info("[phase-noop] game=%s op=%s reason=%s phase=%s seq=%s",
                            game_id, name, reason, snap.phase.value, snap.current_question_sequence)
                return TransitionResult(False, snap, reason)
            check_transition(snap.phase, Phase(changes.get('phase', snap.phase)))
            updated = self.store.compare_and_set_game(game_id, snap.version, changes)
            if updated is not None:
                logger.info("[phase-%s] game=%s phase=%s seq=%s revealed=%s version=%s",
                            name, game_id, updated.phase.value, updated.current_question_sequence,
                            updated.is_answer_revealed, updated.version)
                return TransitionResult(True, updated, None)
            logger.info("[phase-retry] game=%s op=%s attempt=%s", game_id, name, attempt)
        return TransitionResult(False, snap, CONFLICT)
