from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from quizlive.services.errors import IllegalTransition


class Phase(str, Enum):
    LOBBY = 'lobby'
    QUIZ = 'quiz'
    RESULTS = 'results'


# Allowed phase changes. Staying in QUIZ covers reveal/advance within a game.
TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
    Phase.LOBBY: frozenset({Phase.QUIZ}),
    Phase.QUIZ: frozenset({Phase.QUIZ, Phase.RESULTS}),
    Phase.RESULTS: frozenset(),
}

INITIAL_PHASE = Phase.LOBBY
TERMINAL_PHASES = frozenset(p for p, targets in TRANSITIONS.items() if not targets)


def check_transition(source: Phase, target: Phase) -> None:
    """Raise IllegalTransition unless ``source -> target`` is in the table."""
    if target not in TRANSITIONS[Phase(source)]:
        raise IllegalTransition(Phase(source).value, Phase(target).value)


def phase_index(phase) -> int:
    return list(Phase).index(Phase(phase))


@dataclass(frozen=True)
class GameSnapshot:
    """Immutable copy of the Game record as it was at one version."""

    id: int
    code: str
    phase: Phase
    quiz_set_id: int
    current_question_sequence: int = 0
    is_answer_revealed: bool = False
    team_mode: bool = False
    max_teams: int = 2
    version: int = 0
    host_id: Optional[int] = None
    question_started_at: Optional[float] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'GameSnapshot':
        return cls(
            id=row['id'],
            code=row.get('code') or '',
            phase=Phase(row['phase']),
            quiz_set_id=row['quiz_set_id'],
            current_question_sequence=int(row.get('current_question_sequence') or 0),
            is_answer_revealed=bool(row.get('is_answer_revealed')),
            team_mode=bool(row.get('team_mode')),
            max_teams=int(row.get('max_teams') or 2),
            version=int(row.get('version') or 0),
            host_id=row.get('host_id'),
            question_started_at=row.get('question_started_at'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['phase'] = self.phase.value
        return data
