"""Persistent store used by the game engine.

``GameStore`` wraps one SQLAlchemy session and one change feed. It is built
explicitly and handed to each component, so tests can swap either side.
Every committed write publishes a row-level event on the feed.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import selectinload

from quizlive import db
from quizlive.models import Answer, Choice, Game, Participant, Question, QuizSet
from quizlive.services.errors import DuplicateAnswer, DuplicateParticipant, StoreUnavailable
from quizlive.services.feed import INSERT, UPDATE, ChangeFeed
from quizlive.services.games.phases import GameSnapshot, Phase

logger = logging.getLogger(__name__)

GAMES = 'games'
PARTICIPANTS = 'participants'
ANSWERS = 'answers'


@dataclass(frozen=True)
class ChoiceData:
    id: int
    body: str
    is_correct: bool

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'body': self.body, 'is_correct': self.is_correct}


@dataclass(frozen=True)
class QuestionData:
    id: int
    quiz_set_id: int
    body: str
    order: int
    time_limit: int
    points: int
    choices: Tuple[ChoiceData, ...] = field(default_factory=tuple)
    explanation: Optional[str] = None

    def choice(self, choice_id) -> Optional[ChoiceData]:
        for c in self.choices:
            if c.id == choice_id:
                return c
        return None

    @property
    def correct_choice(self) -> Optional[ChoiceData]:
        return next((c for c in self.choices if c.is_correct), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'quiz_set_id': self.quiz_set_id,
            'body': self.body,
            'order': self.order,
            'time_limit': self.time_limit,
            'points': self.points,
            'explanation': self.explanation,
            'choices': [c.to_dict() for c in self.choices],
        }

    @classmethod
    def from_model(cls, q: Question) -> 'QuestionData':
        return cls(
            id=q.id,
            quiz_set_id=q.quiz_set_id,
            body=q.body,
            order=q.order,
            time_limit=q.time_limit,
            points=q.points,
            explanation=q.explanation,
            choices=tuple(ChoiceData(id=c.id, body=c.body, is_correct=bool(c.is_correct)) for c in q.choices),
        )


def snapshot_of(game: Game) -> GameSnapshot:
    return GameSnapshot.from_row(game.to_dict())


class GameStore:
    def __init__(self, session, feed: ChangeFeed):
        self.session = session
        self.feed = feed

    @contextmanager
    def _unavailable_on_outage(self, action: str):
        """Roll back and raise StoreUnavailable when the database drops out.

        The session stays usable afterwards, so a long-lived caller can retry.
        """
        try:
            yield
        except OperationalError as exc:
            self.session.rollback()
            logger.warning("[store-unavailable] action=%s error=%s", action, exc)
            raise StoreUnavailable(f"{action} failed: {exc}") from exc

    # ---- games ----

    def _load_game(self, game_id) -> Optional[Game]:
        stmt = select(Game).where(Game.id == game_id).execution_options(populate_existing=True)
        return self.session.execute(stmt).scalar_one_or_none()

    def get_game(self, game_id) -> Optional[GameSnapshot]:
        with self._unavailable_on_outage('get_game'):
            game = self._load_game(game_id)
        return snapshot_of(game) if game else None

    def get_game_by_code(self, code: str) -> Optional[GameSnapshot]:
        stmt = select(Game).where(Game.code == (code or '').upper()).execution_options(populate_existing=True)
        with self._unavailable_on_outage('get_game_by_code'):
            game = self.session.execute(stmt).scalar_one_or_none()
        return snapshot_of(game) if game else None

    def create_game(self, quiz_set_id: int, host_id: Optional[int] = None,
                    team_mode: bool = False, max_teams: int = 2) -> GameSnapshot:
        game = Game(quiz_set_id=quiz_set_id, host_id=host_id, team_mode=team_mode,
                    max_teams=max_teams, phase=Phase.LOBBY.value)
        with self._unavailable_on_outage('create_game'):
            self.session.add(game)
            self.session.commit()
        snap = snapshot_of(game)
        self.feed.publish(INSERT, GAMES, snap.to_dict())
        return snap

    def compare_and_set_game(self, game_id: int, expected_version: int,
                             changes: Dict[str, Any]) -> Optional[GameSnapshot]:
        """Apply ``changes`` only if the row is still at ``expected_version``.

        Returns the new snapshot, or None when another writer got there first.
        """
        values = {k: (v.value if isinstance(v, Phase) else v) for k, v in changes.items()}
        values['version'] = expected_version + 1
        stmt = (
            update(Game)
            .where(Game.id == game_id, Game.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._unavailable_on_outage('compare_and_set_game'):
            result = self.session.execute(stmt)
            if result.rowcount != 1:
                self.session.rollback()
                logger.info("[cas-conflict] game=%s expected_version=%s", game_id, expected_version)
                return None
            self.session.commit()
        snap = self.get_game(game_id)
        self.feed.publish(UPDATE, GAMES, snap.to_dict())
        return snap

    # ---- questions ----

    def count_questions(self, quiz_set_id: int) -> int:
        return self.session.scalar(select(func.count(Question.id)).where(Question.quiz_set_id == quiz_set_id)) or 0

    def list_questions(self, quiz_set_id: int) -> List[QuestionData]:
        """Ordered questions with their choices, in one query."""
        stmt = (
            select(Question)
            .where(Question.quiz_set_id == quiz_set_id)
            .options(selectinload(Question.choices))
            .order_by(Question.order)
        )
        with self._unavailable_on_outage('list_questions'):
            return [QuestionData.from_model(q) for q in self.session.execute(stmt).scalars()]

    def get_question(self, question_id: int) -> Optional[QuestionData]:
        stmt = select(Question).where(Question.id == question_id).options(selectinload(Question.choices))
        with self._unavailable_on_outage('get_question'):
            q = self.session.execute(stmt).scalar_one_or_none()
        return QuestionData.from_model(q) if q else None

    def get_quiz_set(self, quiz_set_id: int) -> Optional[QuizSet]:
        return self.session.get(QuizSet, quiz_set_id)

    def create_quiz_set(self, name: str, owner_id: Optional[int] = None) -> QuizSet:
        quiz = QuizSet(name=name, owner_id=owner_id)
        with self._unavailable_on_outage('create_quiz_set'):
            self.session.add(quiz)
            self.session.commit()
        return quiz

    def insert_questions(self, quiz_set_id: int, questions: Iterable[Dict[str, Any]]) -> List[QuestionData]:
        """Append already-validated questions to a quiz set in one commit."""
        start = self.session.scalar(
            select(func.max(Question.order)).where(Question.quiz_set_id == quiz_set_id)
        )
        next_order = 0 if start is None else start + 1
        created = []
        try:
            for offset, q in enumerate(questions):
                question = Question(
                    quiz_set_id=quiz_set_id,
                    body=q['body'],
                    order=next_order + offset,
                    time_limit=q['time_limit'],
                    points=q['points'],
                    explanation=q.get('explanation'),
                )
                question.choices = [Choice(body=c['body'], is_correct=bool(c['is_correct'])) for c in q['choices']]
                self.session.add(question)
                created.append(question)
            self.session.commit()
        except OperationalError as exc:
            self.session.rollback()
            raise StoreUnavailable(f"insert_questions failed: {exc}") from exc
        except Exception:
            self.session.rollback()
            raise
        return [QuestionData.from_model(q) for q in created]

    # ---- participants ----

    def add_participant(self, game_id: int, user_id: str, nickname: str,
                        avatar_id: Optional[str] = None) -> Dict[str, Any]:
        participant = Participant(game_id=game_id, user_id=user_id, nickname=nickname, avatar_id=avatar_id)
        self.session.add(participant)
        try:
            with self._unavailable_on_outage('add_participant'):
                self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateParticipant(game_id, user_id) from exc
        row = participant.to_dict()
        self.feed.publish(INSERT, PARTICIPANTS, row)
        return row

    def get_participant(self, participant_id) -> Optional[Dict[str, Any]]:
        with self._unavailable_on_outage('get_participant'):
            p = self.session.get(Participant, participant_id)
        return p.to_dict() if p else None

    def find_participant(self, game_id: int, user_id: str) -> Optional[Dict[str, Any]]:
        p = Participant.query.filter_by(game_id=game_id, user_id=user_id).first()
        return p.to_dict() if p else None

    def list_participants(self, game_id: int) -> List[Dict[str, Any]]:
        stmt = select(Participant).where(Participant.game_id == game_id).order_by(Participant.id)
        return [p.to_dict() for p in self.session.execute(stmt).scalars()]

    def count_participants(self, game_id: int) -> int:
        return self.session.scalar(select(func.count(Participant.id)).where(Participant.game_id == game_id)) or 0

    def set_participant_team(self, participant_id: int, team_id: Optional[int]) -> Dict[str, Any]:
        with self._unavailable_on_outage('set_participant_team'):
            p = self.session.get(Participant, participant_id)
            p.team_id = team_id
            self.session.commit()
        row = p.to_dict()
        self.feed.publish(UPDATE, PARTICIPANTS, row)
        return row

    # ---- answers ----

    def insert_answer(self, participant_id: int, question_id: int, choice_id: int, score: int) -> Dict[str, Any]:
        answer = Answer(participant_id=participant_id, question_id=question_id, choice_id=choice_id, score=score)
        self.session.add(answer)
        try:
            with self._unavailable_on_outage('insert_answer'):
                self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateAnswer(participant_id, question_id) from exc
        row = answer.to_dict()
        self.feed.publish(INSERT, ANSWERS, row)
        return row

    def get_answer(self, participant_id: int, question_id: int) -> Optional[Dict[str, Any]]:
        with self._unavailable_on_outage('get_answer'):
            a = Answer.query.filter_by(participant_id=participant_id, question_id=question_id).first()
        return a.to_dict() if a else None

    def answers_for_participant(self, participant_id: int) -> List[Dict[str, Any]]:
        stmt = select(Answer).where(Answer.participant_id == participant_id).order_by(Answer.id)
        with self._unavailable_on_outage('answers_for_participant'):
            return [a.to_dict() for a in self.session.execute(stmt).scalars()]

    def answers_for_game(self, game_id: int) -> List[Dict[str, Any]]:
        stmt = (
            select(Answer, Choice.is_correct)
            .join(Participant, Participant.id == Answer.participant_id)
            .join(Choice, Choice.id == Answer.choice_id)
            .where(Participant.game_id == game_id)
            .order_by(Answer.id)
        )
        rows = []
        for answer, is_correct in self.session.execute(stmt):
            row = answer.to_dict()
            row['is_correct'] = bool(is_correct)
            rows.append(row)
        return rows


def current_store() -> GameStore:
    """Store bound to the request's session and the application's feed."""
    return GameStore(db.session, current_app.extensions['change_feed'])
