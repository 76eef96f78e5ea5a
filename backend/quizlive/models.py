from quizlive import db, bcrypt
from flask_login import UserMixin
import string
import random
import time


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'username': self.username,
        }


class QuizSet(db.Model):
    __tablename__ = 'quiz_set'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    owner_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    questions = db.relationship('Question', back_populates='quiz_set', order_by='Question.order')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'owner_id': self.owner_id,
            'question_count': len(self.questions),
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    quiz_set_id = db.Column(db.Integer, db.ForeignKey('quiz_set.id'), nullable=False, index=True)
    body = db.Column(db.Text, nullable=False)
    order = db.Column(db.Integer, nullable=False, default=0)
    time_limit = db.Column(db.Integer, nullable=False, default=20)
    points = db.Column(db.Integer, nullable=False, default=1000)
    explanation = db.Column(db.Text, nullable=True)
    quiz_set = db.relationship('QuizSet', back_populates='questions')
    choices = db.relationship('Choice', back_populates='question', order_by='Choice.id',
                              cascade='all, delete-orphan')

    __table_args__ = (
        db.UniqueConstraint('quiz_set_id', 'order', name='uq_question_quiz_order'),
    )

    def to_dict(self):
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


class Choice(db.Model):
    __tablename__ = 'choice'
    id = db.Column(db.Integer, primary_key=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False, index=True)
    body = db.Column(db.Text, nullable=False)
    is_correct = db.Column(db.Boolean, default=False, nullable=False)
    question = db.relationship('Question', back_populates='choices')

    def to_dict(self):
        return {
            'id': self.id,
            'body': self.body,
            'is_correct': self.is_correct,
        }


def generate_game_code(length=4):
    """Generate a unique, short game code."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not Game.query.filter_by(code=code).first():
            return code


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(4), unique=True, index=True)
    host_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    quiz_set_id = db.Column(db.Integer, db.ForeignKey('quiz_set.id'), nullable=False)
    phase = db.Column(db.String(16), nullable=False, default='lobby')  # lobby, quiz, results
    current_question_sequence = db.Column(db.Integer, nullable=False, default=0)
    is_answer_revealed = db.Column(db.Boolean, nullable=False, default=False)
    team_mode = db.Column(db.Boolean, nullable=False, default=False)
    max_teams = db.Column(db.Integer, nullable=False, default=2)
    # Bumped on every write; phase transitions compare-and-set against it
    version = db.Column(db.Integer, nullable=False, default=0)
    question_started_at = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    participants = db.relationship('Participant', back_populates='game', order_by='Participant.id')

    def __init__(self, **kwargs):
        super(Game, self).__init__(**kwargs)
        if not self.code:
            self.code = generate_game_code()

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'host_id': self.host_id,
            'quiz_set_id': self.quiz_set_id,
            'phase': self.phase,
            'current_question_sequence': self.current_question_sequence,
            'is_answer_revealed': self.is_answer_revealed,
            'team_mode': self.team_mode,
            'max_teams': self.max_teams,
            'version': self.version,
            'question_started_at': self.question_started_at,
        }


class Participant(db.Model):
    __tablename__ = 'participant'
    id = db.Column(db.Integer, primary_key=True)
    game_id = db.Column(db.Integer, db.ForeignKey('game.id'), nullable=False, index=True)
    user_id = db.Column(db.String(64), nullable=False)
    nickname = db.Column(db.String(20), nullable=False)
    avatar_id = db.Column(db.String(32), nullable=True)
    team_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.Float, nullable=False, default=time.time)
    game = db.relationship('Game', back_populates='participants')

    __table_args__ = (
        db.UniqueConstraint('game_id', 'user_id', name='uq_participant_game_user'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'user_id': self.user_id,
            'nickname': self.nickname,
            'avatar_id': self.avatar_id,
            'team_id': self.team_id,
            'created_at': self.created_at,
        }


class Answer(db.Model):
    __tablename__ = 'answer'
    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(db.Integer, db.ForeignKey('participant.id'), nullable=False, index=True)
    question_id = db.Column(db.Integer, db.ForeignKey('question.id'), nullable=False, index=True)
    choice_id = db.Column(db.Integer, db.ForeignKey('choice.id'), nullable=False)
    score = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.Float, nullable=False, default=time.time)

    __table_args__ = (
        db.UniqueConstraint('participant_id', 'question_id', name='uq_answer_participant_question'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'participant_id': self.participant_id,
            'question_id': self.question_id,
            'choice_id': self.choice_id,
            'score': self.score,
            'created_at': self.created_at,
        }
