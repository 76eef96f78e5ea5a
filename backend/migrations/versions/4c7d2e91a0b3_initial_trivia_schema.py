"""initial trivia schema: quiz sets, questions, games, participants, answers

Revision ID: 4c7d2e91a0b3
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7d2e91a0b3'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    op.create_table(
        'quiz_set',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
    )
    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('quiz_set_id', sa.Integer(), sa.ForeignKey('quiz_set.id'), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('time_limit', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.UniqueConstraint('quiz_set_id', 'order', name='uq_question_quiz_order'),
    )
    op.create_index('ix_question_quiz_set_id', 'question', ['quiz_set_id'])
    op.create_table(
        'choice',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('ix_choice_question_id', 'choice', ['question_id'])
    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=4), nullable=True),
        sa.Column('host_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
        sa.Column('quiz_set_id', sa.Integer(), sa.ForeignKey('quiz_set.id'), nullable=False),
        sa.Column('phase', sa.String(length=16), nullable=False, server_default='lobby'),
        sa.Column('current_question_sequence', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_answer_revealed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('team_mode', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('max_teams', sa.Integer(), nullable=False, server_default='2'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('question_started_at', sa.Float(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
    )
    op.create_index('ix_game_code', 'game', ['code'], unique=True)
    op.create_table(
        'participant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id'), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('nickname', sa.String(length=20), nullable=False),
        sa.Column('avatar_id', sa.String(length=32), nullable=True),
        sa.Column('team_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('game_id', 'user_id', name='uq_participant_game_user'),
    )
    op.create_index('ix_participant_game_id', 'participant', ['game_id'])
    op.create_table(
        'answer',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('participant_id', sa.Integer(), sa.ForeignKey('participant.id'), nullable=False),
        sa.Column('question_id', sa.Integer(), sa.ForeignKey('question.id'), nullable=False),
        sa.Column('choice_id', sa.Integer(), sa.ForeignKey('choice.id'), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.Float(), nullable=False),
        sa.UniqueConstraint('participant_id', 'question_id', name='uq_answer_participant_question'),
    )
    op.create_index('ix_answer_participant_id', 'answer', ['participant_id'])
    op.create_index('ix_answer_question_id', 'answer', ['question_id'])


def downgrade():
    for index, table in (
        ('ix_answer_question_id', 'answer'),
        ('ix_answer_participant_id', 'answer'),
        ('ix_participant_game_id', 'participant'),
        ('ix_game_code', 'game'),
        ('ix_choice_question_id', 'choice'),
        ('ix_question_quiz_set_id', 'question'),
    ):
        op.drop_index(index, table_name=table)
    op.drop_table('answer')
    op.drop_table('participant')
    op.drop_table('game')
    op.drop_table('choice')
    op.drop_table('question')
    op.drop_table('quiz_set')
