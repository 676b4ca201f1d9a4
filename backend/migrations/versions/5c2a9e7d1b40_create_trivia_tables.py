"""create room, player, submission, wager and final_answer tables

Revision ID: 5c2a9e7d1b40
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e7d1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'room',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_code', sa.String(length=6), nullable=False),
        sa.Column('host_secret', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(length=60), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('questions', sa.Text(), nullable=False),
        sa.Column('current_index', sa.Integer(), nullable=False),
        sa.Column('revealed', sa.Boolean(), nullable=False),
        sa.Column('accepting_answers', sa.Boolean(), nullable=False),
        sa.Column('revealed_at', sa.Float(), nullable=True),
        sa.Column('final_wagers_open', sa.Boolean(), nullable=False),
        sa.Column('final_answers_open', sa.Boolean(), nullable=False),
        sa.Column('final_revealed_answer', sa.Boolean(), nullable=False),
        sa.Column('sd_active', sa.Boolean(), nullable=False),
        sa.Column('sd_question', sa.Text(), nullable=True),
        sa.Column('sd_eligible_player_ids', sa.Text(), nullable=True),
        sa.Column('sd_revealed', sa.Boolean(), nullable=False),
        sa.Column('sd_accepting_answers', sa.Boolean(), nullable=False),
        sa.Column('sd_revealed_at', sa.Float(), nullable=True),
        sa.Column('sd_winner_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('room', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_room_room_code'), ['room_code'], unique=True)

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['room_id'], ['room.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id', 'player_id', name='uq_player_room_player'),
    )
    with op.batch_alter_table('player', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_player_room_id'), ['room_id'], unique=False)

    op.create_table(
        'submission',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=80), nullable=False),
        sa.Column('player_id', sa.String(length=64), nullable=False),
        sa.Column('player_name', sa.String(length=64), nullable=False),
        sa.Column('question_index', sa.Integer(), nullable=False),
        sa.Column('answer', sa.Text(), nullable=False),
        sa.Column('judged', sa.Boolean(), nullable=True),
        sa.Column('points_delta', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['room_id'], ['room.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id', 'question_index', 'player_id', name='uq_submission_slot'),
    )
    with op.batch_alter_table('submission', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_submission_room_id'), ['room_id'], unique=False)

    # Final round ledgers hold one row per player
    for table, constraint, extra in (
        ('wager', 'uq_wager_player', [sa.Column('wager', sa.Integer(), nullable=False)]),
        ('final_answer', 'uq_final_answer_player', [
            sa.Column('answer', sa.Text(), nullable=False),
            sa.Column('judged', sa.Boolean(), nullable=True),
            sa.Column('points_delta', sa.Integer(), nullable=False),
        ]),
    ):
        op.create_table(
            table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('room_id', sa.Integer(), nullable=False),
            sa.Column('player_id', sa.String(length=64), nullable=False),
            sa.Column('player_name', sa.String(length=64), nullable=False),
            *extra,
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['room_id'], ['room.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('room_id', 'player_id', name=constraint),
        )
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.create_index(batch_op.f(f'ix_{table}_room_id'), ['room_id'], unique=False)


def downgrade():
    for table in ('final_answer', 'wager', 'submission', 'player'):
        with op.batch_alter_table(table, schema=None) as batch_op:
            batch_op.drop_index(batch_op.f(f'ix_{table}_room_id'))
        op.drop_table(table)

    with op.batch_alter_table('room', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_room_room_code'))
    op.drop_table('room')
