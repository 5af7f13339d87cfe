"""create reward tables (user_rewards, processed_events, outbox_messages)

Revision ID: a7c3e91d2b40
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'a7c3e91d2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'user_rewards',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.String(256), nullable=False),
        sa.Column('reward_date', sa.Date(), nullable=False),
        sa.Column('total_distance_km', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_updated_utc', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'reward_date', name='uq_user_rewards_user_date'),
    )
    op.create_index('ix_user_rewards_reward_date', 'user_rewards', ['reward_date'])

    op.create_table(
        'processed_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.String(64), nullable=False),
        sa.Column('event_id', sa.String(128), nullable=False),
        sa.Column('user_id', sa.String(256), nullable=False),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_type', 'event_id', name='uq_processed_events_type_id'),
    )

    op.create_table(
        'outbox_messages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event_type', sa.String(128), nullable=False),
        sa.Column('payload_json', postgresql.JSONB(), nullable=False),
        sa.Column('occurred_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_outbox_messages_unprocessed', 'outbox_messages', ['processed_at', 'id'])


def downgrade() -> None:
    op.drop_index('ix_outbox_messages_unprocessed', table_name='outbox_messages')
    op.drop_table('outbox_messages')
    op.drop_table('processed_events')
    op.drop_index('ix_user_rewards_reward_date', table_name='user_rewards')
    op.drop_table('user_rewards')
