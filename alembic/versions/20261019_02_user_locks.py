"""Create user_locks table for collaborative edit leases

Revision ID: 20261019_02
Revises: 20261019_01
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '20261019_02'
down_revision = '20261019_01'
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        'user_locks',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('locked_entity_id', sa.String(length=128), nullable=False),
        sa.Column('lock_holder_id', sa.String(length=128), nullable=False),
        sa.Column('lock_holder_label', sa.String(length=255), nullable=False),
        sa.Column('lock_kind', sa.String(length=20), nullable=False, server_default='edit'),
        sa.Column('originating_session_id', sa.String(length=128), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    # One row per entity: concurrent acquirers cannot both insert
    op.create_index('ix_user_locks_locked_entity_id', 'user_locks', ['locked_entity_id'], unique=True)
    op.create_index('ix_user_locks_expires_at', 'user_locks', ['expires_at'])
    op.create_index('ix_user_locks_holder_expires', 'user_locks', ['lock_holder_id', 'expires_at'])


def downgrade() -> None:
    op.drop_index('ix_user_locks_holder_expires', table_name='user_locks')
    op.drop_index('ix_user_locks_expires_at', table_name='user_locks')
    op.drop_index('ix_user_locks_locked_entity_id', table_name='user_locks')
    op.drop_table('user_locks')
