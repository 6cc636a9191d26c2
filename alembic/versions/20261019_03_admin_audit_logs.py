"""Create admin_audit_logs table

Revision ID: 20261019_03
Revises: 20261019_02
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '20261019_03'
down_revision = '20261019_02'
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        'admin_audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('admin_user_id', sa.String(length=128), nullable=False),
        sa.Column('admin_email', sa.String(length=255), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('target_user_id', sa.String(length=128), nullable=True),
        sa.Column('target_email', sa.String(length=255), nullable=True),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_admin_audit_logs_id', 'admin_audit_logs', ['id'])
    op.create_index('ix_admin_audit_logs_target_user_id', 'admin_audit_logs', ['target_user_id'])
    op.create_index('ix_admin_audit_logs_admin_action_created', 'admin_audit_logs', ['admin_user_id', 'action', 'created_at'])


def downgrade() -> None:
    op.drop_index('ix_admin_audit_logs_admin_action_created', table_name='admin_audit_logs')
    op.drop_index('ix_admin_audit_logs_target_user_id', table_name='admin_audit_logs')
    op.drop_index('ix_admin_audit_logs_id', table_name='admin_audit_logs')
    op.drop_table('admin_audit_logs')
