"""Initial schema: identities, requests, approvals, history, notification logs

Revision ID: 0001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create identities table
    op.create_table(
        'identities',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('mobile', sa.String(20), nullable=True),
        sa.Column('role', sa.String(50), nullable=False),
        sa.Column('department', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_identities_email', 'identities', ['email'], unique=True)
    op.create_index('ix_identities_role', 'identities', ['role'])

    # Create leave_requests table
    op.create_table(
        'leave_requests',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('submitter_id', sa.Uuid(), nullable=False),
        sa.Column('request_type', sa.String(20), nullable=False),
        sa.Column('initial_time', sa.DateTime(), nullable=True),
        sa.Column('expected_return_time', sa.DateTime(), nullable=True),
        sa.Column('journey_date', sa.DateTime(), nullable=True),
        sa.Column('return_date', sa.DateTime(), nullable=True),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('address', sa.String(200), nullable=False),
        sa.Column('attendance_percent', sa.Float(), nullable=False),
        sa.Column('last_semester_score', sa.Float(), nullable=False),
        sa.Column('counsellor_email', sa.String(255), nullable=False),
        sa.Column('warden_email', sa.String(255), nullable=False),
        sa.Column('hod_email', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('current_level', sa.String(30), nullable=False, server_default='counsellor'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('rejected_by', sa.Uuid(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.String(200), nullable=True),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['submitter_id'], ['identities.id']),
        sa.ForeignKeyConstraint(['rejected_by'], ['identities.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_leave_requests_submitter_id', 'leave_requests', ['submitter_id'])
    op.create_index('ix_leave_requests_status', 'leave_requests', ['status'])
    op.create_index('ix_leave_requests_submitted_at', 'leave_requests', ['submitted_at'])
    op.create_index('ix_leave_requests_level_status', 'leave_requests', ['current_level', 'status'])
    op.create_index('ix_leave_requests_type_status', 'leave_requests', ['request_type', 'status'])
    # At most one pending request per submitter
    op.create_index(
        'uq_leave_requests_one_pending_per_submitter',
        'leave_requests',
        ['submitter_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # Create approval_records table
    op.create_table(
        'approval_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=False),
        sa.Column('level', sa.String(30), nullable=False),
        sa.Column('approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approver_id', sa.Uuid(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('comment', sa.String(200), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['leave_requests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['approver_id'], ['identities.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('request_id', 'level', name='uq_approval_records_request_level')
    )
    op.create_index('ix_approval_records_request_id', 'approval_records', ['request_id'])

    # Create request_history table
    op.create_table(
        'request_history',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=False),
        sa.Column('decision', sa.String(20), nullable=False),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('from_level', sa.String(30), nullable=True),
        sa.Column('to_level', sa.String(30), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['request_id'], ['leave_requests.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['actor_id'], ['identities.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_request_history_request_id', 'request_history', ['request_id'])
    op.create_index('ix_request_history_created_at', 'request_history', ['created_at'])

    # Create notification_logs table
    op.create_table(
        'notification_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('template', sa.String(50), nullable=False),
        sa.Column('recipient', sa.String(255), nullable=False),
        sa.Column('identity_id', sa.Uuid(), nullable=True),
        sa.Column('request_id', sa.Uuid(), nullable=True),
        sa.Column('subject', sa.String(512), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['identity_id'], ['identities.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['request_id'], ['leave_requests.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notification_logs_request_id', 'notification_logs', ['request_id'])
    op.create_index('ix_notification_logs_status', 'notification_logs', ['status'])
    op.create_index('ix_notification_logs_created_at', 'notification_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('notification_logs')
    op.drop_table('request_history')
    op.drop_table('approval_records')
    op.drop_index('uq_leave_requests_one_pending_per_submitter', table_name='leave_requests')
    op.drop_table('leave_requests')
    op.drop_table('identities')
