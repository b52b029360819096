"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

ROLES = ("admin", "employee", "freelancer", "client")
APPROVAL_STATUSES = ("pending", "approved", "rejected")
PRIORITIES = ("P1", "P2", "P3", "P4", "P5")
TICKET_STATUSES = (
    "Created",
    "Assigned",
    "Ongoing",
    "Pending with reviewer",
    "Pending with client",
    "Completed",
    "Closed",
)


def _in(column: str, allowed: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in allowed)
    return f"{column} IN ({quoted})"


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, server_default=sa.func.now())


def upgrade() -> None:
    json_list = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(32), nullable=True),
        sa.Column('role', sa.String(20), nullable=True),
        sa.Column('approval_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('approved_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint(_in('role', ROLES), name='chk_user_role'),
        sa.CheckConstraint(_in('approval_status', APPROVAL_STATUSES), name='chk_user_approval_status'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'])
    op.create_index('ix_users_approval_status', 'users', ['approval_status'])

    op.create_table(
        'tickets',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_number', sa.String(32), nullable=False),
        sa.Column('uid', sa.String(32), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(2), nullable=False, server_default='P3'),
        sa.Column('status', sa.String(40), nullable=False, server_default='Created'),
        sa.Column('created_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('points', json_list, nullable=False, server_default='[]'),
        sa.Column('creation_files', json_list, nullable=False, server_default='[]'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint(_in('priority', PRIORITIES), name='chk_ticket_priority'),
        sa.CheckConstraint(_in('status', TICKET_STATUSES), name='chk_ticket_status'),
    )
    op.create_index('ix_tickets_ticket_number', 'tickets', ['ticket_number'], unique=True)
    op.create_index('ix_tickets_uid', 'tickets', ['uid'], unique=True)
    op.create_index('ix_tickets_status', 'tickets', ['status'])
    op.create_index('ix_tickets_created_by', 'tickets', ['created_by'])
    op.create_index('ix_tickets_created_at', 'tickets', ['created_at'])

    op.create_table(
        'ticket_members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('added_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        _timestamp('added_at', nullable=False),
        sa.Column('can_message_client', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint('ticket_id', 'user_id', name='uq_ticket_members_ticket_user'),
    )
    op.create_index('ix_ticket_members_ticket_id', 'ticket_members', ['ticket_id'])
    op.create_index('ix_ticket_members_user_id', 'ticket_members', ['user_id'])

    op.create_table(
        'ticket_messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('message_type', sa.String(20), nullable=False, server_default='text'),
        sa.Column('message_mode', sa.String(20), nullable=False, server_default='client'),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('file_name', sa.String(500), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('reply_to_message_id', sa.Uuid(), sa.ForeignKey('ticket_messages.id', ondelete='SET NULL'), nullable=True),
        sa.Column('forwarded_from_message_id', sa.Uuid(), sa.ForeignKey('ticket_messages.id', ondelete='SET NULL'), nullable=True),
        sa.Column('forwarded_from_ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_edited', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        _timestamp('created_at', nullable=False),
        _timestamp('updated_at'),
        sa.CheckConstraint(_in('message_type', ('text', 'file', 'image')), name='chk_message_type'),
        sa.CheckConstraint(_in('message_mode', ('client', 'internal')), name='chk_message_mode'),
    )
    op.create_index('idx_ticket_messages_ticket_created', 'ticket_messages', ['ticket_id', 'created_at'])
    op.create_index('ix_ticket_messages_sender_id', 'ticket_messages', ['sender_id'])

    op.create_table(
        'message_seen',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('message_id', sa.Uuid(), sa.ForeignKey('ticket_messages.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        _timestamp('seen_at', nullable=False),
        sa.UniqueConstraint('message_id', 'user_id', name='uq_message_seen_message_user'),
    )
    op.create_index('ix_message_seen_message_id', 'message_seen', ['message_id'])

    op.create_table(
        'ticket_message_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('message_id', sa.Uuid(), sa.ForeignKey('ticket_messages.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action', sa.String(10), nullable=False),
        sa.Column('previous_content', sa.Text(), nullable=True),
        sa.Column('edited_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        _timestamp('created_at'),
        sa.CheckConstraint(_in('action', ('edit', 'delete')), name='chk_message_history_action'),
    )
    op.create_index('ix_ticket_message_history_message_id', 'ticket_message_history', ['message_id'])

    op.create_table(
        'ticket_files',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('uploaded_by', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('file_name', sa.String(500), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=False),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('file_size', sa.Integer(), nullable=True),
        sa.Column('mime_type', sa.String(255), nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_ticket_files_ticket_id', 'ticket_files', ['ticket_id'])

    op.create_table(
        'starred_tickets',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        _timestamp('created_at'),
        sa.UniqueConstraint('ticket_id', 'user_id', name='uq_starred_tickets_ticket_user'),
    )
    op.create_index('ix_starred_tickets_ticket_id', 'starred_tickets', ['ticket_id'])
    op.create_index('ix_starred_tickets_user_id', 'starred_tickets', ['user_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(40), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('related_user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('related_ticket_id', sa.Uuid(), sa.ForeignKey('tickets.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        _timestamp('created_at'),
    )
    op.create_index('idx_notifications_user_read', 'notifications', ['user_id', 'is_read'])
    op.create_index('idx_notifications_dedupe', 'notifications', ['type', 'user_id', 'related_ticket_id'])

    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('chat_clients', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('chat_internal', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('status_change', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('ticket_creation', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('ticket_assigned', sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp('updated_at'),
    )

    op.create_table(
        'admin_actions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('admin_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action_type', sa.String(50), nullable=False),
        sa.Column('target_user_id', sa.Uuid(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('details', json_list, nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('ix_admin_actions_admin_id', 'admin_actions', ['admin_id'])
    op.create_index('ix_admin_actions_created_at', 'admin_actions', ['created_at'])


def downgrade() -> None:
    for table in (
        'admin_actions',
        'notification_preferences',
        'notifications',
        'starred_tickets',
        'ticket_files',
        'ticket_message_history',
        'message_seen',
        'ticket_messages',
        'ticket_members',
        'tickets',
        'users',
    ):
        op.drop_table(table)
