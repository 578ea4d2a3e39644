"""notification tables

Revision ID: 3b1f2c7d9a10
Revises:
Create Date: 2025-03-01 09:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

from clinic_notifications.core.database.types import StringArray, UTCDateTime


# revision identifiers, used by Alembic.
revision: str = '3b1f2c7d9a10'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', UTCDateTime(), nullable=False, comment='Timestamp of record creation'),
        sa.Column('updated_at', UTCDateTime(), nullable=False, comment='Timestamp of last update'),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v4 primary key'),
        sa.Column('type', sa.String(length=50), nullable=False, comment='NotificationType value'),
        sa.Column('priority', sa.String(length=20), nullable=False, comment='low, medium, high or urgent'),
        sa.Column('recipient_id', sa.String(length=255), nullable=False, comment='User identifier of the recipient'),
        sa.Column('recipient_role', sa.String(length=20), nullable=False, comment='student, parent, therapist or admin'),
        sa.Column('title_ar', sa.String(length=500), nullable=False),
        sa.Column('title_en', sa.String(length=500), nullable=False),
        sa.Column('body_ar', sa.Text(), nullable=False),
        sa.Column('body_en', sa.Text(), nullable=False),
        sa.Column('channels', StringArray(), nullable=False, comment='Requested delivery channels'),
        sa.Column(
            'data',
            postgresql.JSONB().with_variant(sa.JSON(), 'sqlite'),
            nullable=False,
            comment='Template parameters the notification was rendered from',
        ),
        sa.Column('scheduled_at', UTCDateTime(), nullable=False),
        sa.Column('sent_at', UTCDateTime(), nullable=True, comment='When the first channel reached sent'),
        sa.Column('expires_at', UTCDateTime(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('read_at', UTCDateTime(), nullable=True),
        sa.Column('cancelled_at', UTCDateTime(), nullable=True, comment='Set when further sends must be prevented'),
        sa.Column('related_entity_type', sa.String(length=50), nullable=True),
        sa.Column('related_entity_id', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notifications')),
    )
    op.create_index(op.f('ix_notifications_type'), 'notifications', ['type'])
    op.create_index(op.f('ix_notifications_recipient_id'), 'notifications', ['recipient_id'])
    op.create_index(op.f('ix_notifications_expires_at'), 'notifications', ['expires_at'])
    op.create_index('idx_notifications_recipient_read', 'notifications', ['recipient_id', 'is_read'])
    op.create_index('idx_notifications_related_entity', 'notifications', ['related_entity_type', 'related_entity_id'])

    op.create_table(
        'delivery_attempts',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v4 primary key'),
        sa.Column('notification_id', sa.Uuid(), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column(
            'status',
            sa.String(length=20),
            nullable=False,
            comment='scheduled, sent, delivered, failed or cancelled',
        ),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('next_attempt_at', UTCDateTime(), nullable=True, comment='Earliest time the next send may run'),
        sa.Column('last_attempted_at', UTCDateTime(), nullable=True),
        sa.Column('delivered_at', UTCDateTime(), nullable=True),
        sa.Column('failed_at', UTCDateTime(), nullable=True),
        sa.Column('external_ref', sa.String(length=255), nullable=True, comment='Transport-assigned message id'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('lease_owner', sa.String(length=100), nullable=True),
        sa.Column('lease_expires_at', UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ['notification_id'],
            ['notifications.id'],
            name=op.f('fk_delivery_attempts_notification_id_notifications'),
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_delivery_attempts')),
        sa.UniqueConstraint('notification_id', 'channel', name='uq_delivery_attempts_notification_channel'),
    )
    op.create_index(op.f('ix_delivery_attempts_notification_id'), 'delivery_attempts', ['notification_id'])
    op.create_index(op.f('ix_delivery_attempts_external_ref'), 'delivery_attempts', ['external_ref'])
    op.create_index('idx_delivery_attempts_status_next', 'delivery_attempts', ['status', 'next_attempt_at'])

    op.create_table(
        'notification_preferences',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v4 primary key'),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('notification_type', sa.String(length=50), nullable=False),
        sa.Column('channels', StringArray(), nullable=False, comment='Channels the user accepts for this type'),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('quiet_hours_start', sa.String(length=5), nullable=True),
        sa.Column('quiet_hours_end', sa.String(length=5), nullable=True),
        sa.Column('timezone', sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_notification_preferences')),
        sa.UniqueConstraint('user_id', 'notification_type', name='uq_notification_preferences_user_type'),
    )
    op.create_index(op.f('ix_notification_preferences_user_id'), 'notification_preferences', ['user_id'])

    op.create_table(
        'reminder_jobs',
        sa.Column('id', sa.Uuid(), nullable=False, comment='UUID v4 primary key'),
        sa.Column('related_entity_type', sa.String(length=50), nullable=False),
        sa.Column('related_entity_id', sa.String(length=255), nullable=False),
        sa.Column('reminder_kind', sa.String(length=20), nullable=False),
        sa.Column('trigger_at', UTCDateTime(), nullable=False),
        sa.Column('sent_at', UTCDateTime(), nullable=True),
        sa.Column('cancelled', sa.Boolean(), nullable=False),
        sa.Column('cancelled_at', UTCDateTime(), nullable=True),
        sa.Column('claimed_by', sa.String(length=100), nullable=True),
        sa.Column('claimed_at', UTCDateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_reminder_jobs')),
    )
    op.create_index(op.f('ix_reminder_jobs_related_entity_id'), 'reminder_jobs', ['related_entity_id'])
    op.create_index('idx_reminder_jobs_due', 'reminder_jobs', ['sent_at', 'cancelled', 'trigger_at'])
    op.create_index(
        'uq_reminder_jobs_pending_kind',
        'reminder_jobs',
        ['related_entity_id', 'reminder_kind'],
        unique=True,
        postgresql_where=sa.text('sent_at IS NULL AND cancelled = false'),
        sqlite_where=sa.text('sent_at IS NULL AND cancelled = 0'),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index('uq_reminder_jobs_pending_kind', table_name='reminder_jobs')
    op.drop_index('idx_reminder_jobs_due', table_name='reminder_jobs')
    op.drop_index(op.f('ix_reminder_jobs_related_entity_id'), table_name='reminder_jobs')
    op.drop_table('reminder_jobs')

    op.drop_index(op.f('ix_notification_preferences_user_id'), table_name='notification_preferences')
    op.drop_table('notification_preferences')

    op.drop_index('idx_delivery_attempts_status_next', table_name='delivery_attempts')
    op.drop_index(op.f('ix_delivery_attempts_external_ref'), table_name='delivery_attempts')
    op.drop_index(op.f('ix_delivery_attempts_notification_id'), table_name='delivery_attempts')
    op.drop_table('delivery_attempts')

    op.drop_index('idx_notifications_related_entity', table_name='notifications')
    op.drop_index('idx_notifications_recipient_read', table_name='notifications')
    op.drop_index(op.f('ix_notifications_expires_at'), table_name='notifications')
    op.drop_index(op.f('ix_notifications_recipient_id'), table_name='notifications')
    op.drop_index(op.f('ix_notifications_type'), table_name='notifications')
    op.drop_table('notifications')
