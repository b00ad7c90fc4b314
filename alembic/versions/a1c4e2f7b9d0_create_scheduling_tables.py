"""create_scheduling_tables

Revision ID: a1c4e2f7b9d0
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a1c4e2f7b9d0'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    # Tenants
    op.create_table('businesses',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('phone_number', sa.String(length=20), nullable=True),
        sa.Column('timezone', sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_businesses_slug', 'businesses', ['slug'], unique=True)

    op.create_table('business_hours',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('day_of_week', sa.Integer(), nullable=False),
        sa.Column('is_open', sa.Boolean(), nullable=False),
        sa.Column('open_time', sa.Time(), nullable=False),
        sa.Column('close_time', sa.Time(), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'day_of_week', name='uq_business_hours_business_day')
    )
    op.create_index('ix_business_hours_business_id', 'business_hours', ['business_id'])

    op.create_table('scheduling_policies',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('slot_interval_minutes', sa.Integer(), nullable=False),
        sa.Column('min_advance_hours', sa.Integer(), nullable=False),
        sa.Column('max_capacity_per_slot', sa.Integer(), nullable=False),
        sa.Column('calendar_sync_mode', sa.String(length=20), nullable=False),
        sa.Column('generate_meet_link', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('slot_interval_minutes > 0', name='ck_policy_slot_interval_positive'),
        sa.CheckConstraint('min_advance_hours > 0', name='ck_policy_min_advance_positive'),
        sa.CheckConstraint('max_capacity_per_slot > 0', name='ck_policy_capacity_positive'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id')
    )

    op.create_table('services',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=False),
        sa.Column('requires_sessions', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('display_order', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_services_business_id', 'services', ['business_id'])
    op.create_index('ix_services_is_active', 'services', ['is_active'])

    op.create_table('staff_members',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_staff_members_business_id', 'staff_members', ['business_id'])

    op.create_table('time_blocks',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('staff_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('block_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=True),
        sa.Column('end_time', sa.Time(), nullable=True),
        sa.Column('reason', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_time_blocks_business_id', 'time_blocks', ['business_id'])
    op.create_index('ix_time_blocks_block_date', 'time_blocks', ['block_date'])

    # Agenda
    op.create_table('appointments',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('service_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('staff_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('client_name', sa.String(), nullable=False),
        sa.Column('client_phone', sa.String(), nullable=False),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.Time(), nullable=False),
        sa.Column('end_time', sa.Time(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('booking_source', sa.String(length=20), nullable=True),
        sa.Column('external_event_id', sa.String(), nullable=True),
        sa.Column('meet_link', sa.String(), nullable=True),
        sa.Column('sync_status', sa.String(length=20), nullable=True),
        sa.Column('sync_attempts', sa.Integer(), nullable=True),
        sa.Column('last_sync_error', sa.Text(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id']),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_appointments_business_date', 'appointments', ['business_id', 'appointment_date'])
    op.create_index('ix_appointments_client_phone', 'appointments', ['client_phone'])

    # Session packages
    op.create_table('session_packages',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('service_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('client_name', sa.String(), nullable=False),
        sa.Column('client_phone', sa.String(), nullable=False),
        sa.Column('total_sessions', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['service_id'], ['services.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_session_packages_lookup', 'session_packages',
                    ['business_id', 'client_phone', 'service_id', 'status'])
    op.create_index('uq_session_packages_active', 'session_packages',
                    ['business_id', 'client_phone', 'service_id'], unique=True,
                    postgresql_where=sa.text("status = 'active'"))

    op.create_table('sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('package_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('appointment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('session_number', sa.Integer(), nullable=False),
        sa.Column('session_date', sa.Date(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['package_id'], ['session_packages.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('appointment_id')
    )
    op.create_index('ix_sessions_package_id', 'sessions', ['package_id'])

    # Calendar connection
    op.create_table('calendar_tokens',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('staff_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('access_token_encrypted', sa.LargeBinary(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.LargeBinary(), nullable=False),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('calendar_id', sa.String(), nullable=False),
        sa.Column('connected_email', sa.String(), nullable=True),
        sa.Column('calendar_list', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['staff_id'], ['staff_members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'staff_id', name='uq_calendar_tokens_business_staff')
    )
    op.create_index('ix_calendar_tokens_business_id', 'calendar_tokens', ['business_id'])
    op.create_index('uq_calendar_tokens_business_wide', 'calendar_tokens', ['business_id'], unique=True,
                    postgresql_where=sa.text('staff_id IS NULL'))

    # Notifications
    op.create_table('message_templates',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('template', sa.Text(), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=True),
        sa.Column('send_notification', sa.Boolean(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_id', 'type', name='uq_message_templates_business_type')
    )

    op.create_table('notification_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('business_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('appointment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('phone', sa.String(length=30), nullable=False),
        sa.Column('type', sa.String(length=30), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('provider_message_id', sa.String(length=64), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notification_logs_appointment_id', 'notification_logs', ['appointment_id'])


def downgrade() -> None:
    op.drop_index('ix_notification_logs_appointment_id', table_name='notification_logs')
    op.drop_table('notification_logs')
    op.drop_table('message_templates')
    op.drop_index('uq_calendar_tokens_business_wide', table_name='calendar_tokens')
    op.drop_index('ix_calendar_tokens_business_id', table_name='calendar_tokens')
    op.drop_table('calendar_tokens')
    op.drop_index('ix_sessions_package_id', table_name='sessions')
    op.drop_table('sessions')
    op.drop_index('uq_session_packages_active', table_name='session_packages')
    op.drop_index('ix_session_packages_lookup', table_name='session_packages')
    op.drop_table('session_packages')
    op.drop_index('ix_appointments_client_phone', table_name='appointments')
    op.drop_index('ix_appointments_business_date', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index('ix_time_blocks_block_date', table_name='time_blocks')
    op.drop_index('ix_time_blocks_business_id', table_name='time_blocks')
    op.drop_table('time_blocks')
    op.drop_index('ix_staff_members_business_id', table_name='staff_members')
    op.drop_table('staff_members')
    op.drop_index('ix_services_is_active', table_name='services')
    op.drop_index('ix_services_business_id', table_name='services')
    op.drop_table('services')
    op.drop_table('scheduling_policies')
    op.drop_index('ix_business_hours_business_id', table_name='business_hours')
    op.drop_table('business_hours')
    op.drop_index('ix_businesses_slug', table_name='businesses')
    op.drop_table('businesses')
