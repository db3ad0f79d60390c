"""initial repair-center schema

Revision ID: 0001_initial_cassette_rc
Revises:
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial_cassette_rc'
down_revision = None
branch_labels = None
depends_on = None


def _in(column, values):
    return sa.CheckConstraint(f"{column} IN ({', '.join(repr(v) for v in values)})")


ORDER_STATUSES = ('OPEN', 'PENDING_APPROVAL', 'APPROVED_ON_SITE', 'IN_DELIVERY', 'RECEIVED',
                  'IN_PROGRESS', 'RESOLVED', 'CLOSED', 'CANCELLED')
CASSETTE_STATUSES = ('OK', 'BAD', 'IN_TRANSIT', 'IN_REPAIR', 'READY_FOR_PICKUP', 'SCRAPPED')
REPAIR_STATUSES = ('RECEIVED', 'DIAGNOSING', 'ON_PROGRESS', 'COMPLETED')
PM_STATUSES = ('SCHEDULED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', 'RESCHEDULED')
PM_DETAIL_STATUSES = ('PENDING', 'IN_PROGRESS', 'COMPLETED')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table('service_orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('ticket_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='OPEN'),
        sa.Column('repair_location', sa.String(length=16), nullable=False, server_default='RC'),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='MEDIUM'),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('bank_id', sa.Integer(), nullable=False),
        sa.Column('reported_by', sa.Integer(), nullable=False),
        sa.Column('approved_by', sa.Integer()),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('on_site_rejection_reason', sa.Text()),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),
        sa.Column('closed_at', sa.DateTime(timezone=True)),
        sa.Column('cancel_reason', sa.Text()),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('deleted_by', sa.Integer()),
        *_timestamps(),
        _in('status', ORDER_STATUSES),
    )
    op.create_index('ix_service_orders_ticket_number', 'service_orders', ['ticket_number'])
    op.create_index('ix_service_orders_status', 'service_orders', ['status'])
    op.create_index('ix_service_orders_bank_id', 'service_orders', ['bank_id'])

    op.create_table('cassettes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('serial_number', sa.String(length=64), nullable=False, unique=True),
        sa.Column('type_code', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='OK'),
        sa.Column('machine_id', sa.String(length=64)),
        sa.Column('bank_id', sa.Integer(), nullable=False),
        sa.Column('replaced_cassette_id', sa.Integer(), sa.ForeignKey('cassettes.id')),
        sa.Column('replacement_order_id', sa.Integer(), sa.ForeignKey('service_orders.id')),
        sa.Column('notes', sa.Text()),
        *_timestamps(),
        _in('status', CASSETTE_STATUSES),
    )
    op.create_index('ix_cassettes_serial_number', 'cassettes', ['serial_number'])
    op.create_index('ix_cassettes_status', 'cassettes', ['status'])
    op.create_index('ix_cassettes_bank_id', 'cassettes', ['bank_id'])

    op.create_table('service_order_details',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('service_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('cassette_id', sa.Integer(), sa.ForeignKey('cassettes.id'), nullable=False),
        sa.Column('title', sa.String(length=200)),
        sa.Column('description', sa.Text()),
        sa.Column('request_replacement', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('replacement_reason', sa.Text()),
        sa.Column('replacement_cassette_id', sa.Integer(), sa.ForeignKey('cassettes.id')),
        sa.Column('settlement', sa.String(length=16)),
        sa.UniqueConstraint('order_id', 'cassette_id', name='uq_order_cassette'),
    )
    op.create_index('ix_service_order_details_order_id', 'service_order_details', ['order_id'])
    op.create_index('ix_service_order_details_cassette_id', 'service_order_details', ['cassette_id'])

    op.create_table('deliveries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('service_orders.id'), nullable=False, unique=True),
        sa.Column('cassette_id', sa.Integer(), sa.ForeignKey('cassettes.id')),
        sa.Column('method', sa.String(length=16), nullable=False, server_default='COURIER'),
        sa.Column('courier_service', sa.String(length=64)),
        sa.Column('tracking_number', sa.String(length=64)),
        sa.Column('shipped_at', sa.DateTime(timezone=True)),
        sa.Column('estimated_arrival', sa.DateTime(timezone=True)),
        sa.Column('sent_by', sa.Integer()),
        sa.Column('received_at', sa.DateTime(timezone=True)),
        sa.Column('received_by', sa.Integer()),
        sa.Column('notes', sa.Text()),
    )

    op.create_table('cassette_returns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('service_orders.id'), nullable=False, unique=True),
        sa.Column('outcome', sa.String(length=16), nullable=False),
        sa.Column('recipient_name', sa.String(length=128)),
        sa.Column('signature', sa.Text()),
        sa.Column('notes', sa.Text()),
        sa.Column('picked_up_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('disposed_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('replaced_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('confirmed_by', sa.Integer(), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table('repair_tickets',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('service_orders.id'), nullable=False),
        sa.Column('cassette_id', sa.Integer(), sa.ForeignKey('cassettes.id'), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='RECEIVED'),
        sa.Column('qc_result', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('parts_replaced', sa.JSON()),
        sa.Column('findings', sa.Text()),
        sa.Column('repair_action', sa.Text()),
        sa.Column('assigned_user_id', sa.Integer()),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        _in('status', REPAIR_STATUSES),
    )
    op.create_index('ix_repair_tickets_order_id', 'repair_tickets', ['order_id'])
    op.create_index('ix_repair_tickets_cassette_id', 'repair_tickets', ['cassette_id'])
    op.create_index('ix_repair_tickets_status', 'repair_tickets', ['status'])

    op.create_table('preventive_maintenance',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pm_number', sa.String(length=32), nullable=False, unique=True),
        sa.Column('pm_type', sa.String(length=32), nullable=False, server_default='ROUTINE'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='SCHEDULED'),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('bank_id', sa.Integer(), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('assigned_engineer', sa.Integer()),
        sa.Column('requested_by', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('completed_by', sa.Integer()),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_by', sa.Integer()),
        sa.Column('cancel_reason', sa.Text()),
        sa.Column('auto_schedule', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('interval_days', sa.Integer()),
        sa.Column('next_pm_date', sa.Date()),
        sa.Column('next_pm_id', sa.Integer(), sa.ForeignKey('preventive_maintenance.id')),
        sa.Column('source_pm_id', sa.Integer(), sa.ForeignKey('preventive_maintenance.id')),
        sa.Column('deleted_at', sa.DateTime(timezone=True)),
        sa.Column('deleted_by', sa.Integer()),
        *_timestamps(),
        _in('status', PM_STATUSES),
    )
    op.create_index('ix_preventive_maintenance_pm_number', 'preventive_maintenance', ['pm_number'])
    op.create_index('ix_preventive_maintenance_status', 'preventive_maintenance', ['status'])
    op.create_index('ix_preventive_maintenance_bank_id', 'preventive_maintenance', ['bank_id'])
    op.create_index('ix_preventive_maintenance_scheduled_date', 'preventive_maintenance', ['scheduled_date'])
    op.create_index('ix_preventive_maintenance_next_pm_date', 'preventive_maintenance', ['next_pm_date'])

    op.create_table('pm_cassette_details',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pm_id', sa.Integer(), sa.ForeignKey('preventive_maintenance.id', ondelete='CASCADE'), nullable=False),
        sa.Column('cassette_id', sa.Integer(), sa.ForeignKey('cassettes.id'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('checklist', sa.JSON()),
        sa.Column('findings', sa.Text()),
        sa.Column('actions_taken', sa.Text()),
        sa.Column('parts_replaced', sa.JSON()),
        sa.Column('found_fault', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.UniqueConstraint('pm_id', 'cassette_id', name='uq_pm_cassette'),
        _in('status', PM_DETAIL_STATUSES),
    )
    op.create_index('ix_pm_cassette_details_pm_id', 'pm_cassette_details', ['pm_id'])
    op.create_index('ix_pm_cassette_details_cassette_id', 'pm_cassette_details', ['cassette_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64)),
        sa.Column('entity_id', sa.String(length=64)),
        sa.Column('perms_snapshot', sa.JSON()),
        sa.Column('meta', sa.JSON()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_user_id', 'audit_logs', ['actor_user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_ref', 'audit_logs', ['entity', 'entity_id'])


def downgrade():
    for table in ('audit_logs', 'pm_cassette_details', 'preventive_maintenance', 'repair_tickets',
                  'cassette_returns', 'deliveries', 'service_order_details', 'cassettes', 'service_orders'):
        op.drop_table(table)
