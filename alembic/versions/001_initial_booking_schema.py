"""initial booking schema

Revision ID: 001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

role = postgresql.ENUM('CLIENT', 'BARBER', 'OWNER', name='role', create_type=False)
service_channel = postgresql.ENUM('SHOP', 'HOME', name='servicechannel', create_type=False)
subscription_status = postgresql.ENUM(
    'TRIAL', 'ACTIVE', 'PAST_DUE', 'CANCELED', name='subscriptionstatus', create_type=False
)
intent_status = postgresql.ENUM(
    'PENDING', 'CONFIRMED', 'EXPIRED', 'FAILED', name='paymentintentstatus', create_type=False
)
appointment_status = postgresql.ENUM(
    'BOOKED', 'CONFIRMED', 'COMPLETED', 'CANCELED', 'NO_SHOW', name='appointmentstatus', create_type=False
)
appointment_kind = postgresql.ENUM(
    'TRIAL_FREE', 'DISCOUNT_SECOND', 'MEMBERSHIP_INCLUDED', 'ONE_OFF', name='appointmentkind', create_type=False
)
payment_status = postgresql.ENUM('PENDING', 'PAID', 'WAIVED', name='paymentstatus', create_type=False)
payment_channel = postgresql.ENUM('GATEWAY', 'CASH_INTENT', 'NONE', name='paymentchannel', create_type=False)
payment_kind = postgresql.ENUM('SUBSCRIPTION', 'ONEOFF', name='paymentkind', create_type=False)

ENUMS = (
    role, service_channel, subscription_status, intent_status, appointment_status,
    appointment_kind, payment_status, payment_channel, payment_kind,
)

ACTIVE = sa.text("status IN ('BOOKED', 'CONFIRMED')")
NOT_CANCELED = sa.text("status != 'CANCELED'")
PROMO = sa.text("kind IN ('TRIAL_FREE', 'DISCOUNT_SECOND') AND status != 'CANCELED'")


def upgrade() -> None:
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('role', role, nullable=False, server_default='CLIENT'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'plans',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('price_monthly_cents', sa.Integer(), nullable=False),
        sa.Column('cuts_per_month', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('channel', service_channel, nullable=False, server_default='SHOP'),
        sa.Column('gateway_price_id', sa.String(), nullable=True, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index(op.f('ix_plans_id'), 'plans', ['id'], unique=False)

    op.create_table(
        'subscriptions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('plan_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('plans.id'), nullable=False),
        sa.Column('gateway_subscription_id', sa.String(), nullable=False),
        sa.Column('status', subscription_status, nullable=False),
        sa.Column('current_period_start', sa.DateTime(), nullable=False),
        sa.Column('renews_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index(op.f('ix_subscriptions_user_id'), 'subscriptions', ['user_id'], unique=False)
    op.create_index(
        op.f('ix_subscriptions_gateway_subscription_id'), 'subscriptions', ['gateway_subscription_id'], unique=True
    )

    op.create_table(
        'payment_intents',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(), nullable=False),
        sa.Column('note_code', sa.String(), nullable=False),
        sa.Column('status', intent_status, nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_payment_intents_user_status', 'payment_intents', ['user_id', 'status'], unique=False)

    op.create_table(
        'appointments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('client_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('barber_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('status', appointment_status, nullable=False),
        sa.Column('channel', service_channel, nullable=False),
        sa.Column('kind', appointment_kind, nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_status', payment_status, nullable=False),
        sa.Column('payment_channel', payment_channel, nullable=False),
        sa.Column(
            'payment_intent_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('payment_intents.id'), nullable=True
        ),
        sa.Column('idempotency_key', sa.String(), nullable=False),
        sa.Column('cancel_reason', sa.String(), nullable=True),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index(op.f('ix_appointments_client_id'), 'appointments', ['client_id'], unique=False)
    op.create_index(op.f('ix_appointments_barber_id'), 'appointments', ['barber_id'], unique=False)
    op.create_index(op.f('ix_appointments_start_at'), 'appointments', ['start_at'], unique=False)
    op.create_index(op.f('ix_appointments_status'), 'appointments', ['status'], unique=False)
    op.create_index(
        'uq_appointments_barber_slot', 'appointments', ['barber_id', 'start_at'],
        unique=True, postgresql_where=ACTIVE,
    )
    op.create_index(
        'uq_appointments_client_slot', 'appointments', ['client_id', 'start_at'],
        unique=True, postgresql_where=ACTIVE,
    )
    op.create_index(
        'uq_appointments_idempotency_key', 'appointments', ['idempotency_key'],
        unique=True, postgresql_where=NOT_CANCELED,
    )
    op.create_index(
        'uq_appointments_client_promo', 'appointments', ['client_id', 'kind'],
        unique=True, postgresql_where=PROMO,
    )
    op.create_index(
        'uq_appointments_payment_intent', 'appointments', ['payment_intent_id'],
        unique=True, postgresql_where=NOT_CANCELED,
    )

    op.create_table(
        'points_ledger',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(), nullable=False),
        sa.Column('ref_type', sa.String(), nullable=True),
        sa.Column('ref_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index(op.f('ix_points_ledger_user_id'), 'points_ledger', ['user_id'], unique=False)
    op.create_index(op.f('ix_points_ledger_created_at'), 'points_ledger', ['created_at'], unique=False)
    op.create_index(
        'uq_points_ledger_reference', 'points_ledger', ['user_id', 'reason', 'ref_type', 'ref_id'], unique=True
    )

    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('gateway_payment_id', sa.String(), nullable=False, unique=True),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('kind', payment_kind, nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index(op.f('ix_payments_user_id'), 'payments', ['user_id'], unique=False)

    op.create_table(
        'event_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )
    op.create_index(op.f('ix_event_logs_type'), 'event_logs', ['type'], unique=False)
    op.create_index(op.f('ix_event_logs_created_at'), 'event_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('event_logs')
    op.drop_table('payments')
    op.drop_table('points_ledger')
    op.drop_table('appointments')
    op.drop_table('payment_intents')
    op.drop_table('subscriptions')
    op.drop_table('plans')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
